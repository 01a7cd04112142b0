from __future__ import annotations

import base64
import hmac
import os

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

_B64_PAD = {0: "", 2: "==", 3: "="}

SCHEME = "scrypt"
SALT_BYTES = 16
KEY_BYTES = 32
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    pad = _B64_PAD[len(value) % 4]
    return base64.urlsafe_b64decode(value + pad)


def _derive(password: str, salt: bytes, n: int, r: int, p: int) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_BYTES, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


def hash_password(password: str, *, n: int = SCRYPT_N, r: int = SCRYPT_R, p: int = SCRYPT_P) -> str:
    """Salted one-way hash, encoded as ``scrypt$n$r$p$salt$digest``."""
    salt = os.urandom(SALT_BYTES)
    digest = _derive(password, salt, n, r, p)
    return "$".join([SCHEME, str(n), str(r), str(p), b64url(salt), b64url(digest)])


def verify_password(password: str, encoded: str) -> bool:
    """Recompute the hash with the stored parameters and compare in constant time."""
    try:
        scheme, n, r, p, salt_b64, digest_b64 = encoded.split("$")
        if scheme != SCHEME:
            return False
        salt = b64url_decode(salt_b64)
        expected = b64url_decode(digest_b64)
        computed = _derive(password, salt, int(n), int(r), int(p))
    except (ValueError, KeyError):
        return False
    return hmac.compare_digest(computed, expected)
