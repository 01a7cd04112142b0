from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

import aiosqlite

from . import crypto
from .errors import BadCredential, DuplicateUsername, UserNotFound, ValidationFailure
from .proto import GENERAL, USERNAME_MAX, USERNAME_PATTERN, now_ms
from .store import Database

log = logging.getLogger("rodnya.directory")

_USERNAME_RE = re.compile(USERNAME_PATTERN)


@dataclass(frozen=True)
class User:
    id: int
    username: str
    created_at: int


class UserDirectory:
    """Registered accounts. Usernames are unique at the storage layer."""

    def __init__(self, db: Database, *, min_password_length: int = 4) -> None:
        self.db = db
        self.min_password_length = min_password_length

    def _check(self, username: str, password: str) -> str:
        username = (username or "").strip()
        if not username or len(username) > USERNAME_MAX:
            raise ValidationFailure(f"username must be 1-{USERNAME_MAX} characters")
        if not _USERNAME_RE.fullmatch(username):
            raise ValidationFailure('username may only contain letters, digits, "_", "." and "-"')
        if username.lower() == GENERAL:
            raise ValidationFailure(f"username '{username}' is reserved")
        if len(password or "") < self.min_password_length:
            raise ValidationFailure(f"password must be at least {self.min_password_length} characters")
        return username

    async def register(self, username: str, password: str) -> User:
        username = self._check(username, password)
        pwd_hash = await asyncio.to_thread(crypto.hash_password, password)
        created = now_ms()
        try:
            user_id = await self.db.execute(
                "INSERT INTO users(username, password, created_at) VALUES(?,?,?)",
                (username, pwd_hash, created),
                what="register",
            )
        except aiosqlite.IntegrityError as exc:
            log.info("Registration rejected, username taken: %s", username)
            raise DuplicateUsername(f"username already taken: {username}") from exc
        log.info("Registered user %s (id=%d)", username, user_id)
        return User(id=user_id, username=username, created_at=created)

    async def verify(self, username: str, password: str) -> User:
        row = await self.db.fetchone(
            "SELECT id, username, password, created_at FROM users WHERE username=?",
            ((username or "").strip(),),
            what="verify",
        )
        if row is None:
            raise UserNotFound(f"no such user: {username}")
        ok = await asyncio.to_thread(crypto.verify_password, password or "", row["password"])
        if not ok:
            log.info("Bad credential for %s", row["username"])
            raise BadCredential("wrong password")
        return User(id=row["id"], username=row["username"], created_at=row["created_at"])

    async def exists(self, username: str) -> bool:
        row = await self.db.fetchone("SELECT 1 FROM users WHERE username=?", (username,), what="lookup user")
        return row is not None

    async def list_all(self) -> list[str]:
        rows = await self.db.fetchall("SELECT username FROM users ORDER BY username", what="list users")
        return [r["username"] for r in rows]

    async def count(self) -> int:
        row = await self.db.fetchone("SELECT COUNT(*) AS n FROM users", what="count users")
        return int(row["n"]) if row else 0
