from __future__ import annotations

SEPARATOR = ":"


def dialog_key(user_a: str, user_b: str) -> str:
    """Canonical id of the private conversation between two users.

    The pair is unordered: ``dialog_key(a, b) == dialog_key(b, a)``.
    """
    first, second = sorted((user_a, user_b))
    return f"{first}{SEPARATOR}{second}"
