from __future__ import annotations


class ChatError(Exception):
    """Base class for failures reported back to the originating connection."""

    code = "ERROR"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class DuplicateUsername(ChatError):
    code = "DUPLICATE_USERNAME"


class UserNotFound(ChatError):
    code = "USER_NOT_FOUND"


class BadCredential(ChatError):
    code = "BAD_CREDENTIAL"


class StorageUnavailable(ChatError):
    code = "STORAGE_UNAVAILABLE"


class ValidationFailure(ChatError):
    code = "VALIDATION_FAILURE"


class Unauthorized(ChatError):
    code = "UNAUTHORIZED"


__all__ = [
    "ChatError",
    "DuplicateUsername",
    "UserNotFound",
    "BadCredential",
    "StorageUnavailable",
    "ValidationFailure",
    "Unauthorized",
]
