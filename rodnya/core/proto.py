from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------

# client -> server
T_REGISTER = "register"
T_LOGIN = "login"
T_LOGOUT = "logout"
T_SEND_MESSAGE = "send-message"
T_SEND_FILE = "send-file"
T_LOAD_GENERAL = "load-general-messages"
T_LOAD_PRIVATE = "load-private-messages"
T_DELETE_MESSAGE = "delete-message"
T_GET_USERS = "get-users"

# server -> client
T_REGISTER_RESPONSE = "register-response"
T_LOGIN_RESPONSE = "login-response"
T_USERS_LIST = "users-list"
T_ONLINE_USERS = "online-users"
T_ONLINE_COUNT = "online-count"
T_USER_STATUS = "user-status"
T_GENERAL_LOADED = "load-general-messages"
T_PRIVATE_LOADED = "private-messages-loaded"
T_NEW_MESSAGE = "new-message"
T_PRIVATE_MESSAGE = "private-message"
T_MESSAGE_DELETED = "message-deleted"
T_ERROR = "error"

GENERAL = "general"

KIND_TEXT = "text"
KIND_FILE = "file"

USERNAME_MAX = 32
# letters (any script), digits, "_", "." and "-"; ":" is reserved by dialog keys
USERNAME_PATTERN = r"^[\w.\-]+$"
MESSAGE_MAX = 5000
# largest value an SQLite INTEGER column holds
SQLITE_INT_MAX = 2**63 - 1


# ---------------------------------------------------------------------------
# Transport envelope
# ---------------------------------------------------------------------------

class Envelope(BaseModel):
    """One JSON frame on the WebSocket: an event name and its payload."""

    type: str = Field(min_length=1)
    payload: Any = Field(default_factory=dict)
    ts: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def build_frame(type: str, payload: Any, *, ts: int | None = None) -> Dict[str, Any]:
    """Create an outbound frame stamped with server time."""

    return {
        "type": type,
        "payload": payload,
        "ts": now_ms() if ts is None else ts,
    }


def error_frame(code: str, detail: str, *, event: str | None = None) -> Dict[str, Any]:
    payload = {"code": code, "message": detail}
    if event:
        payload["event"] = event
    return build_frame(T_ERROR, payload)


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------

class _Payload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True, extra="ignore")


class Credentials(_Payload):
    username: str = Field(min_length=1, max_length=USERNAME_MAX, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=1)


class _Addressed(_Payload):
    recipient: Optional[str] = Field(default=None, alias="recipientUsername", max_length=USERNAME_MAX)

    @field_validator("recipient")
    @classmethod
    def _blank_is_general(cls, value: Optional[str]) -> Optional[str]:
        # clients send "" or "general" for the shared room
        if not value or value == GENERAL:
            return None
        return value


class SendMessagePayload(_Addressed):
    message: str = Field(min_length=1, max_length=MESSAGE_MAX)


class SendFilePayload(_Addressed):
    filename: str = Field(min_length=1)
    originalname: str = Field(min_length=1)
    url: str = Field(min_length=1)
    mimetype: str = Field(default="application/octet-stream")
    size: Optional[int] = Field(default=None, ge=0, le=SQLITE_INT_MAX)
    caption: str = Field(default="", max_length=MESSAGE_MAX)


class LoadPrivatePayload(_Payload):
    username: str = Field(min_length=1, max_length=USERNAME_MAX)


class DeletePayload(_Payload):
    id: int = Field(ge=1, le=SQLITE_INT_MAX)


# ---------------------------------------------------------------------------
# Stored message
# ---------------------------------------------------------------------------

class Message(BaseModel):
    """A persisted chat message; ``recipient`` is a username or ``GENERAL``."""

    id: Optional[int] = None
    sender: str
    recipient: str = GENERAL
    kind: str = KIND_TEXT
    text: str = ""
    filename: Optional[str] = None
    original_name: Optional[str] = None
    url: Optional[str] = None
    mimetype: Optional[str] = None
    size: Optional[int] = None
    caption: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def is_general(self) -> bool:
        return self.recipient == GENERAL

    def participants(self) -> set[str]:
        return {self.sender} if self.is_general else {self.sender, self.recipient}

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "username": self.sender,
            "from": self.sender,
            "to": self.recipient,
            "type": self.kind,
            "message": self.text,
            "isGeneral": self.is_general,
            "createdAt": self.created_at,
            "timestamp": _iso(self.created_at),
        }
        if self.kind == KIND_FILE:
            out.update(
                {
                    "filename": self.filename,
                    "originalname": self.original_name,
                    "url": self.url,
                    "mimetype": self.mimetype,
                    "size": self.size,
                    "caption": self.caption or "",
                }
            )
        return out


def _iso(ms: Optional[int]) -> Optional[str]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="milliseconds")


__all__ = [
    "Envelope",
    "Credentials",
    "SendMessagePayload",
    "SendFilePayload",
    "LoadPrivatePayload",
    "DeletePayload",
    "Message",
    "GENERAL",
    "KIND_TEXT",
    "KIND_FILE",
    "now_ms",
    "build_frame",
    "error_frame",
]
