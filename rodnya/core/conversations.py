from __future__ import annotations

import logging
from typing import Optional

import aiosqlite

from .dialog import dialog_key
from .proto import GENERAL, Message, now_ms
from .store import Database

log = logging.getLogger("rodnya.conversations")

DEFAULT_LIMIT = 100

_INSERT_COLUMNS = (
    "from_user, to_user, message, filename, originalname, url, "
    "mimetype, size, caption, type, is_general, created_at"
)
_COLUMNS = "id, " + _INSERT_COLUMNS


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["id"],
        sender=row["from_user"],
        recipient=GENERAL if row["is_general"] else row["to_user"],
        kind=row["type"],
        text=row["message"] or "",
        filename=row["filename"],
        original_name=row["originalname"],
        url=row["url"],
        mimetype=row["mimetype"],
        size=row["size"],
        caption=row["caption"],
        created_at=row["created_at"],
    )


class ConversationStore:
    """Append-only message log with point deletes.

    Reads return the newest ``limit`` messages of a conversation in
    chronological order (``created_at``, then ``id``).
    """

    def __init__(self, db: Database, *, default_limit: int = DEFAULT_LIMIT) -> None:
        self.db = db
        self.default_limit = default_limit

    async def append(self, message: Message) -> Message:
        """Persist ``message`` and return it with server-assigned id and time.

        Any client-supplied ``id``/``created_at`` is discarded.
        """
        created = now_ms()
        msg_id = await self.db.execute(
            f"INSERT INTO messages({_INSERT_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?,?,?,?)",
            (
                message.sender,
                message.recipient,
                message.text,
                message.filename,
                message.original_name,
                message.url,
                message.mimetype,
                message.size,
                message.caption,
                message.kind,
                1 if message.is_general else 0,
                created,
            ),
            what="append message",
        )
        stored = message.model_copy(update={"id": msg_id, "created_at": created})
        if stored.is_general:
            log.debug("Stored general message %d from %s", msg_id, stored.sender)
        else:
            log.debug("Stored message %d in %s", msg_id, dialog_key(stored.sender, stored.recipient))
        return stored

    async def load_general(self, limit: Optional[int] = None) -> list[Message]:
        rows = await self.db.fetchall(
            f"""SELECT * FROM (
                    SELECT {_COLUMNS} FROM messages WHERE is_general=1
                    ORDER BY created_at DESC, id DESC LIMIT ?
                ) ORDER BY created_at ASC, id ASC""",
            (self._limit(limit),),
            what="load general history",
        )
        return [_row_to_message(r) for r in rows]

    async def load_dialog(self, user_a: str, user_b: str, limit: Optional[int] = None) -> list[Message]:
        rows = await self.db.fetchall(
            f"""SELECT * FROM (
                    SELECT {_COLUMNS} FROM messages
                    WHERE is_general=0
                      AND ((from_user=? AND to_user=?) OR (from_user=? AND to_user=?))
                    ORDER BY created_at DESC, id DESC LIMIT ?
                ) ORDER BY created_at ASC, id ASC""",
            (user_a, user_b, user_b, user_a, self._limit(limit)),
            what="load dialog history",
        )
        return [_row_to_message(r) for r in rows]

    async def get(self, message_id: int) -> Optional[Message]:
        row = await self.db.fetchone(
            f"SELECT {_COLUMNS} FROM messages WHERE id=?", (message_id,), what="get message"
        )
        return _row_to_message(row) if row else None

    async def delete(self, message_id: int) -> bool:
        """Hard delete. Returns False when no such message exists."""
        removed = await self.db.execute("DELETE FROM messages WHERE id=?", (message_id,), what="delete message")
        if removed:
            log.info("Deleted message %d", message_id)
        return bool(removed)

    def _limit(self, limit: Optional[int]) -> int:
        if limit is None or limit <= 0:
            return self.default_limit
        return limit
