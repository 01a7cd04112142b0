"""
SQLite persistence for the chat server
--------------------------------------

One aiosqlite connection per server process. The connection runs its queries
on a dedicated thread, so concurrent coroutines are serialized at the storage
layer; conflicting writes (two registrations of one username) are settled by
the UNIQUE constraint, not by application locks.

Tables:
1. users     -> registered accounts with a salted password hash
2. messages  -> the conversation log (general room and private dialogs)

Every call is bounded by ``timeout`` seconds. Timeouts and driver errors are
raised as ``StorageUnavailable`` so a slow or broken disk never stalls a
connection's event loop.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Iterable, Optional, TypeVar

import aiosqlite

from .errors import StorageUnavailable

log = logging.getLogger("rodnya.store")

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS users(
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    username   TEXT    NOT NULL UNIQUE,
    password   TEXT    NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS messages(
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    from_user    TEXT    NOT NULL,
    to_user      TEXT    NOT NULL,
    message      TEXT    NOT NULL DEFAULT '',
    filename     TEXT,
    originalname TEXT,
    url          TEXT,
    mimetype     TEXT,
    size         INTEGER,
    caption      TEXT,
    type         TEXT    NOT NULL DEFAULT 'text',
    is_general   INTEGER NOT NULL,
    created_at   INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_general ON messages(is_general, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_dialog ON messages(from_user, to_user, created_at);
"""


class Database:
    """Owns the aiosqlite connection and wraps every statement in a timeout."""

    def __init__(self, path: str | Path = ":memory:", *, timeout: float = 5.0) -> None:
        self.path = str(path)
        self.timeout = timeout
        self._conn: Optional[aiosqlite.Connection] = None

    async def open(self) -> "Database":
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await asyncio.wait_for(aiosqlite.connect(self.path, isolation_level=None), self.timeout)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.executescript(SCHEMA)
        except (aiosqlite.Error, asyncio.TimeoutError, OSError) as exc:
            log.error("Cannot open database %s: %s", self.path, exc)
            raise StorageUnavailable(f"cannot open database: {exc}") from exc
        log.info("Database ready at %s", self.path)
        return self

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Database":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageUnavailable("database is not open")
        return self._conn

    async def bounded(self, op: Awaitable[T], what: str) -> T:
        """Await a storage coroutine, mapping timeouts and driver errors."""
        try:
            return await asyncio.wait_for(op, self.timeout)
        except asyncio.TimeoutError as exc:
            log.error("Storage timeout during %s after %.1fs", what, self.timeout)
            raise StorageUnavailable(f"{what} timed out") from exc
        except aiosqlite.IntegrityError:
            # constraint violations are meaningful to callers
            raise
        except (aiosqlite.Error, ValueError, OverflowError) as exc:
            log.error("Storage failure during %s: %s", what, exc)
            raise StorageUnavailable(f"{what} failed") from exc

    async def execute(self, sql: str, params: Iterable[Any] = (), *, what: str = "write") -> int:
        """Run one write statement. Returns ``lastrowid`` for inserts, otherwise
        the affected row count."""

        async def _run() -> int:
            async with self.conn.execute(sql, tuple(params)) as cur:
                return cur.lastrowid if sql.lstrip().upper().startswith("INSERT") else cur.rowcount

        return await self.bounded(_run(), what)

    async def fetchall(self, sql: str, params: Iterable[Any] = (), *, what: str = "read") -> list[aiosqlite.Row]:
        async def _run() -> list[aiosqlite.Row]:
            async with self.conn.execute(sql, tuple(params)) as cur:
                return list(await cur.fetchall())

        return await self.bounded(_run(), what)

    async def fetchone(self, sql: str, params: Iterable[Any] = (), *, what: str = "read") -> Optional[aiosqlite.Row]:
        async def _run() -> Optional[aiosqlite.Row]:
            async with self.conn.execute(sql, tuple(params)) as cur:
                return await cur.fetchone()

        return await self.bounded(_run(), what)
