from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from rodnya.core.conversations import ConversationStore
from rodnya.core.directory import UserDirectory
from rodnya.core.router import EventRouter
from rodnya.core.sessions import SessionRegistry
from rodnya.core.store import Database
from rodnya.utils.canonical import encode_frame

log = logging.getLogger("rodnya.server.runtime")

DEFAULTS: Dict[str, Any] = {
    "listen": "0.0.0.0:3000",
    "db_path": "data/rodnya.db",
    "history_limit": 100,
    "storage_timeout_secs": 5,
    "min_password_length": 4,
    "strict_errors": True,
    "max_frame_bytes": 1024 * 1024,
}


@dataclass(slots=True)
class Connection:
    websocket: ServerConnection
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, frame: Dict[str, Any]) -> bool:
        text = encode_frame(frame)
        try:
            async with self.send_lock:
                await self.websocket.send(text)
        except ConnectionClosed:
            log.debug("Skipped %s to closed connection %s", frame.get("type"), self.id)
            return False
        return True


class ServerRuntime:
    """WebSocket front end: one receive loop per connection feeding the router."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.cfg = {**DEFAULTS, **(config or {})}
        self.listen_host, self.listen_port = self._parse_listen(self.cfg["listen"])
        self.db_path = self.cfg["db_path"]
        self.history_limit = int(self.cfg["history_limit"])
        self.storage_timeout = float(self.cfg["storage_timeout_secs"])
        self.min_password_length = int(self.cfg["min_password_length"])
        self.strict_errors = bool(self.cfg["strict_errors"])
        self.max_frame_bytes = int(self.cfg["max_frame_bytes"])

        self.db: Optional[Database] = None
        self.router: Optional[EventRouter] = None
        self._ws_server: Optional[Server] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.db = await Database(self.db_path, timeout=self.storage_timeout).open()
        self.router = EventRouter(
            UserDirectory(self.db, min_password_length=self.min_password_length),
            ConversationStore(self.db, default_limit=self.history_limit),
            SessionRegistry(),
            history_limit=self.history_limit,
            strict_errors=self.strict_errors,
        )

        self._ws_server = await serve(
            self._handle_connection,
            self.listen_host,
            self.listen_port,
            max_size=self.max_frame_bytes,
        )
        log.info("Rodnya server listening on ws://%s:%d", self.listen_host, self.port)

    async def stop(self) -> None:
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

        if self.db is not None:
            await self.db.close()
            self.db = None
        log.info("Rodnya server stopped")

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""
        if self._ws_server is not None:
            for sock in self._ws_server.sockets:
                return sock.getsockname()[1]
        return self.listen_port

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        assert self.router is not None
        conn = Connection(websocket=websocket)
        self.router.attach(conn)
        log.debug("Accepted connection %s from %s", conn.id, self._fmt_remote(websocket))
        try:
            # frames from one connection are handled strictly in arrival order
            async for raw in websocket:
                await self.router.dispatch(conn, raw)
        except ConnectionClosed:
            pass
        finally:
            await self.router.detach(conn)
            log.debug("Closed connection %s", conn.id)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_listen(value: str) -> tuple[str, int]:
        host, port = value.rsplit(":", 1)
        return host, int(port)

    @staticmethod
    def _fmt_remote(websocket: ServerConnection) -> str:
        peer = websocket.remote_address
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)


__all__ = ["ServerRuntime", "Connection"]
