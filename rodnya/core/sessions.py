from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from .proto import now_ms

log = logging.getLogger("rodnya.sessions")

# (username, status_changed) -> awaited after every effective bind/unbind;
# status_changed is True when the username went online or offline
ChangeFn = Callable[[str, bool], Awaitable[None]]


@dataclass(slots=True)
class Session:
    connection_id: str
    username: str
    connected_at: int = field(default_factory=now_ms)


class SessionRegistry:
    """Live connection -> username bindings for this process.

    Not persisted: presence reflects live connections only and starts empty
    on every restart. A username may hold several sessions at once.
    """

    def __init__(self, on_change: Optional[ChangeFn] = None) -> None:
        self._sessions: Dict[str, Session] = {}
        self._by_user: Dict[str, set[str]] = {}
        self._on_change = on_change

    def set_listener(self, on_change: Optional[ChangeFn]) -> None:
        self._on_change = on_change

    async def bind(self, connection_id: str, username: str) -> Session:
        current = self._sessions.get(connection_id)
        if current is not None:
            if current.username == username:
                return current
            await self.unbind(connection_id)

        session = Session(connection_id=connection_id, username=username)
        self._sessions[connection_id] = session
        conns = self._by_user.setdefault(username, set())
        came_online = not conns
        conns.add(connection_id)
        log.info("Bound %s to connection %s (%d session(s))", username, connection_id, len(conns))
        await self._notify(username, came_online)
        return session

    async def unbind(self, connection_id: str) -> Optional[Session]:
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return None
        conns = self._by_user.get(session.username, set())
        conns.discard(connection_id)
        went_offline = not conns
        if went_offline:
            self._by_user.pop(session.username, None)
        log.info("Unbound %s from connection %s", session.username, connection_id)
        await self._notify(session.username, went_offline)
        return session

    def resolve(self, username: str) -> list[str]:
        return sorted(self._by_user.get(username, ()))

    def username_for(self, connection_id: str) -> Optional[str]:
        session = self._sessions.get(connection_id)
        return session.username if session else None

    def online_usernames(self) -> set[str]:
        return set(self._by_user)

    def connection_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    async def _notify(self, username: str, status_changed: bool) -> None:
        if self._on_change is not None:
            await self._on_change(username, status_changed)
