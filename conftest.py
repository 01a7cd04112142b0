from __future__ import annotations

from typing import Any, Dict, Optional

import pytest
import pytest_asyncio

from rodnya.core.conversations import ConversationStore
from rodnya.core.directory import UserDirectory
from rodnya.core.router import EventRouter
from rodnya.core.sessions import SessionRegistry
from rodnya.core.store import Database


class FakeLink:
    """Stands in for a WebSocket connection; records every outbound frame."""

    def __init__(self, ident: str) -> None:
        self.id = ident
        self.frames: list[Dict[str, Any]] = []
        self.closed = False

    async def send(self, frame: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        self.frames.append(frame)
        return True

    def of_type(self, type_: str) -> list[Any]:
        return [f["payload"] for f in self.frames if f["type"] == type_]

    def last(self, type_: str) -> Any:
        found = self.of_type(type_)
        assert found, f"no {type_} frame in {[f['type'] for f in self.frames]}"
        return found[-1]

    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]

    def clear(self) -> None:
        self.frames.clear()


class Harness:
    """Drives an EventRouter the way the runtime does, one frame at a time."""

    def __init__(self, router: EventRouter) -> None:
        self.router = router
        self._count = 0

    def connect(self) -> FakeLink:
        self._count += 1
        link = FakeLink(f"conn-{self._count}")
        self.router.attach(link)
        return link

    async def emit(self, link: FakeLink, type_: str, payload: Any = None) -> None:
        await self.router.dispatch(link, {"type": type_, "payload": {} if payload is None else payload})

    async def disconnect(self, link: FakeLink) -> None:
        link.closed = True
        await self.router.detach(link)

    async def signup(self, username: str, password: str = "secret", link: Optional[FakeLink] = None) -> FakeLink:
        link = link or self.connect()
        await self.emit(link, "register", {"username": username, "password": password})
        await self.login(username, password, link)
        return link

    async def login(self, username: str, password: str = "secret", link: Optional[FakeLink] = None) -> FakeLink:
        link = link or self.connect()
        await self.emit(link, "login", {"username": username, "password": password})
        return link


@pytest_asyncio.fixture
async def db():
    async with Database(":memory:", timeout=5.0) as database:
        yield database


@pytest.fixture
def directory(db):
    return UserDirectory(db, min_password_length=4)


@pytest.fixture
def conversations(db):
    return ConversationStore(db)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def router(directory, conversations, registry):
    return EventRouter(directory, conversations, registry, history_limit=100, strict_errors=True)


@pytest.fixture
def chat(router):
    return Harness(router)


@pytest.fixture
def lenient_chat(directory, conversations):
    """A router that drops bad frames without replying."""
    return Harness(EventRouter(directory, conversations, SessionRegistry(), strict_errors=False))
