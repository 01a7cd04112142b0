from __future__ import annotations

import pytest

from rodnya.core.presence import OFFLINE, ONLINE, PresenceBroadcaster
from rodnya.core.sessions import SessionRegistry


# -----------------------------
# Utilities / fixtures
# -----------------------------

@pytest.fixture
def sent():
    """Collects every broadcast frame for assertions."""
    return []


@pytest.fixture
def presence(sent):
    async def _broadcast(frame: dict) -> None:
        sent.append(frame)

    return PresenceBroadcaster(SessionRegistry(), _broadcast)


def _types(frames):
    return [f["type"] for f in frames]


# -----------------------------
# Tests
# -----------------------------

@pytest.mark.asyncio
async def test_first_session_announces_online(presence, sent):
    await presence.registry.bind("c1", "alice")
    assert _types(sent) == ["online-users", "online-count", "user-status"]
    assert sent[0]["payload"] == ["alice"]
    assert sent[1]["payload"] == 1
    assert sent[2]["payload"] == {"username": "alice", "status": ONLINE}


@pytest.mark.asyncio
async def test_full_set_is_sorted_not_a_diff(presence, sent):
    await presence.registry.bind("c1", "carol")
    await presence.registry.bind("c2", "alice")
    latest = [f for f in sent if f["type"] == "online-users"][-1]
    assert latest["payload"] == ["alice", "carol"]
    assert presence.snapshot() == ["alice", "carol"]


@pytest.mark.asyncio
async def test_second_device_does_not_flip_status(presence, sent):
    await presence.registry.bind("c1", "alice")
    sent.clear()
    await presence.registry.bind("c2", "alice")
    assert _types(sent) == ["online-users", "online-count"]

    sent.clear()
    await presence.registry.unbind("c1")
    assert "user-status" not in _types(sent)


@pytest.mark.asyncio
async def test_last_session_announces_offline(presence, sent):
    await presence.registry.bind("c1", "alice")
    await presence.registry.bind("c2", "bob")
    sent.clear()
    await presence.registry.unbind("c1")
    assert sent[0]["payload"] == ["bob"]
    assert sent[1]["payload"] == 1
    assert sent[2]["payload"] == {"username": "alice", "status": OFFLINE}
