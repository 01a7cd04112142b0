import asyncio

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect

from rodnya.server.runtime import ServerRuntime
from rodnya.utils.canonical import decode_frame, encode_frame


# ---- helpers ----

@pytest_asyncio.fixture
async def server(tmp_path):
    runtime = ServerRuntime({"listen": "127.0.0.1:0", "db_path": str(tmp_path / "chat.db")})
    await runtime.start()
    try:
        yield runtime
    finally:
        await runtime.stop()


def _url(runtime):
    return f"ws://127.0.0.1:{runtime.port}"


async def _emit(ws, type_, payload=None):
    await ws.send(encode_frame({"type": type_, "payload": payload or {}}))


async def _expect(ws, type_, timeout=5.0):
    """Read frames until one of ``type_`` arrives; returns its payload."""
    while True:
        frame = decode_frame(await asyncio.wait_for(ws.recv(), timeout))
        if frame["type"] == type_:
            return frame["payload"]


async def _signup(ws, username, password="secret"):
    await _emit(ws, "register", {"username": username, "password": password})
    assert (await _expect(ws, "register-response"))["success"] is True
    await _emit(ws, "login", {"username": username, "password": password})
    assert (await _expect(ws, "login-response"))["success"] is True
    return await _expect(ws, "load-general-messages")


# ---- tests ----

@pytest.mark.asyncio
async def test_port_zero_binds_ephemeral_port(server):
    assert server.port > 0


@pytest.mark.asyncio
async def test_two_clients_end_to_end(server):
    async with connect(_url(server)) as alice:
        assert await _signup(alice, "alice") == []
        await _emit(alice, "send-message", {"message": "test"})
        echo = await _expect(alice, "new-message")
        assert echo["message"] == "test"

        async with connect(_url(server)) as bob:
            history = await _signup(bob, "bob")
            assert len(history) == 1
            assert history[0]["message"] == "test"
            assert history[0]["username"] == "alice"
            assert history[0]["id"] == echo["id"]

        # bob's socket closed: alice hears he went offline
        status = await _expect(alice, "user-status")
        while status != {"username": "bob", "status": "offline"}:
            status = await _expect(alice, "user-status")


@pytest.mark.asyncio
async def test_anonymous_socket_gets_error(server):
    async with connect(_url(server)) as ws:
        await _emit(ws, "send-message", {"message": "hi"})
        err = await _expect(ws, "error")
        assert err["code"] == "UNAUTHORIZED"

        await ws.send("definitely not json")
        err = await _expect(ws, "error")
        assert err["code"] == "VALIDATION_FAILURE"


@pytest.mark.asyncio
async def test_history_survives_restart(tmp_path):
    cfg = {"listen": "127.0.0.1:0", "db_path": str(tmp_path / "chat.db")}
    first = ServerRuntime(cfg)
    await first.start()
    try:
        async with connect(_url(first)) as ws:
            await _signup(ws, "alice")
            await _emit(ws, "send-message", {"message": "persisted"})
            await _expect(ws, "new-message")
    finally:
        await first.stop()

    second = ServerRuntime(cfg)
    await second.start()
    try:
        async with connect(_url(second)) as ws:
            await _emit(ws, "login", {"username": "alice", "password": "secret"})
            history = await _expect(ws, "load-general-messages")
            assert [m["message"] for m in history] == ["persisted"]
    finally:
        await second.stop()
