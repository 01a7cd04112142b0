from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import mimetypes
import sys
from pathlib import PurePosixPath
from typing import Any, Dict, Optional

from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from rodnya.core import proto
from rodnya.utils.canonical import decode_frame, encode_frame

log = logging.getLogger("rodnya.cmd.client")

HELP = (
    "Commands: /register <user> <password>, /login <user> <password>, /logout, /users, "
    "/tell <user> <msg>, /history [user], /share <url> [caption], /delete <id>, /quit. "
    "Plain text goes to the general room."
)


class ClientApp:
    def __init__(self, server_url: str) -> None:
        self.server_url = server_url
        self.ws: Optional[ClientConnection] = None
        self.username: Optional[str] = None
        self.online: list[str] = []
        self.stop_event = asyncio.Event()

    async def run(self) -> None:
        async with connect(self.server_url) as ws:
            self.ws = ws
            receiver = asyncio.create_task(self._rx_loop())
            try:
                await self._command_loop()
            finally:
                self.stop_event.set()
                receiver.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await receiver

    async def _command_loop(self) -> None:
        loop = asyncio.get_running_loop()
        print(f"Rodnya client ready. {HELP}")
        while not self.stop_event.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                await self._handle_command(line)
            else:
                await self._send_frame(proto.T_SEND_MESSAGE, {"message": line})

    async def _handle_command(self, line: str) -> None:
        parts = line.split()
        cmd = parts[0]
        if cmd in {"/register", "/login"} and len(parts) == 3:
            event = proto.T_REGISTER if cmd == "/register" else proto.T_LOGIN
            await self._send_frame(event, {"username": parts[1], "password": parts[2]})
        elif cmd == "/logout":
            await self._send_frame(proto.T_LOGOUT, {})
            self.username = None
        elif cmd == "/users":
            await self._send_frame(proto.T_GET_USERS, {})
        elif cmd == "/tell" and len(parts) >= 3:
            text = line.split(" ", 2)[2]
            await self._send_frame(proto.T_SEND_MESSAGE, {"recipientUsername": parts[1], "message": text})
        elif cmd == "/history":
            if len(parts) >= 2:
                await self._send_frame(proto.T_LOAD_PRIVATE, {"username": parts[1]})
            else:
                await self._send_frame(proto.T_LOAD_GENERAL, {})
        elif cmd == "/share" and len(parts) >= 2:
            await self._cmd_share(parts[1], line.split(" ", 2)[2] if len(parts) >= 3 else "")
        elif cmd == "/delete" and len(parts) == 2 and parts[1].isdigit():
            await self._send_frame(proto.T_DELETE_MESSAGE, {"id": int(parts[1])})
        elif cmd in {"/quit", "/exit"}:
            self.stop_event.set()
        else:
            print(f"Unknown command. {HELP}")

    async def _cmd_share(self, url: str, caption: str) -> None:
        # the file is already in the blob store; only its metadata travels here
        name = PurePosixPath(url).name or "file"
        mimetype = mimetypes.guess_type(name)[0] or "application/octet-stream"
        payload = {"filename": name, "originalname": name, "url": url, "mimetype": mimetype, "caption": caption}
        await self._send_frame(proto.T_SEND_FILE, payload)

    async def _rx_loop(self) -> None:
        assert self.ws is not None
        try:
            async for raw in self.ws:
                try:
                    env = proto.Envelope.model_validate(decode_frame(raw))
                except (ValueError, ValidationError):
                    log.warning("Dropped invalid frame: %s", raw)
                    continue
                self._handle_incoming(env)
        except ConnectionClosed:
            pass
        finally:
            self.stop_event.set()

    def _handle_incoming(self, env: proto.Envelope) -> None:
        typ = env.type
        payload = env.payload
        if typ in {proto.T_REGISTER_RESPONSE, proto.T_LOGIN_RESPONSE}:
            mark = "ok" if payload.get("success") else "failed"
            print(f"[{typ}] {mark}: {payload.get('message')}")
            if typ == proto.T_LOGIN_RESPONSE and payload.get("success"):
                self.username = payload.get("username")
        elif typ == proto.T_ERROR:
            print(f"ERROR ({payload.get('code')}): {payload.get('message')}")
        elif typ == proto.T_USERS_LIST:
            print(f"Users: {', '.join(payload)}")
        elif typ == proto.T_ONLINE_USERS:
            self.online = list(payload)
            print(f"Online: {', '.join(self.online) or '-'}")
        elif typ == proto.T_USER_STATUS:
            print(f"* {payload.get('username')} is {payload.get('status')}")
        elif typ in {proto.T_GENERAL_LOADED, proto.T_PRIVATE_LOADED}:
            for item in payload:
                self._print_message(item)
        elif typ in {proto.T_NEW_MESSAGE, proto.T_PRIVATE_MESSAGE}:
            self._print_message(payload)
        elif typ == proto.T_MESSAGE_DELETED:
            print(f"- message #{payload.get('id')} deleted")
        else:
            log.debug("Unhandled frame %s", typ)

    def _print_message(self, item: Dict[str, Any]) -> None:
        where = "all" if item.get("isGeneral") else f"{item.get('from')}->{item.get('to')}"
        if item.get("type") == proto.KIND_FILE:
            body = f"[file {item.get('originalname')}] {item.get('url')} {item.get('caption') or ''}".rstrip()
        else:
            body = item.get("message", "")
        print(f"#{item.get('id')} [{where}] {item.get('username')}: {body}")

    async def _send_frame(self, type_: str, payload: Dict[str, Any]) -> None:
        assert self.ws is not None
        await self.ws.send(encode_frame({"type": type_, "payload": payload}))


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Rodnya chat client")
    parser.add_argument("--server", default="ws://127.0.0.1:3000", help="ws://host:port of the chat server")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = ClientApp(args.server)
    await app.run()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
