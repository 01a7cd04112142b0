from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol

from pydantic import ValidationError

from rodnya.utils.canonical import decode_frame

from . import proto
from .conversations import ConversationStore
from .dialog import dialog_key
from .directory import UserDirectory
from .errors import ChatError, StorageUnavailable, Unauthorized, UserNotFound, ValidationFailure
from .presence import PresenceBroadcaster
from .proto import GENERAL, Envelope, Message, build_frame, error_frame
from .sessions import SessionRegistry

log = logging.getLogger("rodnya.router")

# events accepted from a connection that has not logged in
OPEN_EVENTS = {proto.T_REGISTER, proto.T_LOGIN}


class Link(Protocol):
    """A live client connection as seen by the router."""

    id: str

    async def send(self, frame: Dict[str, Any]) -> bool: ...


Handler = Callable[[Link, str, Any], Awaitable[None]]


class EventRouter:
    """Turns inbound client events into persistence and targeted delivery.

    Per connection the state machine is Anonymous -> Authenticated ->
    Disconnected; ``logout`` drops back to Anonymous. Only authenticated
    connections may send, delete or read history. The directory, store and
    registry are injected so several routers can coexist (tests, embedding).
    """

    def __init__(
        self,
        directory: UserDirectory,
        conversations: ConversationStore,
        registry: SessionRegistry,
        *,
        history_limit: int = 100,
        strict_errors: bool = True,
    ) -> None:
        self.directory = directory
        self.conversations = conversations
        self.registry = registry
        self.history_limit = history_limit
        self.strict_errors = strict_errors
        self._links: Dict[str, Link] = {}
        self.presence = PresenceBroadcaster(registry, self.broadcast)
        self._handlers: Dict[str, Handler] = {
            proto.T_REGISTER: self._handle_register,
            proto.T_LOGIN: self._handle_login,
            proto.T_LOGOUT: self._handle_logout,
            proto.T_SEND_MESSAGE: self._handle_send_message,
            proto.T_SEND_FILE: self._handle_send_file,
            proto.T_LOAD_GENERAL: self._handle_load_general,
            proto.T_LOAD_PRIVATE: self._handle_load_private,
            proto.T_DELETE_MESSAGE: self._handle_delete_message,
            proto.T_GET_USERS: self._handle_get_users,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def attach(self, link: Link) -> None:
        self._links[link.id] = link
        log.debug("Attached connection %s (%d open)", link.id, len(self._links))

    async def detach(self, link: Link) -> None:
        self._links.pop(link.id, None)
        session = await self.registry.unbind(link.id)
        if session is not None:
            log.info("User %s disconnected (%s)", session.username, link.id)

    def username_of(self, link: Link) -> Optional[str]:
        return self.registry.username_for(link.id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, link: Link, raw: str | bytes | Dict[str, Any]) -> None:
        """Handle one inbound frame. Never raises for client mistakes or storage
        failures; those are logged and reported to ``link`` only."""
        try:
            data = raw if isinstance(raw, dict) else decode_frame(raw)
            envelope = Envelope.model_validate(data)
        except (ValueError, ValidationError):
            await self._reject(link, None, ValidationFailure("malformed frame"))
            return

        event = envelope.type
        handler = self._handlers.get(event)
        if handler is None:
            await self._reject(link, event, ValidationFailure(f"unknown event {event}"))
            return

        username = self.username_of(link)
        if username is None and event not in OPEN_EVENTS:
            await self._reject(link, event, Unauthorized("login required"))
            return

        try:
            await handler(link, username or "", envelope.payload)
        except ValidationError as exc:
            await self._reject(link, event, ValidationFailure(_first_error(exc)))
        except StorageUnavailable as exc:
            log.error("Storage unavailable while handling %s from %s: %s", event, link.id, exc.detail)
            await self._send(link, error_frame(exc.code, "storage unavailable, try again", event=event))
        except ChatError as exc:
            log.info("Rejected %s from %s: %s", event, username or link.id, exc.code)
            await self._send(link, error_frame(exc.code, exc.detail, event=event))

    async def _reject(self, link: Link, event: Optional[str], exc: ChatError) -> None:
        # fail closed: no side effect, always logged, reply only in strict mode
        log.warning("Dropped %s from %s: %s", event or "frame", link.id, exc.detail)
        if self.strict_errors:
            await self._send(link, error_frame(exc.code, exc.detail, event=event))

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def _handle_register(self, link: Link, _me: str, payload: Any) -> None:
        try:
            creds = proto.Credentials.model_validate(payload)
            user = await self.directory.register(creds.username, creds.password)
        except ValidationError as exc:
            await self._respond(link, proto.T_REGISTER_RESPONSE, ValidationFailure(_first_error(exc)))
            return
        except ChatError as exc:
            await self._respond(link, proto.T_REGISTER_RESPONSE, exc)
            return
        await self._send(
            link,
            build_frame(proto.T_REGISTER_RESPONSE, {"success": True, "message": f"Registered {user.username}"}),
        )
        await self.broadcast(build_frame(proto.T_USERS_LIST, await self.directory.list_all()))

    async def _handle_login(self, link: Link, _me: str, payload: Any) -> None:
        try:
            creds = proto.Credentials.model_validate(payload)
            user = await self.directory.verify(creds.username, creds.password)
        except ValidationError as exc:
            await self._respond(link, proto.T_LOGIN_RESPONSE, ValidationFailure(_first_error(exc)))
            return
        except ChatError as exc:
            await self._respond(link, proto.T_LOGIN_RESPONSE, exc)
            return

        await self._send(
            link,
            build_frame(
                proto.T_LOGIN_RESPONSE,
                {"success": True, "message": f"Welcome, {user.username}", "username": user.username},
            ),
        )
        await self.registry.bind(link.id, user.username)
        await self._send(link, build_frame(proto.T_USERS_LIST, await self.directory.list_all()))
        await self._handle_load_general(link, user.username, {})

    async def _handle_logout(self, link: Link, me: str, _payload: Any) -> None:
        await self.registry.unbind(link.id)
        log.info("User %s logged out (%s)", me, link.id)

    async def _handle_get_users(self, link: Link, _me: str, _payload: Any) -> None:
        await self._send(link, build_frame(proto.T_USERS_LIST, await self.directory.list_all()))

    async def _respond(self, link: Link, event: str, exc: ChatError) -> None:
        if isinstance(exc, StorageUnavailable):
            log.error("Storage unavailable during %s for %s: %s", event, link.id, exc.detail)
        payload = {"success": False, "message": exc.detail, "code": exc.code}
        await self._send(link, build_frame(event, payload))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def _handle_send_message(self, link: Link, me: str, payload: Any) -> None:
        p = proto.SendMessagePayload.model_validate(payload)
        await self._deliver(
            Message(sender=me, recipient=p.recipient or GENERAL, kind=proto.KIND_TEXT, text=p.message)
        )

    async def _handle_send_file(self, link: Link, me: str, payload: Any) -> None:
        p = proto.SendFilePayload.model_validate(payload)
        await self._deliver(
            Message(
                sender=me,
                recipient=p.recipient or GENERAL,
                kind=proto.KIND_FILE,
                filename=p.filename,
                original_name=p.originalname,
                url=p.url,
                mimetype=p.mimetype,
                size=p.size,
                caption=p.caption,
            )
        )

    async def _deliver(self, message: Message) -> None:
        if not message.is_general:
            await self._check_recipient(message.sender, message.recipient)

        stored = await self.conversations.append(message)

        if stored.is_general:
            await self.broadcast(build_frame(proto.T_NEW_MESSAGE, stored.to_wire()))
            return

        # sender echo + every device of the recipient; offline recipients
        # pick the message up from history on their next load
        frame = build_frame(proto.T_PRIVATE_MESSAGE, stored.to_wire())
        delivered = await self.send_to_users((stored.sender, stored.recipient), frame)
        log.info(
            "Private %s %d in %s delivered to %d connection(s)",
            stored.kind, stored.id, dialog_key(stored.sender, stored.recipient), delivered,
        )

    async def _check_recipient(self, sender: str, recipient: str) -> None:
        if recipient == sender:
            raise ValidationFailure("cannot send a private message to yourself")
        if not await self.directory.exists(recipient):
            raise UserNotFound(f"no such user: {recipient}")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def _handle_load_general(self, link: Link, _me: str, _payload: Any) -> None:
        history = await self.conversations.load_general(self.history_limit)
        await self._send(link, build_frame(proto.T_GENERAL_LOADED, [m.to_wire() for m in history]))

    async def _handle_load_private(self, link: Link, me: str, payload: Any) -> None:
        p = proto.LoadPrivatePayload.model_validate(payload)
        history = await self.conversations.load_dialog(me, p.username, self.history_limit)
        await self._send(link, build_frame(proto.T_PRIVATE_LOADED, [m.to_wire() for m in history]))

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def _handle_delete_message(self, link: Link, me: str, payload: Any) -> None:
        p = proto.DeletePayload.model_validate(payload)
        message = await self.conversations.get(p.id)
        if message is None:
            log.debug("Delete of unknown message %d by %s ignored", p.id, me)
            return
        if message.sender != me:
            raise Unauthorized("only the author can delete a message")
        if not await self.conversations.delete(p.id):
            return

        frame = build_frame(proto.T_MESSAGE_DELETED, {"id": p.id})
        if message.is_general:
            await self.broadcast(frame)
        else:
            await self.send_to_users(message.participants(), frame)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def broadcast(self, frame: Dict[str, Any]) -> int:
        """Send to every authenticated connection (the general room)."""
        return await self._send_many(self.registry.connection_ids(), frame)

    async def send_to_users(self, usernames: Iterable[str], frame: Dict[str, Any]) -> int:
        targets: list[str] = []
        for username in dict.fromkeys(usernames):
            targets.extend(self.registry.resolve(username))
        return await self._send_many(targets, frame)

    async def _send_many(self, connection_ids: Iterable[str], frame: Dict[str, Any]) -> int:
        sent = 0
        for cid in connection_ids:
            link = self._links.get(cid)
            if link is not None and await self._send(link, frame):
                sent += 1
        return sent

    async def _send(self, link: Link, frame: Dict[str, Any]) -> bool:
        return await link.send(frame)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid payload"
    first = errors[0]
    where = ".".join(str(p) for p in first.get("loc", ())) or "payload"
    return f"{where}: {first.get('msg', 'invalid')}"
