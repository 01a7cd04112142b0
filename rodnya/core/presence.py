from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Any

from .proto import T_ONLINE_COUNT, T_ONLINE_USERS, T_USER_STATUS, build_frame
from .sessions import SessionRegistry


"""
Presence broadcasting
---------------------
Reacts to every SessionRegistry mutation:
  • recompute the online set and send it whole (not a diff) to every
    authenticated connection, followed by the online-user count
  • when a username's presence flips, also send user-status online/offline

Each event costs O(online users) frames. That is fine for one small room and
is the scaling limit of this design.

Integration contract
====================
- broadcast: BroadcastFn, delivers one frame to all authenticated connections
  (the EventRouter provides it)
- registry:  the SessionRegistry whose listener this broadcaster becomes
"""


log = logging.getLogger("rodnya.presence")

BroadcastFn = Callable[[Dict[str, Any]], Awaitable[None]]

ONLINE = "online"
OFFLINE = "offline"


class PresenceBroadcaster:
    def __init__(self, registry: SessionRegistry, broadcast: BroadcastFn) -> None:
        self.registry = registry
        self.broadcast = broadcast
        registry.set_listener(self.on_change)

    def snapshot(self) -> list[str]:
        return sorted(self.registry.online_usernames())

    async def on_change(self, username: str, status_changed: bool) -> None:
        online = self.snapshot()
        await self.broadcast(build_frame(T_ONLINE_USERS, online))
        await self.broadcast(build_frame(T_ONLINE_COUNT, len(online)))
        if status_changed:
            status = ONLINE if username in online else OFFLINE
            await self.broadcast(build_frame(T_USER_STATUS, {"username": username, "status": status}))
            log.info("%s is %s (%d online)", username, status, len(online))
