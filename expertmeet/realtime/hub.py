from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Protocol

from fastapi import WebSocket

from ..schemas import PresenceEntry

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Awaitable[None]]
PresenceHandler = Callable[[List[PresenceEntry]], Awaitable[None]]


class MessageChannel(Protocol):
    async def subscribe(self, room_id: str, handler: Handler) -> None:
        ...

    async def unsubscribe(self, room_id: str, handler: Handler) -> None:
        ...

    async def publish(self, room_id: str, payload: dict) -> None:
        ...


class PresenceTracker(Protocol):
    async def track(self, room_id: str, entry: PresenceEntry, on_sync: PresenceHandler) -> None:
        ...

    async def untrack(self, room_id: str, key: str) -> None:
        ...

    def presence_state(self, room_id: str) -> list[PresenceEntry]:
        ...


class RoomHub:
    """In-process broadcast channel and presence tracker.

    Payloads are delivered to the current subscribers of a room in publish
    order. Presence entries are kept in arrival order and every tracker of
    the room is told the full list after each join or leave.
    """

    def __init__(self) -> None:
        self.subscribers: Dict[str, List[Handler]] = {}
        self.presence: Dict[str, Dict[str, tuple[PresenceEntry, PresenceHandler]]] = {}

    async def subscribe(self, room_id: str, handler: Handler) -> None:
        self.subscribers.setdefault(room_id, []).append(handler)

    async def unsubscribe(self, room_id: str, handler: Handler) -> None:
        handlers = self.subscribers.get(room_id, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self.subscribers.pop(room_id, None)

    async def publish(self, room_id: str, payload: dict) -> None:
        for handler in list(self.subscribers.get(room_id, [])):
            try:
                await handler(payload)
            except Exception:
                logger.exception("Delivery to a subscriber of %s failed", room_id)

    async def track(self, room_id: str, entry: PresenceEntry, on_sync: PresenceHandler) -> None:
        self.presence.setdefault(room_id, {})[entry.key] = (entry, on_sync)
        logger.info("%s joined room %s", entry.identity, room_id)
        await self._sync(room_id)

    async def untrack(self, room_id: str, key: str) -> None:
        members = self.presence.get(room_id, {})
        removed = members.pop(key, None)
        if not members:
            self.presence.pop(room_id, None)
        if removed:
            logger.info("%s left room %s", removed[0].identity, room_id)
            await self._sync(room_id)

    def presence_state(self, room_id: str) -> list[PresenceEntry]:
        return [entry for entry, _ in self.presence.get(room_id, {}).values()]

    async def _sync(self, room_id: str) -> None:
        state = self.presence_state(room_id)
        for _, on_sync in list(self.presence.get(room_id, {}).values()):
            try:
                await on_sync(list(state))
            except Exception:
                logger.exception("Presence sync handler for %s failed", room_id)


class ConnectionManager:
    """Bridges WebSocket connections onto a ``MessageChannel``."""

    def __init__(self, channel: MessageChannel) -> None:
        self.channel = channel
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self._handlers: Dict[int, Handler] = {}

    async def connect(self, room_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(room_id, []).append(websocket)

        async def forward(payload: dict) -> None:
            await websocket.send_json(payload)

        self._handlers[id(websocket)] = forward
        await self.channel.subscribe(room_id, forward)

    async def disconnect(self, room_id: str, websocket: WebSocket) -> None:
        connections = self.active_connections.get(room_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(room_id, None)
        handler = self._handlers.pop(id(websocket), None)
        if handler:
            await self.channel.unsubscribe(room_id, handler)

    async def broadcast(self, room_id: str, payload: dict) -> None:
        await self.channel.publish(room_id, payload)
