from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Dict, Optional

from ..schemas import PresenceEntry
from .hub import Handler, PresenceHandler

logger = logging.getLogger(__name__)

SIGNAL_EVENT = "signal"


class SupabaseRoomChannel:
    """``MessageChannel`` and ``PresenceTracker`` over Supabase Realtime.

    Each room has one broadcast channel shared by every local subscriber.
    Realtime does not echo a channel's own broadcasts, so ``publish`` also
    delivers to local subscribers. Each tracked participant gets its own
    presence channel keyed by its presence key; presence payloads carry the
    join time so arrival order can be rebuilt from ``presence_state``.

    Realtime callbacks fire synchronously, so inbound broadcasts, local
    deliveries and presence syncs are queued per room and run one at a time
    by a single consumer task. A handler therefore sees a room's events in
    the order they arrived.
    """

    def __init__(self, client) -> None:
        self.client = client
        self.channels: Dict[str, object] = {}
        self.handlers: Dict[str, list[Handler]] = {}
        self.presence_channels: Dict[tuple[str, str], object] = {}
        self.queues: Dict[str, asyncio.Queue] = {}
        self.consumers: Dict[str, asyncio.Task] = {}

    def _topic(self, room_id: str) -> str:
        return f"room:{room_id}"

    def _queue(self, room_id: str) -> asyncio.Queue:
        queue = self.queues.get(room_id)
        if queue is None:
            queue = self.queues[room_id] = asyncio.Queue()
            self.consumers[room_id] = asyncio.create_task(self._consume(room_id, queue))
        return queue

    async def _consume(self, room_id: str, queue: asyncio.Queue) -> None:
        while True:
            job = await queue.get()
            try:
                await job()
            except Exception:
                logger.exception("Realtime event for room %s failed", room_id)

    def _close_if_idle(self, room_id: str) -> None:
        if room_id in self.handlers or any(room == room_id for room, _ in self.presence_channels):
            return
        self.queues.pop(room_id, None)
        consumer = self.consumers.pop(room_id, None)
        if consumer is not None:
            consumer.cancel()

    async def _channel(self, room_id: str):
        channel = self.channels.get(room_id)
        if channel is not None:
            return channel
        queue = self._queue(room_id)
        channel = self.client.channel(self._topic(room_id), {"config": {"broadcast": {"self": False}}})
        channel.on_broadcast(
            SIGNAL_EVENT,
            lambda message: queue.put_nowait(partial(self._deliver, room_id, message.get("payload", message))),
        )
        await channel.subscribe()
        self.channels[room_id] = channel
        return channel

    async def _deliver(self, room_id: str, payload: dict) -> None:
        for handler in list(self.handlers.get(room_id, [])):
            try:
                await handler(payload)
            except Exception:
                logger.exception("Delivery to a subscriber of %s failed", room_id)

    async def subscribe(self, room_id: str, handler: Handler) -> None:
        await self._channel(room_id)
        self.handlers.setdefault(room_id, []).append(handler)

    async def unsubscribe(self, room_id: str, handler: Handler) -> None:
        handlers = self.handlers.get(room_id, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self.handlers.pop(room_id, None)
            channel = self.channels.pop(room_id, None)
            if channel is not None:
                await channel.unsubscribe()
            self._close_if_idle(room_id)

    async def publish(self, room_id: str, payload: dict) -> None:
        channel = await self._channel(room_id)
        await channel.send_broadcast(SIGNAL_EVENT, payload)
        self._queue(room_id).put_nowait(partial(self._deliver, room_id, payload))

    async def track(self, room_id: str, entry: PresenceEntry, on_sync: PresenceHandler) -> None:
        queue = self._queue(room_id)
        channel = self.client.channel(
            self._topic(room_id),
            {"config": {"broadcast": {"self": False}, "presence": {"key": entry.key}}},
        )
        channel.on_presence_sync(lambda: queue.put_nowait(lambda: on_sync(_ordered(channel))))
        await channel.subscribe()
        self.presence_channels[(room_id, entry.key)] = channel
        await channel.track(entry.model_dump(mode="json"))
        logger.info("%s joined room %s", entry.identity, room_id)

    async def untrack(self, room_id: str, key: str) -> None:
        channel = self.presence_channels.pop((room_id, key), None)
        if channel is None:
            return
        try:
            await channel.untrack()
            await channel.unsubscribe()
        finally:
            self._close_if_idle(room_id)

    def presence_state(self, room_id: str) -> list[PresenceEntry]:
        channel = next(
            (channel for (room, _), channel in self.presence_channels.items() if room == room_id),
            None,
        )
        return _ordered(channel) if channel is not None else []


def _ordered(channel) -> list[PresenceEntry]:
    entries: list[PresenceEntry] = []
    for metas in channel.presence_state().values():
        for meta in metas:
            entry = _entry(meta)
            if entry:
                entries.append(entry)
    return sorted(entries, key=lambda entry: (entry.joined_at, entry.key))


def _entry(meta: dict) -> Optional[PresenceEntry]:
    try:
        return PresenceEntry(
            key=meta["key"],
            identity=meta.get("identity", ""),
            joined_at=meta.get("joined_at") or datetime.utcnow(),
        )
    except KeyError:
        logger.warning("Ignoring presence entry without a key: %s", meta)
        return None


async def create_realtime_channel(supabase_url: str, supabase_key: str) -> SupabaseRoomChannel:
    from supabase import acreate_client

    client = await acreate_client(supabase_url, supabase_key)
    return SupabaseRoomChannel(client)
