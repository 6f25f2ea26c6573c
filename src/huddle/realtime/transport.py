"""Broadcast transports carrying room events to the connections that own them.

``LocalBroadcastTransport`` hands events straight back to the local hub and is
the default for a single server process. ``RedisBroadcastTransport`` publishes
every event on a Redis channel per room and delivers what it receives from
Redis to the local hub, so several processes can share rooms.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

Deliver = Callable[[str, str, dict[str, Any], frozenset[str]], Awaitable[None]]


class BroadcastTransport(Protocol):
    """Publish/subscribe seam between the room hub and other server processes."""

    def bind(self, deliver: Deliver) -> None:
        """Register the callback that fans an event out to local connections."""
        ...

    async def publish(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Iterable[str] = (),
    ) -> None: ...

    async def subscribe(self, room: str) -> None: ...

    async def unsubscribe(self, room: str) -> None: ...

    async def start(self) -> None: ...

    async def close(self) -> None: ...


class LocalBroadcastTransport:
    """In-process transport: publishing is local delivery."""

    def __init__(self) -> None:
        self._deliver: Deliver | None = None

    def bind(self, deliver: Deliver) -> None:
        self._deliver = deliver

    async def publish(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Iterable[str] = (),
    ) -> None:
        if self._deliver is None:
            raise RuntimeError("Transport is not bound to a hub")
        await self._deliver(room, event, data, frozenset(exclude))

    async def subscribe(self, room: str) -> None:
        return None

    async def unsubscribe(self, room: str) -> None:
        return None

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class RedisBroadcastTransport:
    """Redis pub/sub transport; one channel per room with local subscribers."""

    def __init__(
        self,
        url: str,
        channel_prefix: str = "huddle:room:",
        client: aioredis.Redis | None = None,
        poll_timeout: float = 1.0,
    ) -> None:
        self._redis = client or aioredis.from_url(url)
        self._prefix = channel_prefix
        self._poll_timeout = poll_timeout
        self._pubsub: Any = None
        self._deliver: Deliver | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    def bind(self, deliver: Deliver) -> None:
        self._deliver = deliver

    def channel_for(self, room: str) -> str:
        return f"{self._prefix}{room}"

    async def publish(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Iterable[str] = (),
    ) -> None:
        envelope = json.dumps({"event": event, "data": data, "exclude": sorted(exclude)})
        await self._redis.publish(self.channel_for(room), envelope)

    async def subscribe(self, room: str) -> None:
        await self._ensure_pubsub().subscribe(self.channel_for(room))

    async def unsubscribe(self, room: str) -> None:
        if self._pubsub is None:
            return
        await self._pubsub.unsubscribe(self.channel_for(room))

    async def start(self) -> None:
        """Start the background listener that feeds the local hub."""
        self._ensure_pubsub()
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._listen())

    async def close(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        await self._redis.aclose()

    def _ensure_pubsub(self) -> Any:
        if self._pubsub is None:
            self._pubsub = self._redis.pubsub()
        return self._pubsub

    async def _listen(self) -> None:
        while not self._stopping.is_set():
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self._poll_timeout,
                )
            except (OSError, ConnectionError, aioredis.RedisError) as e:
                logger.warning("Redis broadcast listener error: %s", e)
                await asyncio.sleep(self._poll_timeout)
                continue
            if message is None:
                continue
            await self.handle_message(message)

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Decode one pub/sub message and deliver it to local connections."""
        if self._deliver is None:
            return
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode()
        if not isinstance(channel, str) or not channel.startswith(self._prefix):
            return
        room = channel[len(self._prefix):]
        try:
            envelope = json.loads(message.get("data") or b"")
            event = envelope["event"]
            data = envelope.get("data") or {}
            exclude = frozenset(envelope.get("exclude") or ())
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Dropping malformed broadcast on %s: %s", channel, e)
            return
        await self._deliver(room, event, data, exclude)


def build_transport(backend: str, *, redis_url: str, channel_prefix: str) -> BroadcastTransport:
    """Return the transport configured by ``BROADCAST_BACKEND``."""
    if backend == "redis":
        return RedisBroadcastTransport(redis_url, channel_prefix=channel_prefix)
    return LocalBroadcastTransport()
