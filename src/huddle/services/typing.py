"""Typing indicators kept in a TTL-indexed map with a background sweeper."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from huddle.realtime.connection import Connection
from huddle.realtime.hub import RoomHub, conversation_room
from huddle.realtime.registry import SessionRegistry
from huddle.services.errors import AccessDenied

logger = logging.getLogger(__name__)


@dataclass
class TypingEntry:
    username: str
    expires_at: float


class TypingCoordinator:
    """Tracks who is typing where, keyed by ``(conversation_id, user_id)``.

    Entries expire ``timeout`` seconds after the last ``typing_start``. Expiry
    uses a monotonic clock that tests can replace.
    """

    def __init__(
        self,
        hub: RoomHub,
        registry: SessionRegistry,
        timeout: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.hub = hub
        self.registry = registry
        self.timeout = timeout
        self._clock = clock
        self._entries: dict[tuple[int, int], TypingEntry] = {}

    async def start_typing(self, connection: Connection, conversation_id: int) -> None:
        self._require_room(connection, conversation_id)
        self._entries[(conversation_id, connection.user_id)] = TypingEntry(
            username=connection.username,
            expires_at=self._clock() + self.timeout,
        )
        await self._broadcast(conversation_id, connection.user_id, connection.username, True)

    async def stop_typing(self, connection: Connection, conversation_id: int) -> None:
        self._require_room(connection, conversation_id)
        self._entries.pop((conversation_id, connection.user_id), None)
        await self._broadcast(conversation_id, connection.user_id, connection.username, False)

    def is_typing(self, conversation_id: int, user_id: int) -> bool:
        entry = self._entries.get((conversation_id, user_id))
        return entry is not None and entry.expires_at > self._clock()

    def typing_users(self, conversation_id: int) -> list[int]:
        now = self._clock()
        return sorted(
            user_id
            for (conv_id, user_id), entry in self._entries.items()
            if conv_id == conversation_id and entry.expires_at > now
        )

    async def sweep(self, now: float | None = None) -> list[tuple[int, int]]:
        """Drop expired indicators and broadcast ``isTyping: false`` for each."""
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            entry = self._entries.pop(key)
            conversation_id, user_id = key
            await self._broadcast(conversation_id, user_id, entry.username, False)
        return expired

    async def clear_user(self, user_id: int) -> list[int]:
        """Stop every indicator of a user whose last connection closed."""
        keys = [key for key in self._entries if key[1] == user_id]
        for key in keys:
            entry = self._entries.pop(key)
            await self._broadcast(key[0], user_id, entry.username, False)
        return [conversation_id for conversation_id, _ in keys]

    def _require_room(self, connection: Connection, conversation_id: int) -> None:
        if not self.hub.in_room(conversation_room(conversation_id), connection):
            raise AccessDenied("Access denied to conversation")

    async def _broadcast(
        self, conversation_id: int, user_id: int, username: str, is_typing: bool
    ) -> None:
        exclude = await self.registry.connections_for(user_id)
        await self.hub.emit(
            conversation_room(conversation_id),
            "user_typing",
            {
                "conversationId": conversation_id,
                "userId": user_id,
                "username": username,
                "isTyping": is_typing,
            },
            exclude=exclude,
        )


class TypingSweeper:
    """Runs ``TypingCoordinator.sweep`` periodically in the background."""

    def __init__(self, coordinator: TypingCoordinator, interval: float = 1.0) -> None:
        self.coordinator = coordinator
        self.interval = max(0.05, float(interval))
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.coordinator.sweep()
            except Exception:
                logger.exception("Typing sweep failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except TimeoutError:
                continue
