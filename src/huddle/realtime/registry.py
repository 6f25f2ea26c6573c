"""Session registry mapping live connections to user identities.

The registry is injected wherever it is needed so that a shared store can
replace the in-memory default when more than one server process owns
connections.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Protocol


class SessionRegistry(Protocol):
    """Bidirectional connection ↔ user mapping with per-user live counts."""

    async def add(self, connection_id: str, user_id: int) -> int:
        """Register a connection and return the user's live connection count."""
        ...

    async def remove(self, connection_id: str) -> tuple[int | None, int]:
        """Forget a connection.

        Returns ``(user_id, remaining)``; ``(None, 0)`` for unknown ids so every
        disconnect path may call it.
        """
        ...

    async def user_for(self, connection_id: str) -> int | None: ...

    async def connections_for(self, user_id: int) -> frozenset[str]: ...

    async def count(self, user_id: int) -> int: ...

    async def online_user_ids(self) -> frozenset[int]: ...


# TODO: Redis-backed registry so live counts (and therefore presence) span server processes.
class InMemorySessionRegistry:
    """Process-local registry guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._user_by_connection: dict[str, int] = {}
        self._connections_by_user: dict[int, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def add(self, connection_id: str, user_id: int) -> int:
        async with self._lock:
            previous = self._user_by_connection.get(connection_id)
            if previous is not None and previous != user_id:
                self._discard(connection_id, previous)
            self._user_by_connection[connection_id] = user_id
            self._connections_by_user[user_id].add(connection_id)
            return len(self._connections_by_user[user_id])

    async def remove(self, connection_id: str) -> tuple[int | None, int]:
        async with self._lock:
            user_id = self._user_by_connection.pop(connection_id, None)
            if user_id is None:
                return None, 0
            remaining = self._discard(connection_id, user_id)
            return user_id, remaining

    async def user_for(self, connection_id: str) -> int | None:
        async with self._lock:
            return self._user_by_connection.get(connection_id)

    async def connections_for(self, user_id: int) -> frozenset[str]:
        async with self._lock:
            return frozenset(self._connections_by_user.get(user_id, ()))

    async def count(self, user_id: int) -> int:
        async with self._lock:
            return len(self._connections_by_user.get(user_id, ()))

    async def online_user_ids(self) -> frozenset[int]:
        async with self._lock:
            return frozenset(self._connections_by_user)

    def _discard(self, connection_id: str, user_id: int) -> int:
        sockets = self._connections_by_user.get(user_id)
        if not sockets:
            return 0
        sockets.discard(connection_id)
        if not sockets:
            self._connections_by_user.pop(user_id, None)
            return 0
        return len(sockets)
