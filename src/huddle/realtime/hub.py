"""Room hub: the connection multiplexer for room-based fan-out.

Rooms are plain strings. Every connection joins its personal room, the global
presence room, and one room per conversation it participates in. Emits go
through the broadcast transport; the transport calls back into ``deliver`` on
every process that has local members of the room.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from .connection import Connection
from .transport import BroadcastTransport, LocalBroadcastTransport

logger = logging.getLogger(__name__)

PRESENCE_ROOM = "presence"


def conversation_room(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


class RoomHub:
    """Tracks local connections and their rooms and delivers room events.

    Designed for a single asyncio event loop; it is not thread-safe.
    """

    def __init__(self, transport: BroadcastTransport | None = None) -> None:
        # connection_id -> Connection
        self._connections: dict[str, Connection] = {}
        # room -> connection ids
        self._rooms: dict[str, set[str]] = defaultdict(set)
        self.transport = transport or LocalBroadcastTransport()
        self.transport.bind(self.deliver)

    def attach(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    async def detach(self, connection: Connection) -> None:
        """Remove a connection from every room it joined and forget it."""
        for room in list(connection.rooms):
            await self.leave(room, connection)
        self._connections.pop(connection.id, None)

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def connections_of(self, user_id: int) -> list[Connection]:
        return [conn for conn in self._connections.values() if conn.user_id == user_id]

    async def join(self, room: str, connection: Connection) -> None:
        members = self._rooms[room]
        first_local_member = not members
        members.add(connection.id)
        connection.rooms.add(room)
        if first_local_member:
            await self.transport.subscribe(room)

    async def leave(self, room: str, connection: Connection) -> bool:
        """Leave a room; returns False if the connection was not in it."""
        connection.rooms.discard(room)
        members = self._rooms.get(room)
        if not members or connection.id not in members:
            return False
        members.discard(connection.id)
        if not members:
            self._rooms.pop(room, None)
            try:
                await self.transport.unsubscribe(room)
            except Exception as e:
                logger.warning("Failed to unsubscribe from room %s: %s", room, e)
        return True

    def in_room(self, room: str, connection: Connection) -> bool:
        return connection.id in self._rooms.get(room, ())

    def members(self, room: str) -> list[Connection]:
        return [
            self._connections[conn_id]
            for conn_id in self._rooms.get(room, ())
            if conn_id in self._connections
        ]

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def emit(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Iterable[str] = (),
    ) -> None:
        """Publish an event to every member of a room, except excluded connections."""
        await self.transport.publish(room, event, data, frozenset(exclude))

    async def deliver(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: frozenset[str] = frozenset(),
    ) -> None:
        """Send an event to local room members concurrently.

        Connections whose send fails are dropped from the room; the gateway
        finishes their cleanup when their receive loop ends.
        """
        targets = [conn for conn in self.members(room) if conn.id not in exclude]
        if not targets:
            return

        results = await asyncio.gather(
            *[conn.send(event, data) for conn in targets],
            return_exceptions=True,
        )

        for conn, delivered in zip(targets, results):
            if delivered is not True:
                logger.debug("Removed dead connection %s from room %s", conn.id, room)
                await self.leave(room, conn)
