"""Real-time connection handling: sessions, rooms, fan-out, and the gateway."""

from .connection import Connection
from .hub import PRESENCE_ROOM, RoomHub, conversation_room, user_room
from .registry import InMemorySessionRegistry, SessionRegistry
from .transport import BroadcastTransport, LocalBroadcastTransport, RedisBroadcastTransport

__all__ = [
    "Connection",
    "PRESENCE_ROOM", "RoomHub", "conversation_room", "user_room",
    "InMemorySessionRegistry", "SessionRegistry",
    "BroadcastTransport", "LocalBroadcastTransport", "RedisBroadcastTransport",
]
