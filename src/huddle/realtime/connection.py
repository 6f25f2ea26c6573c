"""Handle for one authenticated WebSocket connection."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """A live connection bound to the user identity verified at handshake.

    The sender identity of every command comes from here, never from the
    client payload.
    """

    websocket: WebSocket
    user_id: int
    username: str
    display_name: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: set[str] = field(default_factory=set)

    async def send(self, event: str, data: dict[str, Any]) -> bool:
        """Send one event frame.

        Returns:
            True if the frame was written, False if the socket is gone.
        """
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return False
        try:
            await self.websocket.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            logger.debug("Failed to send %s to connection %s: %s", event, self.id, e)
            return False
