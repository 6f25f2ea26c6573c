"""Presence tracking driven by connection lifecycle and explicit status changes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from huddle.db.time import utcnow
from huddle.models import User, UserStatus
from huddle.realtime.connection import Connection
from huddle.realtime.hub import PRESENCE_ROOM, RoomHub
from huddle.realtime.registry import SessionRegistry
from huddle.services.errors import (
    MessagingError,
    NotFound,
    ValidationFailure,
    commit_or_raise,
)

logger = logging.getLogger(__name__)

SETTABLE_STATUSES = frozenset({UserStatus.ONLINE.value, UserStatus.AWAY.value})


def status_payload(user_id: int, status: str, last_seen: datetime | None) -> dict[str, Any]:
    return {
        "userId": user_id,
        "status": status,
        "lastSeen": last_seen.isoformat() if last_seen else None,
    }


class PresenceTracker:
    """Derives online/offline transitions from the per-user live connection count.

    Only the first connection (0 -> 1) and the last disconnection (1 -> 0)
    change the persisted status, so a user with several tabs open stays
    online until every tab is gone.
    """

    def __init__(self, hub: RoomHub, registry: SessionRegistry) -> None:
        self.hub = hub
        self.registry = registry

    async def connected(self, db: Session, connection: Connection) -> int:
        """Register a connection and announce the user if it is their first.

        Returns:
            The user's live connection count after registering.
        """
        count = await self.registry.add(connection.id, connection.user_id)
        if count == 1:
            last_seen = await asyncio.to_thread(
                self._persist, db, connection.user_id, UserStatus.ONLINE.value
            )
            await self.announce(connection.user_id, UserStatus.ONLINE.value, last_seen)
        return count

    async def disconnected(self, db: Session, connection: Connection) -> bool:
        """Forget a connection; returns True when the user went offline."""
        user_id, remaining = await self.registry.remove(connection.id)
        if user_id is None or remaining > 0:
            return False

        last_seen = utcnow()
        try:
            last_seen = await asyncio.to_thread(
                self._persist, db, user_id, UserStatus.OFFLINE.value
            )
        except (MessagingError, SQLAlchemyError) as e:
            logger.warning("Could not persist offline status for user %s: %s", user_id, e)
        await self.announce(user_id, UserStatus.OFFLINE.value, last_seen)
        return True

    async def set_status(self, db: Session, user_id: int, status: str) -> datetime:
        """Persist an explicit ``online``/``away`` status and broadcast it."""
        if status not in SETTABLE_STATUSES:
            raise ValidationFailure("Status must be 'online' or 'away'")
        last_seen = await asyncio.to_thread(self._persist, db, user_id, status)
        await self.announce(user_id, status, last_seen)
        return last_seen

    async def announce(
        self, user_id: int, status: str, last_seen: datetime | None
    ) -> None:
        exclude = await self.registry.connections_for(user_id)
        await self.hub.emit(
            PRESENCE_ROOM,
            "user_status_changed",
            status_payload(user_id, status, last_seen),
            exclude=exclude,
        )

    def _persist(self, db: Session, user_id: int, status: str) -> datetime:
        user = db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        now = utcnow()
        user.status = status
        user.last_seen = now
        commit_or_raise(db, "update presence")
        return now
