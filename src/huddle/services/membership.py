"""Room membership: who may see a conversation and which rooms they sit in."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from huddle.models import ConversationParticipant
from huddle.realtime.connection import Connection
from huddle.realtime.hub import RoomHub, conversation_room
from huddle.realtime.registry import SessionRegistry
from huddle.services.errors import AccessDenied

logger = logging.getLogger(__name__)


def active_participant(
    db: Session, conversation_id: int, user_id: int
) -> ConversationParticipant | None:
    return db.scalar(
        select(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
            ConversationParticipant.is_active.is_(True),
        )
    )


def is_active_participant(db: Session, conversation_id: int, user_id: int) -> bool:
    return active_participant(db, conversation_id, user_id) is not None


def require_participant(
    db: Session, conversation_id: int, user_id: int
) -> ConversationParticipant:
    """Return the caller's active participant row or raise ``AccessDenied``."""
    participant = active_participant(db, conversation_id, user_id)
    if participant is None:
        raise AccessDenied("Access denied to conversation")
    return participant


def active_conversation_ids(db: Session, user_id: int) -> list[int]:
    return list(
        db.scalars(
            select(ConversationParticipant.conversation_id)
            .where(
                ConversationParticipant.user_id == user_id,
                ConversationParticipant.is_active.is_(True),
            )
            .order_by(ConversationParticipant.conversation_id)
        )
    )


def active_participant_ids(db: Session, conversation_id: int) -> list[int]:
    return list(
        db.scalars(
            select(ConversationParticipant.user_id)
            .where(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.is_active.is_(True),
            )
            .order_by(ConversationParticipant.user_id)
        )
    )


class RoomMembershipResolver:
    """Keeps live connections in the rooms of the conversations they belong to."""

    def __init__(self, hub: RoomHub, registry: SessionRegistry) -> None:
        self.hub = hub
        self.registry = registry

    async def join_all(self, db: Session, connection: Connection) -> list[int]:
        """Join every conversation room the user is active in; returns the ids."""
        conversation_ids = await asyncio.to_thread(
            active_conversation_ids, db, connection.user_id
        )
        for conversation_id in conversation_ids:
            await self.hub.join(conversation_room(conversation_id), connection)
        return conversation_ids

    async def join_one(
        self, db: Session, connection: Connection, conversation_id: int
    ) -> None:
        """Join one conversation room after checking the participant row.

        Raises:
            AccessDenied: If the user holds no active row for the conversation.
        """
        await asyncio.to_thread(require_participant, db, conversation_id, connection.user_id)
        await self.hub.join(conversation_room(conversation_id), connection)
        await self.hub.emit(
            conversation_room(conversation_id),
            "user_joined_conversation",
            {
                "userId": connection.user_id,
                "username": connection.username,
                "conversationId": conversation_id,
            },
            exclude={connection.id},
        )

    async def leave_one(self, connection: Connection, conversation_id: int) -> None:
        room = conversation_room(conversation_id)
        if not await self.hub.leave(room, connection):
            return
        await self.hub.emit(
            room,
            "user_left_conversation",
            {
                "userId": connection.user_id,
                "username": connection.username,
                "conversationId": conversation_id,
            },
        )

    async def attach_user(self, user_id: int, conversation_id: int) -> None:
        """Put every live connection of a user into a conversation room."""
        room = conversation_room(conversation_id)
        for connection in self.hub.connections_of(user_id):
            await self.hub.join(room, connection)

    async def detach_user(self, user_id: int, conversation_id: int) -> None:
        """Take every live connection of a user out of a conversation room."""
        room = conversation_room(conversation_id)
        for connection in self.hub.connections_of(user_id):
            await self.hub.leave(room, connection)
