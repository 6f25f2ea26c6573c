"""Reactions: one value per (message, user), broadcast as a full tally."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from huddle.db.session import dialect_insert
from huddle.db.time import utcnow
from huddle.models import Message, MessageReaction, User
from huddle.realtime.hub import RoomHub, conversation_room
from huddle.schemas.message import ReactionTally, ReactionUser
from huddle.services.errors import NotFound, ValidationFailure, write_transaction
from huddle.services.membership import is_active_participant

logger = logging.getLogger(__name__)

MAX_REACTION_LENGTH = 32


def validate_reaction(value: str | None) -> str:
    reaction = (value or "").strip()
    if not reaction or len(reaction) > MAX_REACTION_LENGTH:
        raise ValidationFailure(
            f"Reaction must be between 1 and {MAX_REACTION_LENGTH} characters"
        )
    return reaction


def serialize_tally(tally: list[ReactionTally]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json", by_alias=True) for item in tally]


class ReactionAggregator:
    """Upserts reactions and re-broadcasts the grouped tally after every change."""

    def __init__(self, hub: RoomHub) -> None:
        self.hub = hub

    def visible_message(self, db: Session, user_id: int, message_id: int) -> Message:
        message = db.get(Message, message_id)
        if (
            message is None
            or message.deleted_at is not None
            or not is_active_participant(db, message.conversation_id, user_id)
        ):
            raise NotFound("Message not found or access denied")
        return message

    async def add_reaction(
        self, db: Session, user_id: int, message_id: int, reaction: str
    ) -> list[ReactionTally]:
        """Set the user's reaction on a message, replacing any previous value."""
        value = validate_reaction(reaction)
        message, tally = await asyncio.to_thread(
            self._upsert, db, user_id, message_id, value
        )
        await self._publish(message, tally)
        return tally

    async def remove_reaction(
        self, db: Session, user_id: int, message_id: int
    ) -> list[ReactionTally]:
        """Delete the user's reaction.

        Raises:
            NotFound: If the message is not visible or the user has no reaction on it.
        """
        message, tally = await asyncio.to_thread(self._delete, db, user_id, message_id)
        await self._publish(message, tally)
        return tally

    def _upsert(
        self, db: Session, user_id: int, message_id: int, value: str
    ) -> tuple[Message, list[ReactionTally]]:
        message = self.visible_message(db, user_id, message_id)
        stmt = dialect_insert(db, MessageReaction.__table__).values(
            message_id=message.id,
            user_id=user_id,
            reaction=value,
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["message_id", "user_id"],
            set_={"reaction": stmt.excluded.reaction, "created_at": stmt.excluded.created_at},
        )
        with write_transaction(db, "add reaction"):
            db.execute(stmt)
        return message, self.tally(db, message.id)

    def _delete(
        self, db: Session, user_id: int, message_id: int
    ) -> tuple[Message, list[ReactionTally]]:
        message = self.visible_message(db, user_id, message_id)
        row = db.scalar(
            select(MessageReaction).where(
                MessageReaction.message_id == message.id,
                MessageReaction.user_id == user_id,
            )
        )
        if row is None:
            raise NotFound("Reaction not found")
        with write_transaction(db, "remove reaction"):
            db.delete(row)
        return message, self.tally(db, message.id)

    def tally(self, db: Session, message_id: int) -> list[ReactionTally]:
        return self.tallies(db, [message_id]).get(message_id, [])

    def tallies(
        self, db: Session, message_ids: Iterable[int]
    ) -> dict[int, list[ReactionTally]]:
        """Group reactions per message: count desc, then reaction value."""
        ids = list(message_ids)
        if not ids:
            return {}
        rows = db.execute(
            select(
                MessageReaction.message_id,
                MessageReaction.reaction,
                User.id,
                User.display_name,
            )
            .join(User, User.id == MessageReaction.user_id)
            .where(MessageReaction.message_id.in_(ids))
            .order_by(MessageReaction.created_at, MessageReaction.id)
        )
        grouped: dict[int, dict[str, list[ReactionUser]]] = defaultdict(dict)
        for message_id, reaction, reactor_id, display_name in rows:
            grouped[message_id].setdefault(reaction, []).append(
                ReactionUser(id=reactor_id, display_name=display_name)
            )

        result: dict[int, list[ReactionTally]] = {}
        for message_id, by_value in grouped.items():
            tallies = [
                ReactionTally(reaction=value, count=len(users), users=users)
                for value, users in by_value.items()
            ]
            tallies.sort(key=lambda item: (-item.count, item.reaction))
            result[message_id] = tallies
        return result

    async def _publish(self, message: Message, tally: list[ReactionTally]) -> None:
        await self.hub.emit(
            conversation_room(message.conversation_id),
            "message_reaction_updated",
            {
                "conversationId": message.conversation_id,
                "messageId": message.id,
                "reactions": serialize_tally(tally),
            },
        )
