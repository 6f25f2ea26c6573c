"""Read receipts and unread counts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from sqlalchemy import ColumnElement, and_, exists, func, select
from sqlalchemy.orm import Session

from huddle.db.session import dialect_insert
from huddle.db.time import utcnow
from huddle.models import ConversationParticipant, Message, MessageReadStatus
from huddle.realtime.hub import RoomHub, conversation_room
from huddle.realtime.registry import SessionRegistry
from huddle.services.errors import write_transaction
from huddle.services.membership import require_participant

logger = logging.getLogger(__name__)


def _not_read_by(user_id: int) -> ColumnElement[bool]:
    return ~exists().where(
        MessageReadStatus.message_id == Message.id,
        MessageReadStatus.user_id == user_id,
    )


class ReadReceiptTracker:
    """Records one read row per (message, reader) and computes unread counts."""

    def __init__(self, hub: RoomHub, registry: SessionRegistry) -> None:
        self.hub = hub
        self.registry = registry

    def eligible_ids(
        self,
        db: Session,
        reader_id: int,
        message_ids: Iterable[int],
        conversation_id: int | None = None,
        unread_only: bool = False,
    ) -> list[int]:
        """Filter ids down to visible messages authored by someone else.

        With ``unread_only`` messages the reader already has a read row for
        are dropped as well.
        """
        ids = sorted(set(message_ids))
        if not ids:
            return []
        stmt = (
            select(Message.id)
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Message.conversation_id,
                    ConversationParticipant.user_id == reader_id,
                    ConversationParticipant.is_active.is_(True),
                ),
            )
            .where(
                Message.id.in_(ids),
                Message.deleted_at.is_(None),
                Message.sender_id != reader_id,
            )
            .order_by(Message.id)
        )
        if conversation_id is not None:
            stmt = stmt.where(Message.conversation_id == conversation_id)
        if unread_only:
            stmt = stmt.where(_not_read_by(reader_id))
        return list(db.scalars(stmt))

    def mark_read(
        self,
        db: Session,
        reader_id: int,
        message_ids: Iterable[int],
        conversation_id: int | None = None,
    ) -> list[int]:
        """Insert missing read rows; duplicates are ignored.

        Returns:
            The ids that had no read row for the reader before this call.
        """
        ids = self.eligible_ids(db, reader_id, message_ids, conversation_id, unread_only=True)
        if not ids:
            return []
        read_at = utcnow()
        stmt = (
            dialect_insert(db, MessageReadStatus.__table__)
            .values(
                [
                    {"message_id": message_id, "user_id": reader_id, "read_at": read_at}
                    for message_id in ids
                ]
            )
            .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
        )
        with write_transaction(db, "mark messages as read"):
            db.execute(stmt)
        return ids

    def unread_ids(self, db: Session, reader_id: int, conversation_id: int) -> list[int]:
        return list(
            db.scalars(
                select(Message.id)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.deleted_at.is_(None),
                    Message.sender_id != reader_id,
                    _not_read_by(reader_id),
                )
                .order_by(Message.id)
            )
        )

    def unread_count(self, db: Session, reader_id: int, conversation_id: int) -> int:
        return self.unread_counts(db, reader_id, [conversation_id]).get(conversation_id, 0)

    def unread_counts(
        self, db: Session, reader_id: int, conversation_ids: Iterable[int]
    ) -> dict[int, int]:
        ids = list(conversation_ids)
        counts = {conversation_id: 0 for conversation_id in ids}
        if not ids:
            return counts
        rows = db.execute(
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(ids),
                Message.deleted_at.is_(None),
                Message.sender_id != reader_id,
                _not_read_by(reader_id),
            )
            .group_by(Message.conversation_id)
        )
        for conversation_id, count in rows:
            counts[conversation_id] = count
        return counts

    def mark_conversation_read(
        self, db: Session, reader_id: int, conversation_id: int
    ) -> list[int]:
        require_participant(db, conversation_id, reader_id)
        return self.mark_read(
            db, reader_id, self.unread_ids(db, reader_id, conversation_id), conversation_id
        )

    async def acknowledge(
        self,
        db: Session,
        reader_id: int,
        conversation_id: int,
        message_ids: Iterable[int] | None = None,
    ) -> list[int]:
        """Mark messages read and tell the other room members.

        Without ``message_ids`` every unread message of the conversation is
        marked. ``messages_read`` is only broadcast when something was newly
        marked, so re-reading the same page stays silent.
        """
        ids = await asyncio.to_thread(
            self._acknowledge,
            db,
            reader_id,
            conversation_id,
            None if message_ids is None else list(message_ids),
        )
        if ids:
            exclude = await self.registry.connections_for(reader_id)
            await self.hub.emit(
                conversation_room(conversation_id),
                "messages_read",
                {"conversationId": conversation_id, "readBy": reader_id, "messageIds": ids},
                exclude=exclude,
            )
        return ids

    def _acknowledge(
        self,
        db: Session,
        reader_id: int,
        conversation_id: int,
        message_ids: list[int] | None,
    ) -> list[int]:
        require_participant(db, conversation_id, reader_id)
        if message_ids is None:
            return self.mark_conversation_read(db, reader_id, conversation_id)
        return self.mark_read(db, reader_id, message_ids, conversation_id)
