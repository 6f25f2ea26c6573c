"""Message delivery pipeline: validate, persist, re-hydrate, fan out.

Nothing is broadcast until the write is committed, and the broadcast payload
is always built from a fresh read of the committed row.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Select, and_, func, select
from sqlalchemy.orm import Session, aliased

from huddle.core.settings import settings
from huddle.db.time import as_utc, utcnow
from huddle.models import Conversation, ConversationParticipant, Message, User
from huddle.realtime.hub import RoomHub, conversation_room, user_room
from huddle.schemas.message import (
    HistoryPage,
    MessageOut,
    MessageWithReactions,
    ReplyPreview,
    SenderSummary,
)
from huddle.services.errors import NotFound, ValidationFailure, write_transaction
from huddle.services.membership import (
    active_participant_ids,
    is_active_participant,
    require_participant,
)
from huddle.services.reactions import ReactionAggregator
from huddle.services.read_receipts import ReadReceiptTracker

logger = logging.getLogger(__name__)

MAX_MESSAGE_TYPE_LENGTH = 32
NOTIFICATION_PREVIEW_LENGTH = 50

Sender = aliased(User, name="sender")
ReplyTarget = aliased(Message, name="reply_target")
ReplySender = aliased(User, name="reply_sender")


def message_payload(message: MessageOut) -> dict[str, Any]:
    return message.model_dump(mode="json", by_alias=True)


def notification_preview(content: str) -> str:
    if len(content) <= NOTIFICATION_PREVIEW_LENGTH:
        return content
    return content[:NOTIFICATION_PREVIEW_LENGTH] + "..."


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _hydrated_select() -> Select[Any]:
    return (
        select(Message, Sender, ReplyTarget, ReplySender)
        .join(Sender, Sender.id == Message.sender_id)
        .outerjoin(ReplyTarget, ReplyTarget.id == Message.reply_to_id)
        .outerjoin(ReplySender, ReplySender.id == ReplyTarget.sender_id)
    )


def _to_out(
    message: Message, sender: User, reply: Message | None, reply_sender: User | None
) -> MessageOut:
    reply_to = None
    if reply is not None:
        deleted = reply.deleted_at is not None
        reply_to = ReplyPreview(
            id=reply.id,
            sender_id=reply.sender_id,
            sender_name=reply_sender.display_name if reply_sender else None,
            content=None if deleted else reply.content,
            deleted=deleted,
        )
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        sender=SenderSummary(
            id=sender.id,
            username=sender.username,
            display_name=sender.display_name,
            avatar_url=sender.avatar_url,
        ),
        content=message.content,
        message_type=message.message_type,
        reply_to_id=message.reply_to_id,
        reply_to=reply_to,
        created_at=message.created_at,
        edited_at=message.edited_at,
    )


class MessageDeliveryPipeline:
    """Send, edit, delete, and read messages of a conversation."""

    def __init__(
        self,
        hub: RoomHub,
        receipts: ReadReceiptTracker,
        reactions: ReactionAggregator,
        max_length: int | None = None,
        page_size: int | None = None,
        max_page_size: int | None = None,
    ) -> None:
        self.hub = hub
        self.receipts = receipts
        self.reactions = reactions
        self.max_length = max_length or settings.max_message_length
        self.page_size = page_size or settings.history_page_size
        self.max_page_size = max_page_size or settings.history_max_page_size

    def validate_content(self, content: str | None) -> str:
        text = (content or "").strip()
        if not text:
            raise ValidationFailure("Conversation ID and content are required")
        if len(text) > self.max_length:
            raise ValidationFailure(
                f"Message content exceeds {self.max_length} characters"
            )
        return text

    @staticmethod
    def validate_message_type(message_type: str | None) -> str:
        kind = (message_type or "").strip()
        if not kind or len(kind) > MAX_MESSAGE_TYPE_LENGTH:
            raise ValidationFailure(
                f"Message type must be between 1 and {MAX_MESSAGE_TYPE_LENGTH} characters"
            )
        return kind

    async def send_message(
        self,
        db: Session,
        sender_id: int,
        conversation_id: int,
        content: str | None,
        message_type: str | None = "text",
        reply_to_id: int | None = None,
    ) -> MessageOut:
        """Persist a message and broadcast it to the conversation room.

        Raises:
            ValidationFailure: Empty or oversized content, bad message type.
            AccessDenied: The sender is not an active participant.
            NotFound: The reply target is missing, deleted, or in another conversation.
            InfrastructureFailure: The write failed; nothing was broadcast.
        """
        text = self.validate_content(content)
        kind = self.validate_message_type(message_type)
        hydrated, recipients = await asyncio.to_thread(
            self._insert_message, db, sender_id, conversation_id, text, kind, reply_to_id
        )
        await self.hub.emit(
            conversation_room(conversation_id),
            "new_message",
            {"conversationId": conversation_id, "message": message_payload(hydrated)},
        )
        await self._notify_participants(hydrated, recipients)
        return hydrated

    def _insert_message(
        self,
        db: Session,
        sender_id: int,
        conversation_id: int,
        text: str,
        kind: str,
        reply_to_id: int | None,
    ) -> tuple[MessageOut, list[int]]:
        require_participant(db, conversation_id, sender_id)

        if reply_to_id is not None:
            target = db.get(Message, reply_to_id)
            if (
                target is None
                or target.conversation_id != conversation_id
                or target.deleted_at is not None
            ):
                raise NotFound("Reply-to message not found")

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=text,
            message_type=kind,
            reply_to_id=reply_to_id,
            created_at=utcnow(),
        )
        with write_transaction(db, "send message"):
            db.add(message)
            db.flush()
            conversation = db.get(Conversation, conversation_id)
            if conversation is not None:
                current = as_utc(conversation.last_message_at)
                if current is None or current < message.created_at:
                    conversation.last_message_at = message.created_at

        recipients = [
            participant_id
            for participant_id in active_participant_ids(db, conversation_id)
            if participant_id != sender_id
        ]
        return self.hydrate(db, message.id), recipients

    async def edit_message(
        self, db: Session, editor_id: int, message_id: int, content: str | None
    ) -> MessageOut:
        text = self.validate_content(content)
        hydrated = await asyncio.to_thread(self._apply_edit, db, editor_id, message_id, text)
        await self.hub.emit(
            conversation_room(hydrated.conversation_id),
            "message_edited",
            {
                "conversationId": hydrated.conversation_id,
                "messageId": hydrated.id,
                "message": message_payload(hydrated),
            },
        )
        return hydrated

    def _apply_edit(self, db: Session, editor_id: int, message_id: int, text: str) -> MessageOut:
        message = self._owned_message(db, editor_id, message_id)
        with write_transaction(db, "edit message"):
            message.content = text
            message.edited_at = utcnow()
        return self.hydrate(db, message.id)

    async def delete_message(self, db: Session, actor_id: int, message_id: int) -> Message:
        """Tombstone a message; the row is kept but hidden from every read."""
        message = await asyncio.to_thread(self._apply_delete, db, actor_id, message_id)
        await self.hub.emit(
            conversation_room(message.conversation_id),
            "message_deleted",
            {
                "conversationId": message.conversation_id,
                "messageId": message.id,
                "deletedAt": as_utc(message.deleted_at).isoformat(),
            },
        )
        return message

    def _apply_delete(self, db: Session, actor_id: int, message_id: int) -> Message:
        message = self._owned_message(db, actor_id, message_id)
        with write_transaction(db, "delete message"):
            message.deleted_at = utcnow()
        return message

    async def list_history(
        self,
        db: Session,
        reader_id: int,
        conversation_id: int,
        limit: int | None = None,
        before_id: int | None = None,
    ) -> HistoryPage:
        """Return the newest page before ``before_id``, oldest message first.

        The returned messages are marked read for the reader.
        """
        page = await asyncio.to_thread(
            self.history_page, db, reader_id, conversation_id, limit, before_id
        )
        if page.messages:
            await self.receipts.acknowledge(
                db, reader_id, conversation_id, [item.id for item in page.messages]
            )
        return page

    def history_page(
        self,
        db: Session,
        reader_id: int,
        conversation_id: int,
        limit: int | None = None,
        before_id: int | None = None,
    ) -> HistoryPage:
        require_participant(db, conversation_id, reader_id)
        page_size = max(1, min(limit or self.page_size, self.max_page_size))

        stmt = _hydrated_select().where(
            Message.conversation_id == conversation_id,
            Message.deleted_at.is_(None),
        )
        if before_id is not None:
            stmt = stmt.where(Message.id < before_id)
        rows = db.execute(stmt.order_by(Message.id.desc()).limit(page_size + 1)).all()

        has_more = len(rows) > page_size
        rows = list(reversed(rows[:page_size]))
        messages = [_to_out(*row) for row in rows]
        tallies = self.reactions.tallies(db, [message.id for message in messages])
        items = [
            MessageWithReactions(**message.model_dump(), reactions=tallies.get(message.id, []))
            for message in messages
        ]
        return HistoryPage(
            messages=items,
            has_more=has_more,
            next_before=items[0].id if has_more and items else None,
        )

    def search_messages(
        self,
        db: Session,
        user_id: int,
        query: str | None,
        conversation_id: int | None = None,
        limit: int | None = None,
    ) -> list[MessageOut]:
        """Case-insensitive substring search over the user's conversations."""
        term = (query or "").strip()
        if not term:
            raise ValidationFailure("Search query is required")
        if conversation_id is not None:
            require_participant(db, conversation_id, user_id)
        page_size = max(1, min(limit or self.page_size, self.max_page_size))

        stmt = (
            _hydrated_select()
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Message.conversation_id,
                    ConversationParticipant.user_id == user_id,
                    ConversationParticipant.is_active.is_(True),
                ),
            )
            .where(
                Message.deleted_at.is_(None),
                Message.content.ilike(f"%{escape_like(term)}%", escape="\\"),
            )
        )
        if conversation_id is not None:
            stmt = stmt.where(Message.conversation_id == conversation_id)
        rows = db.execute(stmt.order_by(Message.id.desc()).limit(page_size)).all()
        return [_to_out(*row) for row in rows]

    def hydrate(self, db: Session, message_id: int) -> MessageOut:
        hydrated = self.hydrate_many(db, [message_id])
        if not hydrated:
            raise NotFound("Message not found or access denied")
        return hydrated[0]

    def hydrate_many(self, db: Session, message_ids: Iterable[int]) -> list[MessageOut]:
        ids = list(message_ids)
        if not ids:
            return []
        rows = db.execute(
            _hydrated_select()
            .where(Message.id.in_(ids))
            .order_by(Message.id)
            .execution_options(populate_existing=True)
        ).all()
        return [_to_out(*row) for row in rows]

    def latest_messages(
        self, db: Session, conversation_ids: Iterable[int]
    ) -> dict[int, MessageOut]:
        """Newest visible message of each conversation."""
        ids = list(conversation_ids)
        if not ids:
            return {}
        latest_ids = db.scalars(
            select(func.max(Message.id))
            .where(Message.conversation_id.in_(ids), Message.deleted_at.is_(None))
            .group_by(Message.conversation_id)
        )
        return {
            message.conversation_id: message
            for message in self.hydrate_many(db, latest_ids)
        }

    def _owned_message(self, db: Session, user_id: int, message_id: int) -> Message:
        message = db.get(Message, message_id)
        if (
            message is None
            or message.sender_id != user_id
            or message.deleted_at is not None
            or not is_active_participant(db, message.conversation_id, user_id)
        ):
            raise NotFound("Message not found or access denied")
        return message

    async def _notify_participants(self, message: MessageOut, recipients: list[int]) -> None:
        payload = {
            "conversationId": message.conversation_id,
            "messageId": message.id,
            "sender": message.sender.model_dump(mode="json"),
            "preview": notification_preview(message.content),
        }
        for participant_id in recipients:
            await self.hub.emit(user_room(participant_id), "message_notification", payload)
