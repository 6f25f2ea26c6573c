"""Conversation lifecycle: direct and group creation, membership, listing."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from huddle.db.time import utcnow
from huddle.models import (
    Conversation,
    ConversationParticipant,
    ConversationType,
    ParticipantRole,
    User,
)
from huddle.models.conversation import direct_key_for
from huddle.realtime.hub import RoomHub, conversation_room
from huddle.schemas.conversation import ConversationOut, ConversationSummary, ParticipantOut
from huddle.services.delivery import MessageDeliveryPipeline
from huddle.services.errors import (
    AccessDenied,
    InfrastructureFailure,
    NotFound,
    ValidationFailure,
    write_transaction,
)
from huddle.services.membership import RoomMembershipResolver, require_participant
from huddle.services.read_receipts import ReadReceiptTracker

logger = logging.getLogger(__name__)


class ConversationService:
    """Creates conversations and manages who participates in them.

    Membership changes are mirrored onto live connections through the
    ``RoomMembershipResolver`` so that new members start receiving room
    events without reconnecting.
    """

    def __init__(
        self,
        hub: RoomHub,
        membership: RoomMembershipResolver,
        receipts: ReadReceiptTracker,
        pipeline: MessageDeliveryPipeline,
    ) -> None:
        self.hub = hub
        self.membership = membership
        self.receipts = receipts
        self.pipeline = pipeline

    async def get_or_create_direct(
        self, db: Session, user_id: int, other_user_id: int
    ) -> tuple[ConversationOut, bool]:
        """Return the direct conversation between two users, creating it once.

        Returns:
            ``(conversation, created)``.
        """
        if other_user_id == user_id:
            raise ValidationFailure("Cannot start a conversation with yourself")
        conversation, created = await asyncio.to_thread(
            self._open_direct, db, user_id, other_user_id
        )
        if created:
            for member_id in (user_id, other_user_id):
                await self.membership.attach_user(member_id, conversation.id)
        return conversation, created

    def _open_direct(
        self, db: Session, user_id: int, other_user_id: int
    ) -> tuple[ConversationOut, bool]:
        if db.get(User, other_user_id) is None:
            raise NotFound("User not found")

        key = direct_key_for(user_id, other_user_id)
        existing = self._direct_by_key(db, key)
        if existing is not None:
            return self.describe(db, existing), False

        conversation = Conversation(
            type=ConversationType.DIRECT.value,
            direct_key=key,
            created_by=user_id,
            created_at=utcnow(),
        )
        conversation.participants = [
            ConversationParticipant(user_id=member_id, role=ParticipantRole.MEMBER.value)
            for member_id in sorted((user_id, other_user_id))
        ]
        db.add(conversation)
        try:
            db.commit()
        except IntegrityError:
            # Lost a creation race; the unique direct_key holds the winner.
            db.rollback()
            existing = self._direct_by_key(db, key)
            if existing is None:
                raise InfrastructureFailure("Failed to create conversation") from None
            return self.describe(db, existing), False
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Database error while creating direct conversation: %s", e)
            raise InfrastructureFailure("Failed to create conversation") from e

        logger.info(
            "Created direct conversation %s between users %s and %s",
            conversation.id,
            user_id,
            other_user_id,
        )
        return self.describe(db, conversation), True

    async def create_group(
        self,
        db: Session,
        creator_id: int,
        name: str | None,
        participant_ids: Iterable[int],
    ) -> ConversationOut:
        title = (name or "").strip()
        if not title:
            raise ValidationFailure("Group name is required")

        member_ids = sorted(set(participant_ids) - {creator_id})
        conversation = await asyncio.to_thread(
            self._insert_group, db, creator_id, title, member_ids
        )
        for member_id in [creator_id, *member_ids]:
            await self.membership.attach_user(member_id, conversation.id)
        return conversation

    def _insert_group(
        self, db: Session, creator_id: int, title: str, member_ids: list[int]
    ) -> ConversationOut:
        self._require_users(db, member_ids)

        conversation = Conversation(
            type=ConversationType.GROUP.value,
            name=title,
            created_by=creator_id,
            created_at=utcnow(),
        )
        conversation.participants = [
            ConversationParticipant(user_id=creator_id, role=ParticipantRole.ADMIN.value)
        ] + [
            ConversationParticipant(user_id=member_id, role=ParticipantRole.MEMBER.value)
            for member_id in member_ids
        ]
        with write_transaction(db, "create conversation"):
            db.add(conversation)

        logger.info(
            "Created group conversation %s with %s members",
            conversation.id,
            len(member_ids) + 1,
        )
        return self.describe(db, conversation)

    async def add_participant(
        self, db: Session, actor_id: int, conversation_id: int, user_id: int
    ) -> ConversationOut:
        """Add a user to a group, re-activating a previously removed row.

        Raises:
            AccessDenied: The actor is not an active admin of the conversation.
            ValidationFailure: The conversation is a direct conversation.
            NotFound: The user does not exist.
        """
        conversation, added = await asyncio.to_thread(
            self._activate_participant, db, actor_id, conversation_id, user_id
        )
        if added is None:
            return conversation

        await self.membership.attach_user(user_id, conversation_id)
        await self.hub.emit(
            conversation_room(conversation_id),
            "user_joined_conversation",
            {"userId": added.id, "username": added.username, "conversationId": conversation_id},
        )
        return conversation

    def _activate_participant(
        self, db: Session, actor_id: int, conversation_id: int, user_id: int
    ) -> tuple[ConversationOut, User | None]:
        """Returns the added user, or ``None`` when they were already active."""
        actor = require_participant(db, conversation_id, actor_id)
        conversation = self._get(db, conversation_id)
        if conversation.type != ConversationType.GROUP.value:
            raise ValidationFailure("Participants can only be added to group conversations")
        if actor.role != ParticipantRole.ADMIN.value:
            raise AccessDenied("Only conversation admins can add participants")
        user = db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")

        row = db.scalar(
            select(ConversationParticipant).where(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user_id,
            )
        )
        if row is not None and row.is_active:
            return self.describe(db, conversation), None

        with write_transaction(db, "add participant"):
            if row is None:
                db.add(
                    ConversationParticipant(
                        conversation_id=conversation_id,
                        user_id=user_id,
                        role=ParticipantRole.MEMBER.value,
                        joined_at=utcnow(),
                    )
                )
            else:
                row.is_active = True
                row.role = ParticipantRole.MEMBER.value
                row.joined_at = utcnow()
                row.left_at = None
        return self.describe(db, conversation), user

    async def leave_conversation(self, db: Session, user_id: int, conversation_id: int) -> None:
        """Soft-remove the user from a group; history stays attributed."""
        username = await asyncio.to_thread(self._deactivate, db, user_id, conversation_id)
        await self.membership.detach_user(user_id, conversation_id)
        await self.hub.emit(
            conversation_room(conversation_id),
            "user_left_conversation",
            {"userId": user_id, "username": username, "conversationId": conversation_id},
        )

    def _deactivate(self, db: Session, user_id: int, conversation_id: int) -> str | None:
        row = require_participant(db, conversation_id, user_id)
        conversation = self._get(db, conversation_id)
        if conversation.type != ConversationType.GROUP.value:
            raise ValidationFailure("Cannot leave a direct conversation")

        with write_transaction(db, "leave conversation"):
            row.is_active = False
            row.left_at = utcnow()

        user = db.get(User, user_id)
        return user.username if user else None

    def get_conversation(self, db: Session, user_id: int, conversation_id: int) -> ConversationOut:
        require_participant(db, conversation_id, user_id)
        return self.describe(db, self._get(db, conversation_id))

    def list_conversations(self, db: Session, user_id: int) -> list[ConversationSummary]:
        """Active conversations, most recently active first."""
        conversations = list(
            db.scalars(
                select(Conversation)
                .join(
                    ConversationParticipant,
                    ConversationParticipant.conversation_id == Conversation.id,
                )
                .where(
                    ConversationParticipant.user_id == user_id,
                    ConversationParticipant.is_active.is_(True),
                )
                .order_by(
                    func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(),
                    Conversation.id.desc(),
                )
            )
        )
        ids = [conversation.id for conversation in conversations]
        participants = self._participants(db, ids)
        latest = self.pipeline.latest_messages(db, ids)
        unread = self.receipts.unread_counts(db, user_id, ids)
        return [
            ConversationSummary(
                **self._fields(conversation),
                participants=participants.get(conversation.id, []),
                last_message=latest.get(conversation.id),
                unread_count=unread.get(conversation.id, 0),
            )
            for conversation in conversations
        ]

    def describe(self, db: Session, conversation: Conversation) -> ConversationOut:
        return ConversationOut(
            **self._fields(conversation),
            participants=self._participants(db, [conversation.id]).get(conversation.id, []),
        )

    @staticmethod
    def _fields(conversation: Conversation) -> dict[str, object]:
        return {
            "id": conversation.id,
            "type": conversation.type,
            "name": conversation.name,
            "created_by": conversation.created_by,
            "created_at": conversation.created_at,
            "last_message_at": conversation.last_message_at,
        }

    @staticmethod
    def _participants(
        db: Session, conversation_ids: list[int]
    ) -> dict[int, list[ParticipantOut]]:
        if not conversation_ids:
            return {}
        rows = db.execute(
            select(ConversationParticipant, User)
            .join(User, User.id == ConversationParticipant.user_id)
            .where(
                ConversationParticipant.conversation_id.in_(conversation_ids),
                ConversationParticipant.is_active.is_(True),
            )
            .order_by(ConversationParticipant.joined_at, ConversationParticipant.id)
        )
        grouped: dict[int, list[ParticipantOut]] = defaultdict(list)
        for participant, user in rows:
            grouped[participant.conversation_id].append(
                ParticipantOut(
                    user_id=user.id,
                    username=user.username,
                    display_name=user.display_name,
                    avatar_url=user.avatar_url,
                    status=user.status,
                    role=participant.role,
                    joined_at=participant.joined_at,
                )
            )
        return grouped

    @staticmethod
    def _get(db: Session, conversation_id: int) -> Conversation:
        conversation = db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        return conversation

    @staticmethod
    def _direct_by_key(db: Session, key: str) -> Conversation | None:
        return db.scalar(select(Conversation).where(Conversation.direct_key == key))

    @staticmethod
    def _require_users(db: Session, user_ids: list[int]) -> None:
        if not user_ids:
            return
        found = set(db.scalars(select(User.id).where(User.id.in_(user_ids))))
        missing = [user_id for user_id in user_ids if user_id not in found]
        if missing:
            raise NotFound(f"User not found: {', '.join(str(i) for i in missing)}")
