# src/huddle/models/conversation.py
"""Models describing conversations and their participants."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from huddle.db.session import Base
from huddle.db.time import utcnow


class ConversationType(StrEnum):
    """Kinds of conversation."""

    DIRECT = "direct"
    GROUP = "group"


class ParticipantRole(StrEnum):
    """Roles a participant can hold inside a conversation."""

    ADMIN = "admin"
    MEMBER = "member"


def direct_key_for(user_a: int, user_b: int) -> str:
    """Return the order-independent key identifying a direct conversation."""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


class Conversation(Base):
    """A direct (exactly two fixed members) or group (named) conversation."""

    __tablename__ = "conversation"
    __table_args__ = (
        CheckConstraint("type IN ('direct', 'group')", name="ck_conversation_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Unique per unordered user pair; NULL for groups.
    direct_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)

    created_by: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_account.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    participants: Mapped[list[ConversationParticipant]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
    )


class ConversationParticipant(Base):
    """Membership row; soft-removed via ``is_active`` to keep attribution."""

    __tablename__ = "conversation_participant"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_participant_conversation_user"),
        CheckConstraint("role IN ('admin', 'member')", name="ck_participant_role"),
        Index("ix_participant_user_active", "user_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversation.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_account.id"), nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ParticipantRole.MEMBER.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    conversation: Mapped[Conversation] = relationship(
        "Conversation", back_populates="participants"
    )
