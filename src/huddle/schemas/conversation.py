# src/huddle/schemas/conversation.py
"""Conversation-related Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from .common import CamelModel, UTCDatetime
from .message import MessageOut


class ParticipantOut(BaseModel):
    """Active member of a conversation."""

    user_id: int
    username: str
    display_name: str
    avatar_url: str | None = None
    status: str
    role: str
    joined_at: UTCDatetime


class ConversationOut(BaseModel):
    """Conversation metadata with its active participants."""

    id: int
    type: str
    name: str | None = None
    created_by: int
    created_at: UTCDatetime
    last_message_at: UTCDatetime | None = None
    participants: list[ParticipantOut]


class ConversationSummary(ConversationOut):
    """Listing entry: adds the latest visible message and the unread count."""

    last_message: MessageOut | None = None
    unread_count: int = 0


class DirectConversationCreate(CamelModel):
    """Start (or fetch) the direct conversation with another user."""

    user_id: int = Field(..., alias="userId")


class GroupConversationCreate(CamelModel):
    """Create a named group; the creator becomes its admin."""

    name: str = Field(..., max_length=200)
    participant_ids: list[int] = Field(default_factory=list, alias="participantIds")


class ParticipantAdd(CamelModel):
    """Add (or re-activate) a user in a group conversation."""

    user_id: int = Field(..., alias="userId")


class UnreadCount(BaseModel):
    """Unread message count for the caller in one conversation."""

    conversation_id: int
    unread_count: int
