# src/huddle/schemas/message.py
"""Message-related Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from .common import CamelModel, UTCDatetime


class SenderSummary(BaseModel):
    """Display metadata of a message author."""

    id: int
    username: str
    display_name: str
    avatar_url: str | None = None


class ReplyPreview(BaseModel):
    """Short view of the message being replied to."""

    id: int
    sender_id: int
    sender_name: str | None = None
    content: str | None = Field(None, description="None once the target is deleted")
    deleted: bool = False


class MessageOut(BaseModel):
    """Canonical wire representation of a committed message."""

    id: int
    conversation_id: int
    sender_id: int
    sender: SenderSummary
    content: str
    message_type: str
    reply_to_id: int | None = None
    reply_to: ReplyPreview | None = None
    created_at: UTCDatetime
    edited_at: UTCDatetime | None = None


class ReactionUser(BaseModel):
    """A user who reacted with a given value."""

    id: int
    display_name: str = Field(..., serialization_alias="displayName")


class ReactionTally(BaseModel):
    """Grouped count for one reaction value on a message."""

    reaction: str
    count: int
    users: list[ReactionUser]


class MessageWithReactions(MessageOut):
    """History item: a message together with its full reaction tally."""

    reactions: list[ReactionTally] = Field(default_factory=list)


class HistoryPage(BaseModel):
    """One page of conversation history, oldest message first."""

    messages: list[MessageWithReactions]
    has_more: bool
    next_before: int | None = Field(
        None, description="Pass as ``before`` to fetch the previous page"
    )


class MessageCreate(CamelModel):
    """Schema for sending a message over REST."""

    content: str = Field(..., description="Message text")
    message_type: str = Field("text", alias="messageType")
    reply_to_id: int | None = Field(None, alias="replyToId")


class MessageEdit(CamelModel):
    """Schema for editing a message's content."""

    content: str


class ReactionCreate(CamelModel):
    """Schema for setting the caller's reaction to a message."""

    reaction: str
