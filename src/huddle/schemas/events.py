# src/huddle/schemas/events.py
"""Payloads of inbound WebSocket events.

Clients send ``{"event": name, "data": {...}}`` frames with camelCase keys;
each model below validates the ``data`` object of one event.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from .common import CamelModel


class Envelope(BaseModel):
    """Frame wrapper used in both directions."""

    event: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class ConversationRef(CamelModel):
    """Events addressing a conversation: join, leave, typing."""

    conversation_id: int = Field(..., alias="conversationId")


class SendMessagePayload(CamelModel):
    conversation_id: int = Field(..., alias="conversationId")
    content: str
    message_type: str = Field("text", alias="messageType")
    reply_to_id: int | None = Field(None, alias="replyToId")


class EditMessagePayload(CamelModel):
    message_id: int = Field(..., alias="messageId")
    content: str


class MessageRef(CamelModel):
    """Events addressing a single message: delete, remove reaction."""

    message_id: int = Field(..., alias="messageId")


class AddReactionPayload(CamelModel):
    message_id: int = Field(..., alias="messageId")
    reaction: str


class MarkReadPayload(CamelModel):
    conversation_id: int = Field(..., alias="conversationId")
    message_ids: list[int] | None = Field(None, alias="messageIds")


class SetStatusPayload(CamelModel):
    status: Literal["online", "away"]
