# src/huddle/models/__init__.py
"""SQLAlchemy models for the Huddle messaging service."""

from .conversation import (
    Conversation,
    ConversationParticipant,
    ConversationType,
    ParticipantRole,
)
from .message import Message, MessageReaction, MessageReadStatus
from .user import User, UserStatus

__all__ = [
    "Conversation", "ConversationParticipant", "ConversationType", "ParticipantRole",
    "Message", "MessageReaction", "MessageReadStatus",
    "User", "UserStatus",
]
