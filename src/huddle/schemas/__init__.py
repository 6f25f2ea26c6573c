# src/huddle/schemas/__init__.py
"""
Pydantic schemas for API request/response models and WebSocket payloads.

These schemas define the structure of wire data for serialization and validation.
"""

from .conversation import (
    ConversationOut,
    ConversationSummary,
    DirectConversationCreate,
    GroupConversationCreate,
    ParticipantAdd,
    ParticipantOut,
    UnreadCount,
)
from .message import (
    HistoryPage,
    MessageCreate,
    MessageEdit,
    MessageOut,
    MessageWithReactions,
    ReactionCreate,
    ReactionTally,
)
from .user import UserPublic, UserUpdate

__all__ = [
    "ConversationOut", "ConversationSummary", "DirectConversationCreate",
    "GroupConversationCreate", "ParticipantAdd", "ParticipantOut", "UnreadCount",
    "HistoryPage", "MessageCreate", "MessageEdit", "MessageOut",
    "MessageWithReactions", "ReactionCreate", "ReactionTally",
    "UserPublic", "UserUpdate",
]
