# src/huddle/services/__init__.py
"""Messaging services: membership, presence, typing, delivery, receipts, reactions."""

from .conversations import ConversationService
from .delivery import MessageDeliveryPipeline
from .errors import (
    AccessDenied,
    AuthenticationFailure,
    InfrastructureFailure,
    MessagingError,
    NotFound,
    ValidationFailure,
)
from .membership import RoomMembershipResolver
from .presence import PresenceTracker
from .reactions import ReactionAggregator
from .read_receipts import ReadReceiptTracker
from .typing import TypingCoordinator, TypingSweeper

__all__ = [
    "ConversationService",
    "MessageDeliveryPipeline",
    "RoomMembershipResolver",
    "PresenceTracker",
    "ReactionAggregator",
    "ReadReceiptTracker",
    "TypingCoordinator",
    "TypingSweeper",
    "MessagingError",
    "AccessDenied",
    "AuthenticationFailure",
    "InfrastructureFailure",
    "NotFound",
    "ValidationFailure",
]
