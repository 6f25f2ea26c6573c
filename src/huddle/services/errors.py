"""Error taxonomy shared by the messaging services.

Services raise these; the WebSocket gateway turns them into ``error`` events
for the requesting connection and the REST layer turns them into HTTP errors.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class MessagingError(RuntimeError):
    """Base exception for messaging operations.

    Every subclass carries a stable ``code`` that is sent to clients together
    with the human readable message.
    """

    code = "messaging_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AccessDenied(MessagingError):
    """Raised when the requester holds no active participant row."""

    code = "access_denied"
    status_code = 403


class NotFound(MessagingError):
    """Raised when a message, reply target, reaction, or user is absent."""

    code = "not_found"
    status_code = 404


class ValidationFailure(MessagingError):
    """Raised before any persistence when a request is malformed."""

    code = "validation_failed"
    status_code = 422


class AuthenticationFailure(MessagingError):
    """Raised when a bearer credential cannot be verified."""

    code = "authentication_failed"
    status_code = 401


class InfrastructureFailure(MessagingError):
    """Raised when the persistence layer fails; nothing was applied."""

    code = "infrastructure_failure"
    status_code = 503


@contextmanager
def write_transaction(db: Session, action: str) -> Iterator[None]:
    """Run writes and commit them, or roll back and raise ``InfrastructureFailure``.

    Only database errors are translated; ``MessagingError`` raised inside the
    block propagates unchanged.
    """
    try:
        yield
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error while trying to %s: %s", action, e)
        raise InfrastructureFailure(f"Failed to {action}") from e


def commit_or_raise(db: Session, action: str) -> None:
    """Commit pending changes with the same translation as ``write_transaction``."""
    with write_transaction(db, action):
        pass
