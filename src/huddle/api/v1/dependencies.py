"""Shared API dependencies for authentication and error mapping."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from huddle.core.security import decode_access_token
from huddle.db.session import get_db
from huddle.models import User
from huddle.realtime.messenger import Messenger, get_messenger
from huddle.services.errors import AuthenticationFailure, MessagingError

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

# Type alias for the shared messenger
MessengerDep = Annotated[Messenger, Depends(get_messenger)]


def to_http_exception(error: MessagingError) -> HTTPException:
    """Map a service error onto the HTTP status its ``code`` stands for."""
    headers = None
    if isinstance(error, AuthenticationFailure):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(
        status_code=error.status_code,
        detail=error.message,
        headers=headers,
    )


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Raises:
        HTTPException: If the token is invalid or the user does not exist.
    """
    try:
        user_id = decode_access_token(credentials.credentials)
    except AuthenticationFailure as err:
        raise to_http_exception(err) from err

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


# Type alias for the authenticated user
CurrentUserDep = Annotated[User, Depends(get_current_user)]
