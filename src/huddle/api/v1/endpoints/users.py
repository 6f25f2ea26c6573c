# src/huddle/api/v1/endpoints/users.py
"""Profile, presence, and user lookup endpoints."""

from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from huddle.api.v1.dependencies import CurrentUserDep, MessengerDep, SessionDep
from huddle.models import User
from huddle.schemas.user import UserPublic, UserUpdate
from huddle.services.delivery import escape_like
from huddle.services.errors import write_transaction

router = APIRouter(prefix="/users", tags=["users"])

USER_SEARCH_LIMIT = 20


def _apply_profile(db: Session, user: User, update: UserUpdate) -> None:
    with write_transaction(db, "update profile"):
        if update.display_name is not None:
            user.display_name = update.display_name
        if "avatar_url" in update.model_fields_set:
            user.avatar_url = update.avatar_url or None


@router.get("/me", response_model=UserPublic)
async def get_me(current_user: CurrentUserDep) -> User:
    """Return the authenticated user's profile."""
    return current_user


@router.patch("/me", response_model=UserPublic)
async def update_me(
    update: UserUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> User:
    """Update display name, avatar, or presence status.

    A status change is broadcast to connected clients like ``set_status``.
    """
    if "display_name" in update.model_fields_set or "avatar_url" in update.model_fields_set:
        await asyncio.to_thread(_apply_profile, db, current_user, update)

    if update.status is not None:
        await messenger.presence.set_status(db, current_user.id, update.status)
    return current_user


@router.get("/search", response_model=list[UserPublic])
def search_users(
    current_user: CurrentUserDep,
    db: SessionDep,
    q: Annotated[str, Query(min_length=1, max_length=100)],
) -> list[User]:
    """Find other users whose username or display name contains ``q``."""
    term = q.strip()
    if not term:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Search query is required"
        )
    pattern = f"%{escape_like(term)}%"
    return list(
        db.scalars(
            select(User)
            .where(
                or_(
                    User.username.ilike(pattern, escape="\\"),
                    User.display_name.ilike(pattern, escape="\\"),
                ),
                User.id != current_user.id,
            )
            .order_by(User.username)
            .limit(USER_SEARCH_LIMIT)
        )
    )


@router.get("/{user_id}", response_model=UserPublic)
def get_user(user_id: int, current_user: CurrentUserDep, db: SessionDep) -> User:
    """Return another user's public profile and presence."""
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
