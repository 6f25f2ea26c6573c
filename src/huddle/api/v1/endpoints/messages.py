# src/huddle/api/v1/endpoints/messages.py
"""Message endpoints: search, edit, delete, and reactions."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, Response, status

from huddle.api.v1.dependencies import CurrentUserDep, MessengerDep, SessionDep
from huddle.schemas.message import MessageEdit, MessageOut, ReactionCreate, ReactionTally

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/search", response_model=list[MessageOut])
def search_messages(
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
    q: Annotated[str, Query(min_length=1, max_length=200)],
    conversation_id: Annotated[int | None, Query(alias="conversationId")] = None,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> list[MessageOut]:
    """Search non-deleted messages in the caller's conversations, newest first."""
    return messenger.pipeline.search_messages(
        db, current_user.id, q, conversation_id=conversation_id, limit=limit
    )


@router.patch("/{message_id}", response_model=MessageOut)
async def edit_message(
    message_id: int,
    payload: MessageEdit,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> MessageOut:
    return await messenger.pipeline.edit_message(db, current_user.id, message_id, payload.content)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> Response:
    await messenger.pipeline.delete_message(db, current_user.id, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{message_id}/reactions", response_model=list[ReactionTally])
async def set_reaction(
    message_id: int,
    payload: ReactionCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> list[ReactionTally]:
    """Set the caller's reaction, replacing any previous one; returns the tally."""
    return await messenger.reactions.add_reaction(
        db, current_user.id, message_id, payload.reaction
    )


@router.delete("/{message_id}/reactions", response_model=list[ReactionTally])
async def remove_reaction(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> list[ReactionTally]:
    return await messenger.reactions.remove_reaction(db, current_user.id, message_id)
