# src/huddle/api/v1/endpoints/conversations.py
"""Conversation endpoints: listing, creation, membership, history, and reads."""

from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Query, Response, status

from huddle.api.v1.dependencies import CurrentUserDep, MessengerDep, SessionDep
from huddle.schemas.conversation import (
    ConversationOut,
    ConversationSummary,
    DirectConversationCreate,
    GroupConversationCreate,
    ParticipantAdd,
    UnreadCount,
)
from huddle.schemas.message import HistoryPage, MessageCreate, MessageOut
from huddle.services.membership import require_participant

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationSummary])
def list_conversations(
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> list[ConversationSummary]:
    """List the caller's active conversations, most recently active first."""
    return messenger.conversations.list_conversations(db, current_user.id)


@router.post("/direct", response_model=ConversationOut)
async def open_direct_conversation(
    payload: DirectConversationCreate,
    response: Response,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> ConversationOut:
    """Return the direct conversation with a user, creating it on first use.

    Responds 201 when the conversation was created and 200 when it existed.
    """
    conversation, created = await messenger.conversations.get_or_create_direct(
        db, current_user.id, payload.user_id
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return conversation


@router.post("/group", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def create_group_conversation(
    payload: GroupConversationCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> ConversationOut:
    return await messenger.conversations.create_group(
        db, current_user.id, payload.name, payload.participant_ids
    )


@router.get("/{conversation_id}", response_model=ConversationOut)
def get_conversation(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> ConversationOut:
    return messenger.conversations.get_conversation(db, current_user.id, conversation_id)


@router.post("/{conversation_id}/participants", response_model=ConversationOut)
async def add_participant(
    conversation_id: int,
    payload: ParticipantAdd,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> ConversationOut:
    """Add a user to a group conversation (admins only)."""
    return await messenger.conversations.add_participant(
        db, current_user.id, conversation_id, payload.user_id
    )


@router.delete(
    "/{conversation_id}/participants/me",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def leave_conversation(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> Response:
    await messenger.conversations.leave_conversation(db, current_user.id, conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{conversation_id}/messages", response_model=HistoryPage)
async def list_messages(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
    before: Annotated[int | None, Query(ge=1)] = None,
) -> HistoryPage:
    """Page backwards through history; fetched messages are marked read."""
    return await messenger.pipeline.list_history(
        db, current_user.id, conversation_id, limit=limit, before_id=before
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: int,
    payload: MessageCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> MessageOut:
    """Send a message; connected participants receive ``new_message``."""
    return await messenger.pipeline.send_message(
        db,
        current_user.id,
        conversation_id,
        payload.content,
        payload.message_type,
        payload.reply_to_id,
    )


@router.post("/{conversation_id}/read", response_model=UnreadCount)
async def mark_conversation_read(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> UnreadCount:
    await messenger.receipts.acknowledge(db, current_user.id, conversation_id)
    remaining = await asyncio.to_thread(
        messenger.receipts.unread_count, db, current_user.id, conversation_id
    )
    return UnreadCount(conversation_id=conversation_id, unread_count=remaining)


@router.get("/{conversation_id}/unread-count", response_model=UnreadCount)
def get_unread_count(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    messenger: MessengerDep,
) -> UnreadCount:
    require_participant(db, conversation_id, current_user.id)
    return UnreadCount(
        conversation_id=conversation_id,
        unread_count=messenger.receipts.unread_count(db, current_user.id, conversation_id),
    )
