"""WebSocket gateway: handshake authentication, event dispatch, and cleanup."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from huddle.core.security import decode_access_token
from huddle.db.time import utcnow
from huddle.models import User
from huddle.realtime.connection import Connection
from huddle.realtime.hub import PRESENCE_ROOM, user_room
from huddle.realtime.messenger import Messenger
from huddle.schemas.events import (
    AddReactionPayload,
    ConversationRef,
    EditMessagePayload,
    Envelope,
    MarkReadPayload,
    MessageRef,
    SendMessagePayload,
    SetStatusPayload,
)
from huddle.services.errors import AuthenticationFailure, MessagingError

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, dict[str, Any]], Awaitable[None]]


def extract_token(websocket: WebSocket) -> str | None:
    """Read the bearer token from ``?token=`` or the Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


class RealtimeGateway:
    """Serves one WebSocket connection on behalf of the shared ``Messenger``.

    Errors raised while handling an event are reported to the requesting
    connection only, and the connection stays open.
    """

    def __init__(self, messenger: Messenger) -> None:
        self.messenger = messenger
        # event -> (handler, operation label, message for a malformed payload)
        self._routes: dict[str, tuple[Handler, str, str | None]] = {
            "join_conversation": (self._join_conversation, "join conversation", None),
            "leave_conversation": (self._leave_conversation, "leave conversation", None),
            "send_message": (
                self._send_message,
                "send message",
                "Conversation ID and content are required",
            ),
            "edit_message": (self._edit_message, "edit message", None),
            "delete_message": (self._delete_message, "delete message", None),
            "add_reaction": (self._add_reaction, "add reaction", None),
            "remove_reaction": (self._remove_reaction, "remove reaction", None),
            "typing_start": (self._typing_start, "update typing status", None),
            "typing_stop": (self._typing_stop, "update typing status", None),
            "mark_messages_read": (self._mark_messages_read, "mark messages as read", None),
            "set_status": (self._set_status, "update status", None),
            "ping": (self._ping, "ping", None),
        }

    @property
    def events(self) -> frozenset[str]:
        return frozenset(self._routes)

    async def authenticate(self, websocket: WebSocket) -> User | None:
        token = extract_token(websocket)
        if token is None:
            return None
        try:
            user_id = decode_access_token(token)
        except AuthenticationFailure:
            return None
        return await asyncio.to_thread(self._load_user, user_id)

    def _load_user(self, user_id: int) -> User | None:
        with self.messenger.session() as db:
            return db.get(User, user_id)

    async def serve(self, websocket: WebSocket) -> None:
        user = await self.authenticate(websocket)
        if user is None:
            logger.info("Rejected WebSocket handshake from %s", websocket.client)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        connection = Connection(
            websocket=websocket,
            user_id=user.id,
            username=user.username,
            display_name=user.display_name,
        )
        self.messenger.hub.attach(connection)
        logger.info("User %s connected (connection %s)", user.username, connection.id)

        try:
            await self._on_connect(connection)
            while True:
                raw = await websocket.receive_text()
                await self.dispatch(connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await self._on_disconnect(connection)

    async def dispatch(self, connection: Connection, raw: str) -> None:
        """Handle one inbound frame; never raises for per-event failures."""
        try:
            envelope = Envelope.model_validate_json(raw)
        except ValidationError:
            await self._send_error(connection, "Invalid event frame", "validation_failed")
            return

        route = self._routes.get(envelope.event)
        if route is None:
            await self._send_error(
                connection,
                f"Unknown event: {envelope.event}",
                "validation_failed",
                envelope.event,
            )
            return

        handler, label, invalid_message = route
        try:
            await handler(connection, envelope.data)
        except ValidationError:
            await self._send_error(
                connection,
                invalid_message or f"Invalid payload for {envelope.event}",
                "validation_failed",
                envelope.event,
            )
        except MessagingError as e:
            await self._send_error(connection, e.message, e.code, envelope.event)
        except Exception:
            logger.exception(
                "Unhandled error in %s for user %s", envelope.event, connection.user_id
            )
            await self._send_error(
                connection, f"Failed to {label}", "internal_error", envelope.event
            )

    async def _on_connect(self, connection: Connection) -> None:
        hub = self.messenger.hub
        await hub.join(PRESENCE_ROOM, connection)
        await hub.join(user_room(connection.user_id), connection)
        with self.messenger.session() as db:
            conversation_ids = await self.messenger.membership.join_all(db, connection)
            await connection.send(
                "connected",
                {"userId": connection.user_id, "conversationIds": conversation_ids},
            )
            await self.messenger.presence.connected(db, connection)

    async def _on_disconnect(self, connection: Connection) -> None:
        await self.messenger.hub.detach(connection)
        went_offline = False
        try:
            with self.messenger.session() as db:
                went_offline = await self.messenger.presence.disconnected(db, connection)
        except Exception:
            logger.exception("Presence cleanup failed for connection %s", connection.id)
            await self.messenger.registry.remove(connection.id)
        if went_offline:
            await self.messenger.typing.clear_user(connection.user_id)
        logger.info(
            "User %s disconnected (connection %s)", connection.username, connection.id
        )

    async def _send_error(
        self, connection: Connection, message: str, code: str, event: str | None = None
    ) -> None:
        data: dict[str, Any] = {"message": message, "code": code}
        if event is not None:
            data["event"] = event
        await connection.send("error", data)

    # Event handlers

    async def _join_conversation(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = ConversationRef.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.membership.join_one(db, connection, payload.conversation_id)
        await connection.send(
            "joined_conversation", {"conversationId": payload.conversation_id}
        )

    async def _leave_conversation(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = ConversationRef.model_validate(data)
        await self.messenger.membership.leave_one(connection, payload.conversation_id)

    async def _send_message(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = SendMessagePayload.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.pipeline.send_message(
                db,
                connection.user_id,
                payload.conversation_id,
                payload.content,
                payload.message_type,
                payload.reply_to_id,
            )

    async def _edit_message(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = EditMessagePayload.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.pipeline.edit_message(
                db, connection.user_id, payload.message_id, payload.content
            )

    async def _delete_message(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = MessageRef.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.pipeline.delete_message(
                db, connection.user_id, payload.message_id
            )

    async def _add_reaction(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = AddReactionPayload.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.reactions.add_reaction(
                db, connection.user_id, payload.message_id, payload.reaction
            )

    async def _remove_reaction(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = MessageRef.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.reactions.remove_reaction(
                db, connection.user_id, payload.message_id
            )

    async def _typing_start(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = ConversationRef.model_validate(data)
        await self.messenger.typing.start_typing(connection, payload.conversation_id)

    async def _typing_stop(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = ConversationRef.model_validate(data)
        await self.messenger.typing.stop_typing(connection, payload.conversation_id)

    async def _mark_messages_read(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = MarkReadPayload.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.receipts.acknowledge(
                db, connection.user_id, payload.conversation_id, payload.message_ids
            )

    async def _set_status(self, connection: Connection, data: dict[str, Any]) -> None:
        payload = SetStatusPayload.model_validate(data)
        with self.messenger.session() as db:
            await self.messenger.presence.set_status(db, connection.user_id, payload.status)

    async def _ping(self, connection: Connection, data: dict[str, Any]) -> None:
        await connection.send("pong", {"timestamp": utcnow().isoformat()})
