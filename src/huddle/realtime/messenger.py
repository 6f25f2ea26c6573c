"""Composition root wiring the registry, hub, transport, and services together."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager

from fastapi.requests import HTTPConnection
from sqlalchemy.orm import Session, sessionmaker

from huddle.core.settings import settings
from huddle.db.session import SessionLocal, session_scope
from huddle.realtime.hub import RoomHub
from huddle.realtime.registry import InMemorySessionRegistry, SessionRegistry
from huddle.realtime.transport import BroadcastTransport, build_transport
from huddle.services.conversations import ConversationService
from huddle.services.delivery import MessageDeliveryPipeline
from huddle.services.membership import RoomMembershipResolver
from huddle.services.presence import PresenceTracker
from huddle.services.reactions import ReactionAggregator
from huddle.services.read_receipts import ReadReceiptTracker
from huddle.services.typing import TypingCoordinator, TypingSweeper

logger = logging.getLogger(__name__)


class Messenger:
    """One instance per application; shared by the gateway and REST endpoints."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        registry: SessionRegistry | None = None,
        transport: BroadcastTransport | None = None,
        typing_timeout: float | None = None,
        typing_sweep_interval: float | None = None,
    ) -> None:
        self.session_factory = session_factory or SessionLocal
        self.registry = registry or InMemorySessionRegistry()
        self.hub = RoomHub(transport)
        self.membership = RoomMembershipResolver(self.hub, self.registry)
        self.presence = PresenceTracker(self.hub, self.registry)
        self.typing = TypingCoordinator(
            self.hub,
            self.registry,
            timeout=typing_timeout or settings.typing_timeout_seconds,
        )
        self.receipts = ReadReceiptTracker(self.hub, self.registry)
        self.reactions = ReactionAggregator(self.hub)
        self.pipeline = MessageDeliveryPipeline(self.hub, self.receipts, self.reactions)
        self.conversations = ConversationService(
            self.hub, self.membership, self.receipts, self.pipeline
        )
        self.sweeper = TypingSweeper(
            self.typing,
            interval=typing_sweep_interval or settings.typing_sweep_interval_seconds,
        )

    @property
    def transport(self) -> BroadcastTransport:
        return self.hub.transport

    def session(self) -> AbstractContextManager[Session]:
        """Short-lived session for one WebSocket event."""
        return session_scope(self.session_factory)

    async def start(self) -> None:
        await self.transport.start()
        await self.sweeper.start()
        logger.info("Messenger started with %s", type(self.transport).__name__)

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.transport.close()
        logger.info("Messenger stopped")


def create_messenger() -> Messenger:
    """Build the messenger configured by the environment."""
    transport = build_transport(
        settings.broadcast_backend,
        redis_url=settings.redis_url,
        channel_prefix=settings.broadcast_channel_prefix,
    )
    return Messenger(transport=transport)


def get_messenger(connection: HTTPConnection) -> Messenger:
    """Dependency returning the messenger stored on ``app.state``."""
    messenger: Messenger = connection.app.state.messenger
    return messenger
