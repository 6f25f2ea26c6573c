# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-huddle")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BROADCAST_BACKEND", "local")

from huddle.core.security import create_access_token  # noqa: E402
from huddle.db.session import Base  # noqa: E402
from huddle.db.session import get_db as app_get_session  # noqa: E402
from huddle.db.time import utcnow  # noqa: E402
from huddle.main import app as fastapi_app  # noqa: E402
from huddle.models import (  # noqa: E402
    Conversation,
    ConversationParticipant,
    ConversationType,
    ParticipantRole,
    User,
)
from huddle.models.conversation import direct_key_for  # noqa: E402
from huddle.realtime.connection import Connection  # noqa: E402
from huddle.realtime.messenger import Messenger, get_messenger  # noqa: E402

TEST_DB_URL = "sqlite://"

_USER_COUNTER = count(1)


class FakeSocket:
    """Stands in for a WebSocket; records every frame sent to it."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        """Return ``data`` of the frames sent, optionally filtered by event name."""
        return [frame["data"] for frame in self.sent if name is None or frame["event"] == name]

    def names(self) -> list[str]:
        return [frame["event"] for frame in self.sent]


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def messenger(session_factory: sessionmaker[Session]) -> Messenger:
    return Messenger(session_factory=session_factory, typing_timeout=3.0)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    session_factory: sessionmaker[Session],
    messenger: Messenger,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_messenger] = lambda: messenger
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_messenger, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make_user(username: str | None = None, display_name: str | None = None) -> User:
        number = next(_USER_COUNTER)
        username = username or f"user{number}"
        user = User(username=username, display_name=display_name or username.title())
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def alice(make_user: Callable[..., User]) -> User:
    return make_user("alice", "Alice")


@pytest.fixture()
def bob(make_user: Callable[..., User]) -> User:
    return make_user("bob", "Bob")


@pytest.fixture()
def carol(make_user: Callable[..., User]) -> User:
    return make_user("carol", "Carol")


def token_for(user: User) -> str:
    return create_access_token(user.id)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture()
def alice_headers(alice: User) -> dict[str, str]:
    return auth_headers(alice)


@pytest.fixture()
def bob_headers(bob: User) -> dict[str, str]:
    return auth_headers(bob)


@pytest.fixture()
def carol_headers(carol: User) -> dict[str, str]:
    return auth_headers(carol)


@pytest.fixture()
def ws_url() -> Callable[[User], str]:
    def _ws_url(user: User) -> str:
        return f"/api/v1/ws?token={token_for(user)}"

    return _ws_url


@pytest.fixture()
def direct_conversation(db_session: Session, alice: User, bob: User) -> Conversation:
    conversation = Conversation(
        type=ConversationType.DIRECT.value,
        direct_key=direct_key_for(alice.id, bob.id),
        created_by=alice.id,
        created_at=utcnow(),
    )
    conversation.participants = [
        ConversationParticipant(user_id=alice.id, role=ParticipantRole.MEMBER.value),
        ConversationParticipant(user_id=bob.id, role=ParticipantRole.MEMBER.value),
    ]
    db_session.add(conversation)
    db_session.commit()
    return conversation


@pytest.fixture()
def group_conversation(db_session: Session, alice: User, bob: User) -> Conversation:
    """Group owned by Alice with Bob as a member; Carol is not in it."""
    conversation = Conversation(
        type=ConversationType.GROUP.value,
        name="Launch crew",
        created_by=alice.id,
        created_at=utcnow(),
    )
    conversation.participants = [
        ConversationParticipant(user_id=alice.id, role=ParticipantRole.ADMIN.value),
        ConversationParticipant(user_id=bob.id, role=ParticipantRole.MEMBER.value),
    ]
    db_session.add(conversation)
    db_session.commit()
    return conversation


@pytest.fixture()
def connect(messenger: Messenger) -> Callable[..., Any]:
    """Attach a fake connection for a user to the messenger's hub.

    ``rooms`` are joined immediately; presence and the registry are not touched
    unless ``register`` is set.
    """

    async def _connect(
        user: User, rooms: tuple[str, ...] = (), register: bool = False
    ) -> tuple[Connection, FakeSocket]:
        socket = FakeSocket()
        connection = Connection(
            websocket=socket,  # type: ignore[arg-type]
            user_id=user.id,
            username=user.username,
            display_name=user.display_name,
        )
        messenger.hub.attach(connection)
        for room in rooms:
            await messenger.hub.join(room, connection)
        if register:
            await messenger.registry.add(connection.id, user.id)
        return connection, socket

    return _connect
