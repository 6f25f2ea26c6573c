# tests/services/test_presence_tracker.py
from unittest.mock import patch

import pytest

from huddle.models import User
from huddle.realtime.hub import PRESENCE_ROOM
from huddle.services.errors import InfrastructureFailure, ValidationFailure


@pytest.mark.asyncio
async def test_first_connection_marks_online_and_notifies_others(
    messenger, db_session, alice, bob, connect
) -> None:
    _, bob_socket = await connect(bob, rooms=(PRESENCE_ROOM,))
    alice_conn, alice_socket = await connect(alice, rooms=(PRESENCE_ROOM,))

    assert await messenger.presence.connected(db_session, alice_conn) == 1

    db_session.expire_all()
    user = db_session.get(User, alice.id)
    assert user.status == "online"
    assert user.last_seen is not None

    [event] = bob_socket.events("user_status_changed")
    assert event["userId"] == alice.id
    assert event["status"] == "online"
    assert event["lastSeen"]
    assert alice_socket.sent == []


@pytest.mark.asyncio
async def test_second_tab_does_not_rebroadcast(messenger, db_session, alice, bob, connect) -> None:
    _, bob_socket = await connect(bob, rooms=(PRESENCE_ROOM,))
    first, _ = await connect(alice, rooms=(PRESENCE_ROOM,))
    second, _ = await connect(alice, rooms=(PRESENCE_ROOM,))

    await messenger.presence.connected(db_session, first)
    assert await messenger.presence.connected(db_session, second) == 2

    assert len(bob_socket.events("user_status_changed")) == 1


@pytest.mark.asyncio
async def test_closing_one_of_two_tabs_keeps_user_online(
    messenger, db_session, alice, bob, connect
) -> None:
    _, bob_socket = await connect(bob, rooms=(PRESENCE_ROOM,))
    first, _ = await connect(alice, rooms=(PRESENCE_ROOM,))
    second, _ = await connect(alice, rooms=(PRESENCE_ROOM,))
    await messenger.presence.connected(db_session, first)
    await messenger.presence.connected(db_session, second)

    assert await messenger.presence.disconnected(db_session, first) is False
    db_session.expire_all()
    assert db_session.get(User, alice.id).status == "online"

    assert await messenger.presence.disconnected(db_session, second) is True
    db_session.expire_all()
    assert db_session.get(User, alice.id).status == "offline"

    statuses = [event["status"] for event in bob_socket.events("user_status_changed")]
    assert statuses == ["online", "offline"]


@pytest.mark.asyncio
async def test_disconnect_of_unknown_connection_is_ignored(
    messenger, db_session, alice, connect
) -> None:
    conn, _ = await connect(alice)
    assert await messenger.presence.disconnected(db_session, conn) is False


@pytest.mark.asyncio
async def test_disconnect_survives_persistence_failure(
    messenger, db_session, alice, bob, connect
) -> None:
    _, bob_socket = await connect(bob, rooms=(PRESENCE_ROOM,))
    conn, _ = await connect(alice, rooms=(PRESENCE_ROOM,))
    await messenger.presence.connected(db_session, conn)

    with patch.object(
        messenger.presence,
        "_persist",
        side_effect=InfrastructureFailure("Failed to update presence"),
    ):
        assert await messenger.presence.disconnected(db_session, conn) is True

    assert await messenger.registry.count(alice.id) == 0
    assert bob_socket.events("user_status_changed")[-1]["status"] == "offline"


@pytest.mark.asyncio
async def test_set_status_away_persists_and_broadcasts(
    messenger, db_session, alice, bob, connect
) -> None:
    _, bob_socket = await connect(bob, rooms=(PRESENCE_ROOM,))
    conn, _ = await connect(alice, rooms=(PRESENCE_ROOM,))
    await messenger.presence.connected(db_session, conn)

    await messenger.presence.set_status(db_session, alice.id, "away")

    db_session.expire_all()
    assert db_session.get(User, alice.id).status == "away"
    assert bob_socket.events("user_status_changed")[-1]["status"] == "away"


@pytest.mark.asyncio
async def test_offline_cannot_be_set_explicitly(messenger, db_session, alice) -> None:
    with pytest.raises(ValidationFailure):
        await messenger.presence.set_status(db_session, alice.id, "offline")
