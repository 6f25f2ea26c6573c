# tests/realtime/test_hub.py
from unittest.mock import AsyncMock

import pytest
from fastapi.websockets import WebSocketState

from huddle.realtime.connection import Connection
from huddle.realtime.hub import PRESENCE_ROOM, RoomHub, conversation_room, user_room


def test_room_names() -> None:
    assert conversation_room(12) == "conversation:12"
    assert user_room(3) == "user:3"
    assert PRESENCE_ROOM == "presence"


@pytest.mark.asyncio
async def test_emit_reaches_every_member_except_excluded(messenger, alice, bob, connect) -> None:
    room = conversation_room(1)
    alice_conn, alice_socket = await connect(alice, rooms=(room,))
    _, alice_other_socket = await connect(alice, rooms=(room,))
    _, bob_socket = await connect(bob, rooms=(room,))

    await messenger.hub.emit(room, "new_message", {"n": 1}, exclude={alice_conn.id})

    assert alice_socket.sent == []
    assert alice_other_socket.events("new_message") == [{"n": 1}]
    assert bob_socket.events("new_message") == [{"n": 1}]


@pytest.mark.asyncio
async def test_emit_to_room_without_members_is_silent(messenger) -> None:
    await messenger.hub.emit(conversation_room(99), "new_message", {})


@pytest.mark.asyncio
async def test_failed_send_drops_connection_from_room(messenger, alice, bob, connect) -> None:
    room = conversation_room(1)
    alice_conn, alice_socket = await connect(alice, rooms=(room,))
    bob_conn, bob_socket = await connect(bob, rooms=(room,))
    bob_socket.application_state = WebSocketState.DISCONNECTED

    await messenger.hub.emit(room, "new_message", {"n": 1})

    assert alice_socket.events("new_message") == [{"n": 1}]
    assert messenger.hub.in_room(room, alice_conn)
    assert not messenger.hub.in_room(room, bob_conn)


@pytest.mark.asyncio
async def test_send_exception_is_contained(messenger, alice, bob, connect) -> None:
    room = conversation_room(1)
    _, alice_socket = await connect(alice, rooms=(room,))
    bob_conn, bob_socket = await connect(bob, rooms=(room,))
    bob_socket.send_json = AsyncMock(side_effect=RuntimeError("socket closed"))

    await messenger.hub.emit(room, "new_message", {"n": 1})

    assert alice_socket.events("new_message") == [{"n": 1}]
    assert not messenger.hub.in_room(room, bob_conn)


@pytest.mark.asyncio
async def test_transport_follows_first_and_last_local_member(alice, bob) -> None:
    transport = AsyncMock()
    transport.bind = lambda deliver: None
    hub = RoomHub(transport)
    room = conversation_room(5)

    first = Connection(AsyncMock(), alice.id, alice.username, alice.display_name)
    second = Connection(AsyncMock(), bob.id, bob.username, bob.display_name)
    hub.attach(first)
    hub.attach(second)

    await hub.join(room, first)
    await hub.join(room, second)
    transport.subscribe.assert_awaited_once_with(room)

    await hub.leave(room, first)
    transport.unsubscribe.assert_not_awaited()
    await hub.detach(second)
    transport.unsubscribe.assert_awaited_once_with(room)
    assert hub.room_size(room) == 0
    assert hub.get(second.id) is None


@pytest.mark.asyncio
async def test_leave_reports_membership(messenger, alice, connect) -> None:
    room = conversation_room(1)
    conn, _ = await connect(alice, rooms=(room,))

    assert await messenger.hub.leave(room, conn) is True
    assert await messenger.hub.leave(room, conn) is False
    assert room not in conn.rooms


@pytest.mark.asyncio
async def test_connections_of_user(messenger, alice, bob, connect) -> None:
    first, _ = await connect(alice)
    second, _ = await connect(alice)
    await connect(bob)

    assert {conn.id for conn in messenger.hub.connections_of(alice.id)} == {first.id, second.id}
