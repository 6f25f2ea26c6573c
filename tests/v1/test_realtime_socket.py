# tests/v1/test_realtime_socket.py
"""End-to-end tests for the /api/v1/ws WebSocket endpoint."""

import pytest
from fastapi import status
from fastapi.websockets import WebSocketDisconnect

from huddle.models import User

MAX_FRAMES = 20


def receive_until(ws, event: str) -> dict:
    """Read frames until ``event`` arrives and return its data."""
    for _ in range(MAX_FRAMES):
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame["data"]
    raise AssertionError(f"{event} was not received")


def frames_until_pong(ws) -> list[dict]:
    """Send a ping and return every frame that arrived before the pong."""
    ws.send_json({"event": "ping", "data": {}})
    frames = []
    for _ in range(MAX_FRAMES):
        frame = ws.receive_json()
        if frame["event"] == "pong":
            return frames
        frames.append(frame)
    raise AssertionError("pong was not received")


def test_connect_lists_conversations(client, ws_url, alice, direct_conversation, group_conversation) -> None:
    with client.websocket_connect(ws_url(alice)) as ws:
        frame = ws.receive_json()
        assert frame["event"] == "connected"
        assert frame["data"]["userId"] == alice.id
        assert sorted(frame["data"]["conversationIds"]) == sorted(
            [direct_conversation.id, group_conversation.id]
        )


def test_connect_with_bearer_header(client, alice, alice_headers) -> None:
    with client.websocket_connect("/api/v1/ws", headers=alice_headers) as ws:
        assert ws.receive_json()["event"] == "connected"


@pytest.mark.parametrize("url", ["/api/v1/ws", "/api/v1/ws?token=garbage"])
def test_handshake_without_valid_token_is_refused(client, url) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(url) as ws:
            ws.receive_json()
    assert exc_info.value.code == status.WS_1008_POLICY_VIOLATION


def test_send_message_reaches_every_connection(
    client, ws_url, alice, bob, direct_conversation
) -> None:
    with (
        client.websocket_connect(ws_url(alice)) as alice_ws,
        client.websocket_connect(ws_url(alice)) as alice_tab,
        client.websocket_connect(ws_url(bob)) as bob_ws,
    ):
        for ws in (alice_ws, alice_tab, bob_ws):
            receive_until(ws, "connected")

        alice_ws.send_json(
            {
                "event": "send_message",
                "data": {"conversationId": direct_conversation.id, "content": "hey bob"},
            }
        )

        for ws in (alice_ws, alice_tab, bob_ws):
            data = receive_until(ws, "new_message")
            assert data["conversationId"] == direct_conversation.id
            assert data["message"]["content"] == "hey bob"
            assert data["message"]["sender"]["id"] == alice.id

        notification = receive_until(bob_ws, "message_notification")
        assert notification["preview"] == "hey bob"
        assert notification["sender"]["username"] == "alice"


def test_outsider_send_is_rejected_without_broadcast(
    client, ws_url, bob, carol, direct_conversation
) -> None:
    with (
        client.websocket_connect(ws_url(bob)) as bob_ws,
        client.websocket_connect(ws_url(carol)) as carol_ws,
    ):
        receive_until(bob_ws, "connected")
        receive_until(carol_ws, "connected")

        carol_ws.send_json(
            {
                "event": "send_message",
                "data": {"conversationId": direct_conversation.id, "content": "let me in"},
            }
        )
        error = receive_until(carol_ws, "error")
        assert error == {
            "message": "Access denied to conversation",
            "code": "access_denied",
            "event": "send_message",
        }

        assert "new_message" not in [frame["event"] for frame in frames_until_pong(bob_ws)]


def test_reply_across_conversations_is_rejected(
    client, ws_url, alice, direct_conversation, group_conversation
) -> None:
    with client.websocket_connect(ws_url(alice)) as ws:
        receive_until(ws, "connected")
        ws.send_json(
            {
                "event": "send_message",
                "data": {"conversationId": direct_conversation.id, "content": "original"},
            }
        )
        original = receive_until(ws, "new_message")["message"]

        ws.send_json(
            {
                "event": "send_message",
                "data": {
                    "conversationId": group_conversation.id,
                    "content": "reply",
                    "replyToId": original["id"],
                },
            }
        )
        error = receive_until(ws, "error")
        assert error["code"] == "not_found"
        assert error["message"] == "Reply-to message not found"


def test_presence_follows_first_and_last_connection(
    client, ws_url, alice, bob, db_session
) -> None:
    with client.websocket_connect(ws_url(bob)) as bob_ws:
        receive_until(bob_ws, "connected")

        with client.websocket_connect(ws_url(alice)) as first_tab:
            receive_until(first_tab, "connected")
            online = receive_until(bob_ws, "user_status_changed")
            assert online["userId"] == alice.id
            assert online["status"] == "online"

            with client.websocket_connect(ws_url(alice)) as second_tab:
                receive_until(second_tab, "connected")
                events = [frame["event"] for frame in frames_until_pong(bob_ws)]
                assert "user_status_changed" not in events

        offline = receive_until(bob_ws, "user_status_changed")
        assert offline["userId"] == alice.id
        assert offline["status"] == "offline"
        assert offline["lastSeen"] is not None

    db_session.expire_all()
    assert db_session.get(User, alice.id).status == "offline"


def test_set_status_broadcasts_to_others(client, ws_url, alice, bob) -> None:
    with (
        client.websocket_connect(ws_url(bob)) as bob_ws,
        client.websocket_connect(ws_url(alice)) as alice_ws,
    ):
        receive_until(alice_ws, "connected")
        receive_until(bob_ws, "user_status_changed")

        alice_ws.send_json({"event": "set_status", "data": {"status": "away"}})
        away = receive_until(bob_ws, "user_status_changed")
        assert away["userId"] == alice.id
        assert away["status"] == "away"

        alice_ws.send_json({"event": "set_status", "data": {"status": "offline"}})
        error = receive_until(alice_ws, "error")
        assert error["code"] == "validation_failed"


def test_typing_indicator_round_trip(client, ws_url, alice, bob, direct_conversation) -> None:
    with (
        client.websocket_connect(ws_url(alice)) as alice_ws,
        client.websocket_connect(ws_url(bob)) as bob_ws,
    ):
        receive_until(alice_ws, "connected")
        receive_until(bob_ws, "connected")

        alice_ws.send_json({"event": "typing_start", "data": {"conversationId": direct_conversation.id}})
        started = receive_until(bob_ws, "user_typing")
        assert started == {
            "conversationId": direct_conversation.id,
            "userId": alice.id,
            "username": "alice",
            "isTyping": True,
        }

        alice_ws.send_json({"event": "typing_stop", "data": {"conversationId": direct_conversation.id}})
        assert receive_until(bob_ws, "user_typing")["isTyping"] is False

        assert "user_typing" not in [frame["event"] for frame in frames_until_pong(alice_ws)]


def test_mark_messages_read_notifies_sender(client, ws_url, alice, bob, direct_conversation) -> None:
    with (
        client.websocket_connect(ws_url(alice)) as alice_ws,
        client.websocket_connect(ws_url(bob)) as bob_ws,
    ):
        receive_until(alice_ws, "connected")
        receive_until(bob_ws, "connected")

        alice_ws.send_json(
            {
                "event": "send_message",
                "data": {"conversationId": direct_conversation.id, "content": "read me"},
            }
        )
        message_id = receive_until(bob_ws, "new_message")["message"]["id"]

        bob_ws.send_json(
            {
                "event": "mark_messages_read",
                "data": {"conversationId": direct_conversation.id, "messageIds": [message_id]},
            }
        )
        receipt = receive_until(alice_ws, "messages_read")
        assert receipt == {
            "conversationId": direct_conversation.id,
            "readBy": bob.id,
            "messageIds": [message_id],
        }


def test_reactions_are_broadcast(client, ws_url, alice, bob, direct_conversation) -> None:
    with (
        client.websocket_connect(ws_url(alice)) as alice_ws,
        client.websocket_connect(ws_url(bob)) as bob_ws,
    ):
        receive_until(alice_ws, "connected")
        receive_until(bob_ws, "connected")

        alice_ws.send_json(
            {
                "event": "send_message",
                "data": {"conversationId": direct_conversation.id, "content": "vote"},
            }
        )
        message_id = receive_until(bob_ws, "new_message")["message"]["id"]

        bob_ws.send_json({"event": "add_reaction", "data": {"messageId": message_id, "reaction": "✅"}})
        update = receive_until(alice_ws, "message_reaction_updated")
        assert update["messageId"] == message_id
        assert update["reactions"] == [
            {"reaction": "✅", "count": 1, "users": [{"id": bob.id, "displayName": "Bob"}]}
        ]

        bob_ws.send_json({"event": "remove_reaction", "data": {"messageId": message_id}})
        assert receive_until(alice_ws, "message_reaction_updated")["reactions"] == []


def test_edit_and_delete_are_broadcast(client, ws_url, alice, bob, direct_conversation) -> None:
    with (
        client.websocket_connect(ws_url(alice)) as alice_ws,
        client.websocket_connect(ws_url(bob)) as bob_ws,
    ):
        receive_until(alice_ws, "connected")
        receive_until(bob_ws, "connected")

        alice_ws.send_json(
            {
                "event": "send_message",
                "data": {"conversationId": direct_conversation.id, "content": "draft"},
            }
        )
        message_id = receive_until(bob_ws, "new_message")["message"]["id"]

        alice_ws.send_json({"event": "edit_message", "data": {"messageId": message_id, "content": "final"}})
        edited = receive_until(bob_ws, "message_edited")
        assert edited["message"]["content"] == "final"

        bob_ws.send_json({"event": "delete_message", "data": {"messageId": message_id}})
        assert receive_until(bob_ws, "error")["code"] == "not_found"

        alice_ws.send_json({"event": "delete_message", "data": {"messageId": message_id}})
        deleted = receive_until(bob_ws, "message_deleted")
        assert deleted["messageId"] == message_id
