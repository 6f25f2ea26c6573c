# tests/v1/test_messages_api.py
"""Tests for message endpoints: edit, delete, search, and reactions."""

import pytest
from fastapi import status


@pytest.fixture()
def posted(client, direct_conversation, alice_headers):
    """Send a message from Alice into the direct conversation and return its JSON."""

    def _post(content: str, headers=None, **extra):
        response = client.post(
            f"/api/v1/conversations/{direct_conversation.id}/messages",
            json={"content": content, **extra},
            headers=headers or alice_headers,
        )
        assert response.status_code == status.HTTP_201_CREATED
        return response.json()

    return _post


def test_send_message_returns_hydrated_message(posted, alice, direct_conversation) -> None:
    message = posted("hello there")
    assert message["conversation_id"] == direct_conversation.id
    assert message["sender_id"] == alice.id
    assert message["sender"]["display_name"] == "Alice"
    assert message["message_type"] == "text"
    assert message["edited_at"] is None


def test_reply_carries_preview(posted, bob_headers) -> None:
    original = posted("are we still on?")
    reply = posted("yes", headers=bob_headers, replyToId=original["id"])
    assert reply["reply_to_id"] == original["id"]
    assert reply["reply_to"]["content"] == "are we still on?"
    assert reply["reply_to"]["sender_name"] == "Alice"


def test_reply_to_message_in_other_conversation(
    client, posted, group_conversation, alice_headers
) -> None:
    original = posted("direct only")
    response = client.post(
        f"/api/v1/conversations/{group_conversation.id}/messages",
        json={"content": "crossing over", "replyToId": original["id"]},
        headers=alice_headers,
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Reply-to message not found"


def test_edit_own_message(client, posted, alice_headers) -> None:
    message = posted("typo heer")
    response = client.patch(
        f"/api/v1/messages/{message['id']}", json={"content": "typo here"}, headers=alice_headers
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["content"] == "typo here"
    assert data["edited_at"] is not None


def test_edit_someone_elses_message(client, posted, bob_headers) -> None:
    message = posted("mine")
    response = client.patch(
        f"/api/v1/messages/{message['id']}", json={"content": "yours now"}, headers=bob_headers
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Message not found or access denied"


def test_delete_hides_message_from_history_and_search(
    client, posted, direct_conversation, alice_headers, bob_headers
) -> None:
    kept = posted("keep the receipt")
    gone = posted("delete the receipt")

    response = client.delete(f"/api/v1/messages/{gone['id']}", headers=alice_headers)
    assert response.status_code == status.HTTP_204_NO_CONTENT

    history = client.get(
        f"/api/v1/conversations/{direct_conversation.id}/messages", headers=bob_headers
    ).json()
    assert [m["id"] for m in history["messages"]] == [kept["id"]]

    found = client.get("/api/v1/messages/search", params={"q": "receipt"}, headers=bob_headers)
    assert [m["id"] for m in found.json()] == [kept["id"]]

    again = client.delete(f"/api/v1/messages/{gone['id']}", headers=alice_headers)
    assert again.status_code == status.HTTP_404_NOT_FOUND


def test_search_is_scoped_to_the_callers_conversations(
    client, posted, group_conversation, alice_headers, carol_headers
) -> None:
    posted("Quarterly REPORT draft")
    client.post(
        f"/api/v1/conversations/{group_conversation.id}/messages",
        json={"content": "report is late"},
        headers=alice_headers,
    )

    results = client.get("/api/v1/messages/search", params={"q": "report"}, headers=alice_headers)
    assert [m["content"] for m in results.json()] == ["report is late", "Quarterly REPORT draft"]

    scoped = client.get(
        "/api/v1/messages/search",
        params={"q": "report", "conversationId": group_conversation.id},
        headers=alice_headers,
    )
    assert [m["content"] for m in scoped.json()] == ["report is late"]

    assert client.get("/api/v1/messages/search", params={"q": "report"}, headers=carol_headers).json() == []


def test_search_treats_wildcards_literally(client, posted, alice_headers) -> None:
    posted("100% done")
    posted("1000 done")
    results = client.get("/api/v1/messages/search", params={"q": "0%"}, headers=alice_headers)
    assert [m["content"] for m in results.json()] == ["100% done"]


def test_reactions_replace_and_remove(client, posted, alice, bob, alice_headers, bob_headers) -> None:
    message = posted("ship it")
    url = f"/api/v1/messages/{message['id']}/reactions"

    client.put(url, json={"reaction": "👍"}, headers=alice_headers)
    tally = client.put(url, json={"reaction": "👍"}, headers=bob_headers).json()
    assert tally == [
        {
            "reaction": "👍",
            "count": 2,
            "users": [
                {"id": alice.id, "displayName": "Alice"},
                {"id": bob.id, "displayName": "Bob"},
            ],
        }
    ]

    tally = client.put(url, json={"reaction": "🎉"}, headers=bob_headers).json()
    assert [(t["reaction"], t["count"]) for t in tally] == [("🎉", 1), ("👍", 1)]

    response = client.delete(url, headers=bob_headers)
    assert response.status_code == status.HTTP_200_OK
    assert [(t["reaction"], t["count"]) for t in response.json()] == [("👍", 1)]

    missing = client.delete(url, headers=bob_headers)
    assert missing.status_code == status.HTTP_404_NOT_FOUND
    assert missing.json()["detail"] == "Reaction not found"


def test_reaction_validation_and_access(client, posted, alice_headers, carol_headers) -> None:
    message = posted("react to me")
    url = f"/api/v1/messages/{message['id']}/reactions"

    blank = client.put(url, json={"reaction": "  "}, headers=alice_headers)
    assert blank.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    outsider = client.put(url, json={"reaction": "👀"}, headers=carol_headers)
    assert outsider.status_code == status.HTTP_404_NOT_FOUND
