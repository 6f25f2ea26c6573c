# tests/services/test_read_receipts.py
import pytest
from sqlalchemy import func, select

from huddle.models import MessageReadStatus
from huddle.realtime.hub import conversation_room


def read_rows(db, user_id: int) -> int:
    return db.scalar(
        select(func.count(MessageReadStatus.id)).where(MessageReadStatus.user_id == user_id)
    )


@pytest.fixture()
def send(messenger, db_session):
    async def _send(user, conversation, content="hello"):
        return await messenger.pipeline.send_message(db_session, user.id, conversation.id, content)

    return _send


@pytest.mark.asyncio
async def test_marking_twice_creates_one_row(
    messenger, db_session, alice, bob, direct_conversation, send
) -> None:
    message = await send(alice, direct_conversation)

    assert messenger.receipts.mark_read(db_session, bob.id, [message.id]) == [message.id]
    assert messenger.receipts.mark_read(db_session, bob.id, [message.id, message.id]) == []

    assert read_rows(db_session, bob.id) == 1


@pytest.mark.asyncio
async def test_own_messages_are_never_unread_or_marked(
    messenger, db_session, alice, bob, direct_conversation, send
) -> None:
    mine = await send(alice, direct_conversation)
    await send(bob, direct_conversation)

    assert messenger.receipts.unread_count(db_session, alice.id, direct_conversation.id) == 1
    assert messenger.receipts.mark_read(db_session, alice.id, [mine.id]) == []
    assert read_rows(db_session, alice.id) == 0


@pytest.mark.asyncio
async def test_deleted_and_foreign_messages_are_skipped(
    messenger, db_session, alice, bob, carol, direct_conversation, group_conversation, send
) -> None:
    deleted = await send(alice, direct_conversation)
    await messenger.pipeline.delete_message(db_session, alice.id, deleted.id)
    elsewhere = await send(alice, group_conversation)

    assert messenger.receipts.unread_count(db_session, bob.id, direct_conversation.id) == 0
    assert messenger.receipts.mark_read(db_session, bob.id, [deleted.id]) == []
    # Carol is not in the group, so she cannot acknowledge its messages.
    assert messenger.receipts.mark_read(db_session, carol.id, [elsewhere.id]) == []


@pytest.mark.asyncio
async def test_unread_counts_per_conversation(
    messenger, db_session, alice, bob, direct_conversation, group_conversation, send
) -> None:
    await send(alice, direct_conversation)
    await send(alice, direct_conversation)
    first = await send(alice, group_conversation)

    messenger.receipts.mark_read(db_session, bob.id, [first.id])

    counts = messenger.receipts.unread_counts(
        db_session, bob.id, [direct_conversation.id, group_conversation.id]
    )
    assert counts == {direct_conversation.id: 2, group_conversation.id: 0}


@pytest.mark.asyncio
async def test_acknowledge_broadcasts_to_other_members(
    messenger, db_session, alice, bob, direct_conversation, send, connect
) -> None:
    room = conversation_room(direct_conversation.id)
    _, alice_socket = await connect(alice, rooms=(room,), register=True)
    _, bob_socket = await connect(bob, rooms=(room,), register=True)
    one = await send(alice, direct_conversation)
    two = await send(alice, direct_conversation)

    ids = await messenger.receipts.acknowledge(db_session, bob.id, direct_conversation.id)

    assert ids == [one.id, two.id]
    assert alice_socket.events("messages_read") == [
        {"conversationId": direct_conversation.id, "readBy": bob.id, "messageIds": ids}
    ]
    assert bob_socket.events("messages_read") == []


@pytest.mark.asyncio
async def test_acknowledge_with_nothing_new_is_silent(
    messenger, db_session, alice, bob, direct_conversation, connect
) -> None:
    _, alice_socket = await connect(
        alice, rooms=(conversation_room(direct_conversation.id),), register=True
    )

    assert await messenger.receipts.acknowledge(db_session, bob.id, direct_conversation.id) == []
    assert alice_socket.sent == []


@pytest.mark.asyncio
async def test_fetching_history_twice_reports_reads_once(
    messenger, db_session, alice, bob, direct_conversation, send, connect
) -> None:
    _, alice_socket = await connect(
        alice, rooms=(conversation_room(direct_conversation.id),), register=True
    )
    message = await send(alice, direct_conversation)

    await messenger.pipeline.list_history(db_session, bob.id, direct_conversation.id)
    await messenger.pipeline.list_history(db_session, bob.id, direct_conversation.id)

    assert alice_socket.events("messages_read") == [
        {"conversationId": direct_conversation.id, "readBy": bob.id, "messageIds": [message.id]}
    ]
    assert read_rows(db_session, bob.id) == 1
