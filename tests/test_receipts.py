import pytest

from intrachat.schemas import MessageReceipt, ReceiptStatus
from intrachat.schemas.ws import MarkChatAsReadPayload, SendMessagePayload
from intrachat.services.errors import PermissionDeniedError, StaleTargetError


async def send(hub, sender, temp_id, **target):
    return await hub.pipeline.ingest(
        sender, SendMessagePayload(client_temp_id=temp_id, sender_id=sender, content=f'msg {temp_id}', **target)
    )


@pytest.mark.asyncio
async def test_delivered_then_seen_each_reported_once(hub, dispatcher, people, session):
    msg = await send(hub, people.alice, 't1', receiver_id=people.bob)
    dispatcher.clear()

    await hub.receipts.mark_delivered(people.bob, msg.id)
    await hub.receipts.mark_delivered(people.bob, msg.id)
    await hub.receipts.mark_seen(people.bob, msg.id)
    await hub.receipts.mark_seen(people.bob, msg.id)

    updates = dispatcher.frames_for(people.alice, 'messageStatusUpdate')
    assert [u['payload']['status'] for u in updates] == ['delivered', 'seen']
    assert updates[1]['payload']['seenAt'] is not None
    assert dispatcher.frames_for(people.bob) == []

    receipt = session.get(MessageReceipt, (msg.id, people.bob))
    assert receipt.status == ReceiptStatus.SEEN


@pytest.mark.asyncio
async def test_seen_before_delivered_sets_both(hub, dispatcher, people):
    msg = await send(hub, people.alice, 't1', receiver_id=people.bob)
    dispatcher.clear()

    seen = await hub.receipts.mark_seen(people.bob, msg.id)
    late = await hub.receipts.mark_delivered(people.bob, msg.id)

    assert seen.advanced == 'seen'
    assert seen.delivered_at is not None
    assert seen.delivered_at <= seen.seen_at
    assert late.advanced is None
    assert [u['payload']['status'] for u in dispatcher.frames_for(people.alice, 'messageStatusUpdate')] == ['seen']


@pytest.mark.asyncio
async def test_group_message_is_delivered_by_the_first_member(hub, dispatcher, people):
    msg = await send(hub, people.alice, 't1', group_id=people.team)
    dispatcher.clear()

    first = await hub.receipts.mark_delivered(people.bob, msg.id)
    second = await hub.receipts.mark_delivered(people.carol, msg.id)

    assert first.advanced == 'delivered'
    assert second.advanced is None
    assert len(dispatcher.frames_for(people.alice, 'messageStatusUpdate')) == 1


@pytest.mark.asyncio
async def test_sender_cannot_acknowledge_own_message(hub, people):
    msg = await send(hub, people.alice, 't1', receiver_id=people.bob)

    with pytest.raises(PermissionDeniedError):
        await hub.receipts.mark_seen(people.alice, msg.id)


@pytest.mark.asyncio
async def test_outsider_cannot_acknowledge(hub, people):
    msg = await send(hub, people.alice, 't1', receiver_id=people.bob)

    with pytest.raises(StaleTargetError):
        await hub.receipts.mark_delivered(people.erin, msg.id)


@pytest.mark.asyncio
async def test_mark_chat_as_read_clears_backlog(hub, dispatcher, people):
    for i in range(3):
        await send(hub, people.alice, f't{i}', receiver_id=people.bob)
    await send(hub, people.bob, 'mine', receiver_id=people.alice)
    dispatcher.clear()

    result = await hub.receipts.mark_chat_as_read(
        people.bob, MarkChatAsReadPayload(chat_id=people.alice, user_id=people.bob)
    )

    assert result.unread_count == 0
    assert len(result.advanced) == 3
    statuses = [u['payload']['status'] for u in dispatcher.frames_for(people.alice, 'messageStatusUpdate')]
    assert statuses == ['seen', 'seen', 'seen']
    unread = dispatcher.frames_for(people.bob, 'unreadCountUpdate')
    assert unread == [{'type': 'unreadCountUpdate', 'payload': {'chatId': str(people.alice), 'unreadCount': 0}}]

    dispatcher.clear()
    again = await hub.receipts.mark_chat_as_read(
        people.bob, MarkChatAsReadPayload(chat_id=people.alice, user_id=people.bob)
    )
    assert again.advanced == []
    assert dispatcher.frames_for(people.alice) == []


@pytest.mark.asyncio
async def test_mark_group_as_read_only_touches_that_reader(hub, dispatcher, people, session):
    msg = await send(hub, people.alice, 't1', group_id=people.team)

    await hub.receipts.mark_chat_as_read(
        people.bob, MarkChatAsReadPayload(chat_id=people.team, user_id=people.bob, is_group=True)
    )

    assert session.get(MessageReceipt, (msg.id, people.bob)).status == ReceiptStatus.SEEN
    assert session.get(MessageReceipt, (msg.id, people.carol)) is None
