import uuid
from datetime import datetime, timedelta, UTC

import pytest

from intrachat.client.store import ChatStore, LocalStatus
from intrachat.schemas.message_out import MessageOut, ReactionOut
from intrachat.services.chats import ChatRef

ALICE = uuid.uuid4()
BOB = uuid.uuid4()
CHAT = ChatRef.direct(ALICE, BOB).key
T0 = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


def canonical(temp_id=None, sender=ALICE, receiver=BOB, minutes=0, **kwargs):
    return MessageOut(
        id=uuid.uuid4(),
        client_temp_id=temp_id,
        sender_id=sender,
        receiver_id=receiver,
        content=kwargs.pop('content', 'hi'),
        created_at=T0 + timedelta(minutes=minutes),
        **kwargs,
    )


def test_confirm_swaps_optimistic_copy_in_place():
    store = ChatStore()
    store.insert_optimistic('t1', ALICE, receiver_id=BOB, content='hi')
    assert store.messages(CHAT)[0].pending

    server_copy = canonical('t1')
    entry = store.confirm('t1', server_copy)

    assert entry.status == LocalStatus.SENT
    assert [e.message.id for e in store.messages(CHAT)] == [server_copy.id]
    assert store.pending('t1') is None


def test_confirm_after_message_already_arrived_does_not_duplicate():
    store = ChatStore()
    store.insert_optimistic('t1', ALICE, receiver_id=BOB, content='hi')
    server_copy = canonical('t1')
    store.upsert(server_copy)

    store.confirm('t1', server_copy)

    assert len(store.messages(CHAT)) == 1


def test_rapid_identical_sends_stay_distinct():
    store = ChatStore()
    store.insert_optimistic('t1', ALICE, receiver_id=BOB, content='ok')
    store.insert_optimistic('t2', ALICE, receiver_id=BOB, content='ok')

    second = canonical('t2', content='ok', minutes=1)
    first = canonical('t1', content='ok')
    store.confirm('t2', second)
    store.confirm('t1', first)

    assert [e.message.id for e in store.messages(CHAT)] == [first.id, second.id]


def test_rollback_removes_only_the_failed_send():
    store = ChatStore()
    store.insert_optimistic('t1', ALICE, receiver_id=BOB, content='a')
    store.insert_optimistic('t2', ALICE, receiver_id=BOB, content='b')

    assert store.rollback('t1') is not None
    assert store.rollback('t1') is None
    assert [e.temp_id for e in store.messages(CHAT)] == ['t2']


def test_duplicate_temp_id_is_refused():
    store = ChatStore()
    store.insert_optimistic('t1', ALICE, receiver_id=BOB, content='a')

    with pytest.raises(ValueError):
        store.insert_optimistic('t1', ALICE, receiver_id=BOB, content='a')


def test_backlog_reconciles_pending_sends_by_temp_id():
    store = ChatStore()
    store.insert_optimistic('t1', ALICE, receiver_id=BOB, content='while offline')
    older = canonical(sender=BOB, receiver=ALICE, minutes=-5, content='earlier')
    mine = canonical('t1', content='while offline')

    added = store.merge_backlog([older, mine])

    assert added == 2
    entries = store.messages(CHAT)
    assert [e.message.id for e in entries] == [older.id, mine.id]
    assert not any(e.pending for e in entries)

    assert store.merge_backlog([older, mine]) == 0


def test_status_never_moves_backwards():
    store = ChatStore()
    msg = canonical()
    store.upsert(msg)

    assert store.apply_status(msg.id, 'seen', seen_at=T0)
    assert not store.apply_status(msg.id, 'delivered', delivered_at=T0)

    entry = store.get(msg.id)
    assert entry.status == LocalStatus.SEEN
    assert entry.message.delivered_at == T0

    store.upsert(msg)
    assert store.get(msg.id).status == LocalStatus.SEEN


def test_reactions_are_deduplicated():
    store = ChatStore()
    msg = canonical()
    store.upsert(msg)
    reaction = ReactionOut(message_id=msg.id, user_id=BOB, emoji='👍', created_at=T0)

    assert store.add_reaction(reaction)
    assert not store.add_reaction(reaction)
    assert len(store.get(msg.id).message.reactions) == 1

    assert store.remove_reaction(msg.id, BOB, '👍')
    assert store.get(msg.id).message.reactions == []


def test_deletes_are_honored_for_cached_copies():
    store = ChatStore()
    gone = canonical(minutes=1)
    hidden = canonical(minutes=2)
    kept = canonical(minutes=3)
    store.merge_backlog([gone, hidden, kept])

    store.mark_deleted(gone.id, for_everyone=True, viewer_id=BOB)
    store.mark_deleted(hidden.id, for_everyone=False, viewer_id=BOB)

    assert [m.id for m in store.visible_messages(CHAT, BOB)] == [kept.id]
    assert [m.id for m in store.visible_messages(CHAT, ALICE)] == [hidden.id, kept.id]

    # a stale copy from an older backlog page cannot resurrect it
    store.upsert(gone)
    assert gone.id not in {m.id for m in store.visible_messages(CHAT, ALICE)}


def test_pins():
    store = ChatStore()
    msg = canonical()
    store.upsert(msg)

    assert store.set_pinned(msg.id, True)
    assert not store.set_pinned(msg.id, True)
    assert [m.id for m in store.pinned(CHAT)] == [msg.id]


def test_backlog_tombstones_retire_cached_copies():
    store = ChatStore()
    gone = canonical(content='secret')
    hidden = canonical(content='mine only', minutes=1)
    kept = canonical(content='hello', minutes=2)
    store.merge_backlog([gone, hidden, kept])

    store.merge_backlog([
        gone.model_copy(update={'is_deleted': True, 'content': None}),
        hidden.model_copy(update={'deleted_for': [str(BOB)], 'content': None}),
        kept,
    ])

    assert [m.content for m in store.visible_messages(CHAT, BOB)] == ['hello']
