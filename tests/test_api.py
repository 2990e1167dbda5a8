from datetime import datetime, timedelta, UTC

import pytest
from fastapi.testclient import TestClient

from intrachat.main import app
from intrachat.schemas import Message, MessageReceipt, ReceiptStatus


@pytest.fixture()
def client(people):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def conversation(session, people):
    """Five direct messages alternating Alice/Bob, one minute apart."""
    start = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
    messages = []
    for i in range(5):
        sender, receiver = (people.alice, people.bob) if i % 2 == 0 else (people.bob, people.alice)
        m = Message(
            client_temp_id=f'temp-{i}',
            sender_id=sender,
            receiver_id=receiver,
            content=f'message {i}',
            created_at=start + timedelta(minutes=i),
        )
        session.add(m)
        messages.append(m)
    session.commit()
    return [m.id for m in messages]


def test_history_returns_latest_page_in_order(client, people, conversation):
    response = client.get(f'/api/chat/messages/{people.alice}/{people.bob}', params={'limit': 3})

    assert response.status_code == 200
    body = response.json()
    assert [m['content'] for m in body] == ['message 2', 'message 3', 'message 4']
    assert [m['id'] for m in body] == [str(i) for i in conversation[2:]]


def test_temp_id_is_only_shown_to_its_sender(client, people, conversation):
    body = client.get(f'/api/chat/messages/{people.alice}/{people.bob}').json()

    for m in body:
        if m['senderId'] == str(people.alice):
            assert m['clientTempId'].startswith('temp-')
        else:
            assert m['clientTempId'] is None


def test_history_returns_deleted_messages_as_tombstones(client, session, people, conversation):
    everyone = session.get(Message, conversation[0])
    everyone.is_deleted = True
    mine = session.get(Message, conversation[1])
    mine.deleted_for = [str(people.alice)]
    session.add_all([everyone, mine])
    session.commit()

    alice_view = client.get(f'/api/chat/messages/{people.alice}/{people.bob}').json()
    bob_view = client.get(f'/api/chat/messages/{people.bob}/{people.alice}').json()

    assert [m['id'] for m in alice_view] == [str(i) for i in conversation]
    gone, hidden = alice_view[0], alice_view[1]
    assert gone['isDeleted'] is True
    assert gone['content'] is None
    assert hidden['deletedFor'] == [str(people.alice)]
    assert hidden['content'] is None
    assert [m['content'] for m in alice_view[2:]] == ['message 2', 'message 3', 'message 4']

    # Bob still sees the message Alice hid, without learning that she did
    assert bob_view[0]['content'] is None
    assert bob_view[1]['content'] == 'message 1'
    assert bob_view[1]['deletedFor'] == []


def test_history_limit_is_validated(client, people):
    assert client.get(f'/api/chat/messages/{people.alice}/{people.bob}', params={'limit': 0}).status_code == 422


def test_group_history_requires_membership(client, people):
    ok = client.get(f'/api/chat/group/{people.team}/messages', params={'user_id': str(people.bob)})
    outsider = client.get(f'/api/chat/group/{people.team}/messages', params={'user_id': str(people.erin)})

    assert ok.status_code == 200
    assert ok.json() == []
    assert outsider.status_code == 404


def test_recent_chats_carry_unread_counts(client, session, people, conversation):
    session.add(MessageReceipt(message_id=conversation[4], user_id=people.bob, status=ReceiptStatus.SEEN))
    session.commit()

    chats = client.get(f'/api/chat/recent/{people.bob}').json()

    direct = next(c for c in chats if c['id'] == str(people.alice))
    assert direct['isGroup'] is False
    assert direct['lastMessage']['content'] == 'message 4'
    # messages 0 and 2 are still unseen by Bob
    assert direct['unreadCount'] == 2

    group = next(c for c in chats if c['id'] == str(people.team))
    assert group['isGroup'] is True
    assert group['lastMessage'] is None
    assert group['unreadCount'] == 0


def test_user_directory(client, people):
    listed = client.get('/api/users').json()
    assert 'Dave' not in {u['name'] for u in listed}

    created = client.post('/api/users', json={'name': 'Frank', 'email': 'frank@example.com'})
    assert created.status_code == 201
    frank = created.json()

    assert client.get(f"/api/users/{frank['id']}").json()['name'] == 'Frank'
    assert client.post('/api/users', json={'name': 'Frank 2', 'email': 'frank@example.com'}).status_code == 400


def test_group_creation_and_membership(client, people):
    created = client.post(
        '/api/groups',
        params={'userId': str(people.erin)},
        json={'name': 'Lunch', 'member_ids': [str(people.bob)]},
    )
    assert created.status_code == 201
    group_id = created.json()['id']

    members = client.get(f'/api/groups/{group_id}/participants', params={'userId': str(people.bob)}).json()
    roles = {m['name']: m['role'] for m in members}
    assert roles == {'Erin': 'ADMIN', 'Bob': 'MEMBER'}

    denied = client.put(f'/api/groups/{group_id}/participants/{people.carol}', params={'userId': str(people.bob)})
    assert denied.status_code == 403

    added = client.put(f'/api/groups/{group_id}/participants/{people.carol}', params={'userId': str(people.erin)})
    assert added.status_code == 204

    left = client.delete(f'/api/groups/{group_id}/participants/{people.bob}', params={'userId': str(people.bob)})
    assert left.status_code == 204

    names = {g['name'] for g in client.get('/api/groups', params={'userId': str(people.carol)}).json()}
    assert names == {'Team', 'Lunch'}


def test_unknown_acting_user_is_rejected(client):
    assert client.get('/api/groups', params={'userId': 'nobody'}).status_code == 401


def test_notifications_follow_the_recipient(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as alice:
        alice.send_json({
            'type': 'sendMessage',
            'payload': {
                'clientTempId': 'temp-n',
                'senderId': str(people.alice),
                'groupId': str(people.team),
                'content': 'standup in five',
            },
        })
        while alice.receive_json()['type'] != 'messageSaved':
            pass

    listed = client.get('/api/notifications', params={'userId': str(people.bob)}).json()
    assert len(listed) == 1
    note = listed[0]
    assert note['type'] == 'MESSAGE'
    assert note['title'] == 'Alice in Team'
    assert note['content'] == 'standup in five'
    assert note['link'] == f'/groups/{people.team}'
    assert client.get('/api/notifications', params={'userId': str(people.alice)}).json() == []

    count = client.get('/api/notifications/unread-count', params={'userId': str(people.bob)}).json()
    assert count == {'count': 1}

    # Carol cannot touch Bob's notification
    foreign = client.patch(f"/api/notifications/{note['id']}/read", params={'userId': str(people.carol)})
    assert foreign.status_code == 404

    read = client.patch(f"/api/notifications/{note['id']}/read", params={'userId': str(people.bob)})
    assert read.json()['isRead'] is True
    unread = client.get('/api/notifications', params={'userId': str(people.bob), 'unreadOnly': 'true'}).json()
    assert unread == []

    assert client.patch('/api/notifications/read-all', params={'userId': str(people.carol)}).json() == {'count': 1}

    removed = client.delete(f"/api/notifications/{note['id']}", params={'userId': str(people.bob)})
    assert removed.status_code == 204
    assert client.get('/api/notifications', params={'userId': str(people.bob)}).json() == []


def test_search_finds_active_people_and_groups(client, people):
    found = client.get('/api/search', params={'q': 'CAROL'}).json()
    assert [u['name'] for u in found['users']] == ['Carol']
    assert found['groups'] == []

    assert [g['name'] for g in client.get('/api/search', params={'q': 'tea'}).json()['groups']] == ['Team']
    assert client.get('/api/search', params={'q': 'dave'}).json()['users'] == []

    assert client.get('/api/search', params={'q': 'bob@example'}).json()['users'][0]['name'] == 'Bob'
    assert client.get('/api/search', params={'q': '   '}).json() == {'users': [], 'groups': []}
