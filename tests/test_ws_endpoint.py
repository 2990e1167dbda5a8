import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from intrachat.main import app


@pytest.fixture()
def client(people):
    with TestClient(app) as c:
        yield c


def receive_until(ws, event_type, where=lambda p: True, limit=25):
    for _ in range(limit):
        frame = ws.receive_json()
        if frame['type'] == event_type and where(frame['payload']):
            return frame
    raise AssertionError(f'no {event_type} frame received')


def compose(sender, temp_id, **target):
    payload = {'clientTempId': temp_id, 'senderId': str(sender), 'content': 'ping'}
    payload.update({k: str(v) for k, v in target.items()})
    return {'type': 'sendMessage', 'payload': payload}


def test_message_lifecycle_between_two_users(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as alice, \
            client.websocket_connect(f'/ws?userId={people.bob}') as bob:
        alice.send_json(compose(people.alice, 'temp-42', receiverId=people.bob))

        saved = receive_until(alice, 'messageSaved')['payload']
        assert saved['clientTempId'] == 'temp-42'

        new = receive_until(bob, 'newMessage')['payload']
        assert new['id'] == saved['id']
        assert new['clientTempId'] is None
        assert new['content'] == 'ping'

        bob.send_json({'type': 'messageDelivered', 'payload': {'messageId': new['id']}})
        delivered = receive_until(alice, 'messageStatusUpdate')['payload']
        assert delivered['status'] == 'delivered'
        assert delivered['messageId'] == saved['id']

        bob.send_json({'type': 'messageSeen', 'payload': {'messageId': new['id']}})
        seen = receive_until(alice, 'messageStatusUpdate')['payload']
        assert seen['status'] == 'seen'
        assert seen['seenAt'] is not None


def test_every_sender_device_gets_the_confirmation(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as phone, \
            client.websocket_connect(f'/ws?userId={people.alice}') as laptop:
        phone.send_json(compose(people.alice, 'temp-1', receiverId=people.erin))

        from_phone = receive_until(phone, 'messageSaved')['payload']
        from_laptop = receive_until(laptop, 'messageSaved')['payload']
        assert from_phone['id'] == from_laptop['id']


def test_offline_recipient_finds_message_in_history(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as alice:
        alice.send_json(compose(people.alice, 'temp-1', receiverId=people.carol))
        saved = receive_until(alice, 'messageSaved')['payload']

    response = client.get(f'/api/chat/messages/{people.carol}/{people.alice}')
    assert response.status_code == 200
    history = response.json()
    assert [m['id'] for m in history] == [saved['id']]
    assert history[0]['clientTempId'] is None


def test_rejected_compose_comes_back_as_message_error(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as alice:
        alice.send_json(compose(people.alice, 'temp-both', receiverId=people.bob, groupId=people.team))
        error = receive_until(alice, 'messageError')['payload']
        assert error['clientTempId'] == 'temp-both'
        assert error['details']['code'] == 'bad_request'

        alice.send_json({'type': 'sendMessage', 'payload': {'clientTempId': 'temp-schema'}})
        error = receive_until(alice, 'messageError')['payload']
        assert error['clientTempId'] == 'temp-schema'


def test_protocol_errors_and_ping(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as alice:
        alice.send_text('{not json')
        assert receive_until(alice, 'error')['payload']['code'] == 'bad_request'

        alice.send_json({'type': 'shout', 'payload': {}})
        assert 'Unknown type' in receive_until(alice, 'error')['payload']['message']

        alice.send_json({'type': 'messageSeen', 'payload': {'messageId': str(uuid.uuid4())}})
        error = receive_until(alice, 'error')['payload']
        assert error['code'] == 'not_found'
        assert error['requestType'] == 'messageSeen'

        alice.send_json({'type': 'ping', 'payload': {'ts': 123}})
        pong = receive_until(alice, 'pong')['payload']
        assert pong['ts'] == 123
        assert pong['serverTs']


def test_presence_is_broadcast_to_contacts(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as alice:
        with client.websocket_connect(f'/ws?userId={people.bob}'):
            online = receive_until(alice, 'userOnline', lambda p: p['userId'] == str(people.bob))
            assert online['payload']['isOnline'] is True

        offline = receive_until(
            alice, 'userOnline', lambda p: p['userId'] == str(people.bob) and not p['isOnline']
        )
        assert offline['payload']['lastSeen'] is not None


def test_typing_reaches_the_counterpart(client, people):
    with client.websocket_connect(f'/ws?userId={people.alice}') as alice, \
            client.websocket_connect(f'/ws?userId={people.bob}') as bob:
        typing = {'userId': str(people.alice), 'chatId': str(people.bob), 'isGroup': False}
        alice.send_json({'type': 'typing', 'payload': typing})
        assert receive_until(bob, 'userTyping')['payload'] == typing

        alice.send_json({'type': 'stopTyping', 'payload': typing})
        assert receive_until(bob, 'userStoppedTyping')['payload'] == typing


def test_unknown_user_is_refused(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f'/ws?userId={uuid.uuid4()}'):
            pass
