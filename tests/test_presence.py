import uuid
from concurrent.futures import ThreadPoolExecutor

from intrachat.services.presence import PresenceRegistry


def test_first_and_last_connection_are_transitions():
    registry = PresenceRegistry()
    user = uuid.uuid4()

    assert registry.connect(user, 'phone') is True
    assert registry.connect(user, 'laptop') is False
    assert registry.connections_for(user) == {'phone', 'laptop'}

    assert registry.disconnect('phone') is None
    assert registry.is_online(user)

    change = registry.disconnect('laptop')
    assert change.user_id == user
    assert change.is_online is False
    assert change.last_seen is not None
    assert not registry.is_online(user)


def test_unknown_handle_is_ignored():
    registry = PresenceRegistry()

    assert registry.disconnect('nobody') is None
    assert registry.connections_for(uuid.uuid4()) == frozenset()


def test_reconnect_after_offline_is_a_new_transition():
    registry = PresenceRegistry()
    user = uuid.uuid4()
    registry.connect(user, 'a')
    registry.disconnect('a')

    assert registry.connect(user, 'b') is True
    assert registry.is_online(user)
    assert registry.connections_for(user) == {'b'}


def test_concurrent_connects_and_disconnects():
    registry = PresenceRegistry()
    users = [uuid.uuid4() for _ in range(20)]
    handles = [(u, f'{u}-{i}') for u in users for i in range(10)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        firsts = list(pool.map(lambda h: registry.connect(*h), handles))
    assert sum(firsts) == len(users)
    assert all(registry.is_online(u) for u in users)

    with ThreadPoolExecutor(max_workers=8) as pool:
        changes = [c for c in pool.map(lambda h: registry.disconnect(h[1]), handles) if c]
    assert sorted(c.user_id for c in changes) == sorted(users)
    assert not any(registry.is_online(u) for u in users)
