# tests/conftest.py
import os
import uuid
from types import SimpleNamespace

import pytest
from cryptography.fernet import Fernet

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['RMQ_URL'] = ''
os.environ['DATA_ENCRYPTION_KEYS'] = Fernet.generate_key().decode()

from sqlmodel import Session, SQLModel  # noqa: E402

from intrachat.db.session import engine  # noqa: E402
from intrachat.schemas import Group, GroupMember, MemberRole, User  # noqa: E402
from intrachat.services.hub import ChatHub  # noqa: E402
from intrachat.services.store import Store  # noqa: E402


class RecordingDispatcher:
    """Collects every emitted frame per target user instead of sending it."""

    def __init__(self):
        self.sent: list[tuple[uuid.UUID, dict]] = []

    async def emit(self, user_ids, event, chat_key=None):
        out = event.model_dump(mode='json', by_alias=True)
        for uid in set(user_ids):
            self.sent.append((uid, out))

    def frames_for(self, user_id: uuid.UUID, event_type: str | None = None) -> list[dict]:
        return [f for uid, f in self.sent if uid == user_id and (event_type is None or f['type'] == event_type)]

    def types_for(self, user_id: uuid.UUID) -> list[str]:
        return [f['type'] for f in self.frames_for(user_id)]

    def clear(self):
        self.sent.clear()


@pytest.fixture(autouse=True)
def db():
    SQLModel.metadata.create_all(engine)
    try:
        yield engine
    finally:
        SQLModel.metadata.drop_all(engine)


@pytest.fixture()
def session(db):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def people(session):
    """Alice, Bob and Carol share a group; Dave is deactivated; Erin is outside the group."""
    ids = SimpleNamespace(
        alice=uuid.uuid4(),
        bob=uuid.uuid4(),
        carol=uuid.uuid4(),
        dave=uuid.uuid4(),
        erin=uuid.uuid4(),
        team=uuid.uuid4(),
    )
    session.add_all([
        User(id=ids.alice, name='Alice', email='alice@example.com'),
        User(id=ids.bob, name='Bob', email='bob@example.com'),
        User(id=ids.carol, name='Carol', email='carol@example.com'),
        User(id=ids.dave, name='Dave', email='dave@example.com', is_active=False),
        User(id=ids.erin, name='Erin', email='erin@example.com'),
    ])
    session.add(Group(id=ids.team, name='Team'))
    session.commit()
    session.add_all([
        GroupMember(group_id=ids.team, user_id=ids.alice, role=MemberRole.ADMIN),
        GroupMember(group_id=ids.team, user_id=ids.bob),
        GroupMember(group_id=ids.team, user_id=ids.carol),
    ])
    session.commit()
    return ids


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def hub(dispatcher):
    return ChatHub(Store(), dispatcher, typing_ttl=0.2)
