import uuid
from datetime import datetime, UTC
from enum import StrEnum

from sqlmodel import SQLModel, Field


class MemberRole(StrEnum):
    MEMBER = 'MEMBER'
    ADMIN = 'ADMIN'


class Group(SQLModel, table=True):
    __tablename__ = 'groups'

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    picture: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


class GroupMember(SQLModel, table=True):
    __tablename__ = 'group_members'

    group_id: uuid.UUID = Field(foreign_key='groups.id', primary_key=True)
    user_id: uuid.UUID = Field(foreign_key='users.id', primary_key=True)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    joined_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
