import uuid
from datetime import datetime, UTC
from enum import StrEnum

from sqlalchemy import Column
from sqlmodel import SQLModel, Field

from intrachat.db.types import EncryptedString
from intrachat.schemas.base import CamelModel


class NotificationType(StrEnum):
    MESSAGE = 'MESSAGE'
    REPLY = 'REPLY'
    MENTION = 'MENTION'
    GROUP_ADD = 'GROUP_ADD'
    GROUP_REMOVE = 'GROUP_REMOVE'
    SYSTEM = 'SYSTEM'


class Notification(SQLModel, table=True):
    __tablename__ = 'notifications'

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key='users.id', index=True)
    type: NotificationType = Field(default=NotificationType.MESSAGE)
    title: str
    # previews carry message text, so they are encrypted like the message itself
    content: str = Field(sa_column=Column(EncryptedString, nullable=False))
    link: str | None = None
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)


class NotificationOut(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: NotificationType
    title: str
    content: str
    link: str | None = None
    is_read: bool = False
    created_at: datetime
