import uuid
from datetime import datetime, UTC

from sqlmodel import SQLModel, Field


class Reaction(SQLModel, table=True):
    __tablename__ = 'reactions'

    message_id: uuid.UUID = Field(foreign_key='messages.id', primary_key=True)
    user_id: uuid.UUID = Field(foreign_key='users.id', primary_key=True)
    emoji: str = Field(primary_key=True, max_length=32)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
