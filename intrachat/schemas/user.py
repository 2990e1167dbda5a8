import uuid
from datetime import datetime

from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    __tablename__ = 'users'

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    email: str | None = Field(default=None, index=True)
    is_active: bool = True
    is_online: bool = False
    last_seen: datetime | None = None
