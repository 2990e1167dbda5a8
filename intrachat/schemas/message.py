import uuid
from datetime import datetime, UTC

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field

from intrachat.db.types import EncryptedString
from intrachat.schemas.message_out import MessageOut, ReactionOut


class Message(SQLModel, table=True):
    __tablename__ = 'messages'
    __table_args__ = (UniqueConstraint('sender_id', 'client_temp_id', name='uq_messages_sender_temp_id'),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    client_temp_id: str | None = Field(default=None, max_length=128)
    sender_id: uuid.UUID = Field(foreign_key='users.id', index=True)
    receiver_id: uuid.UUID | None = Field(default=None, foreign_key='users.id', index=True)
    group_id: uuid.UUID | None = Field(default=None, foreign_key='groups.id', index=True)

    content: str | None = Field(default=None, sa_column=Column(EncryptedString, nullable=True))
    attachments: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    reply_to_id: uuid.UUID | None = Field(default=None, foreign_key='messages.id')
    forwarded_from_message_id: uuid.UUID | None = Field(default=None, foreign_key='messages.id')

    is_pinned: bool = Field(default=False)
    is_deleted: bool = Field(default=False)
    deleted_for: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    delivered_at: datetime | None = None
    seen_at: datetime | None = None

    def is_deleted_for(self, user_id: uuid.UUID) -> bool:
        return str(user_id) in (self.deleted_for or [])


def to_message_out(m: Message, reactions=(), viewer_id: uuid.UUID | None = None) -> MessageOut:
    """Wire view of a message as ``viewer_id`` may see it.

    The temp id is only handed back to the sender, and a viewer only learns
    about their own delete-for-me entry. A message deleted for the viewer goes
    out as a tombstone (no content, attachments or reactions) so cached copies
    can drop it.
    """
    hidden = m.is_deleted or (viewer_id is not None and m.is_deleted_for(viewer_id))
    out = MessageOut.model_validate(m)
    out.reactions = [] if hidden else [ReactionOut.model_validate(r) for r in reactions]
    out.deleted_for = [str(viewer_id)] if viewer_id is not None and m.is_deleted_for(viewer_id) else []
    if viewer_id != m.sender_id:
        out.client_temp_id = None
    if hidden:
        out.content = None
        out.attachments = []
    return out
