import uuid
from datetime import datetime

from intrachat.schemas.base import CamelModel


class ReactionOut(CamelModel):
    message_id: uuid.UUID
    user_id: uuid.UUID
    emoji: str
    created_at: datetime


class MessageOut(CamelModel):
    id: uuid.UUID
    client_temp_id: str | None = None
    sender_id: uuid.UUID
    receiver_id: uuid.UUID | None = None
    group_id: uuid.UUID | None = None
    content: str | None = None
    attachments: list[str] = []
    reply_to_id: uuid.UUID | None = None
    forwarded_from_message_id: uuid.UUID | None = None
    is_pinned: bool = False
    is_deleted: bool = False
    deleted_for: list[str] = []
    created_at: datetime
    delivered_at: datetime | None = None
    seen_at: datetime | None = None
    reactions: list[ReactionOut] = []
