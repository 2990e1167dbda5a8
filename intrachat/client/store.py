"""Client-side message cache.

Holds the messages of every chat the client has seen, keyed by the canonical
message id. An optimistic copy inserted before the server confirms it is keyed
by its ``clientTempId`` and can only leave the cache through :meth:`confirm`
(swapped for the canonical copy) or :meth:`rollback` (removed on failure).
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, UTC
from enum import IntEnum
from typing import Iterable

from intrachat.schemas.message_out import MessageOut, ReactionOut
from intrachat.services.chats import ChatRef

logger = logging.getLogger(__name__)


class LocalStatus(IntEnum):
    SENDING = 0
    SENT = 1
    DELIVERED = 2
    SEEN = 3

    @classmethod
    def of(cls, message: MessageOut) -> 'LocalStatus':
        if message.seen_at:
            return cls.SEEN
        if message.delivered_at:
            return cls.DELIVERED
        return cls.SENT


@dataclass
class LocalMessage:
    message: MessageOut
    status: LocalStatus
    temp_id: str | None = None

    @property
    def pending(self) -> bool:
        return self.status == LocalStatus.SENDING


def chat_key_of(message: MessageOut) -> str:
    return ChatRef.of_message(message).key


class ChatStore:
    def __init__(self):
        self._chats: dict[str, list[LocalMessage]] = {}
        self._by_id: dict[uuid.UUID, LocalMessage] = {}
        self._by_temp: dict[str, LocalMessage] = {}

    def _chat(self, chat_key: str) -> list[LocalMessage]:
        return self._chats.setdefault(chat_key, [])

    def _sort(self, chat_key: str) -> None:
        # pending copies stay after everything the server already ordered
        self._chat(chat_key).sort(key=lambda e: (e.pending, e.message.created_at, str(e.message.id)))

    def get(self, message_id: uuid.UUID) -> LocalMessage | None:
        return self._by_id.get(message_id)

    def pending(self, temp_id: str) -> LocalMessage | None:
        return self._by_temp.get(temp_id)

    def insert_optimistic(
        self,
        temp_id: str,
        sender_id: uuid.UUID,
        *,
        receiver_id: uuid.UUID | None = None,
        group_id: uuid.UUID | None = None,
        content: str | None = None,
        attachments: Iterable[str] = (),
        reply_to_id: uuid.UUID | None = None,
    ) -> LocalMessage:
        if temp_id in self._by_temp:
            raise ValueError(f'temp id {temp_id!r} already pending')

        message = MessageOut(
            id=uuid.uuid4(),
            client_temp_id=temp_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            group_id=group_id,
            content=content,
            attachments=list(attachments),
            reply_to_id=reply_to_id,
            created_at=datetime.now(tz=UTC),
        )
        entry = LocalMessage(message=message, status=LocalStatus.SENDING, temp_id=temp_id)
        chat_key = chat_key_of(message)
        self._chat(chat_key).append(entry)
        self._by_temp[temp_id] = entry
        return entry

    def confirm(self, temp_id: str | None, canonical: MessageOut) -> LocalMessage:
        """Swap the optimistic copy for the server's.

        If the canonical message already reached the cache by another route
        (backlog, another device) the optimistic copy is just dropped.
        """
        entry = self._by_temp.pop(temp_id, None) if temp_id else None
        if entry is None:
            return self._upsert(canonical)

        chat = self._chat(chat_key_of(entry.message))
        existing = self._by_id.get(canonical.id)
        if existing is not None:
            chat.remove(entry)
            self._merge(existing, canonical)
            return existing

        entry.message = canonical
        entry.status = max(LocalStatus.SENT, LocalStatus.of(canonical))
        self._by_id[canonical.id] = entry
        self._sort(chat_key_of(canonical))
        return entry

    def rollback(self, temp_id: str | None) -> LocalMessage | None:
        entry = self._by_temp.pop(temp_id, None) if temp_id else None
        if entry is None:
            return None
        self._chat(chat_key_of(entry.message)).remove(entry)
        logger.info('Rolled back optimistic message %s', temp_id)
        return entry

    def upsert(self, message: MessageOut) -> bool:
        """Insert a canonical message; returns False when it was already cached."""
        known = message.id in self._by_id
        self._upsert(message)
        return not known

    def _upsert(self, message: MessageOut) -> LocalMessage:
        existing = self._by_id.get(message.id)
        if existing is not None:
            self._merge(existing, message)
            return existing

        entry = LocalMessage(message=message, status=LocalStatus.of(message))
        chat_key = chat_key_of(message)
        self._chat(chat_key).append(entry)
        self._by_id[message.id] = entry
        self._sort(chat_key)
        return entry

    def _merge(self, entry: LocalMessage, incoming: MessageOut) -> None:
        current = entry.message
        entry.message = incoming.model_copy(update={
            # deletions and timestamps never go backwards on a stale copy
            'is_deleted': current.is_deleted or incoming.is_deleted,
            'deleted_for': sorted(set(current.deleted_for) | set(incoming.deleted_for)),
            'delivered_at': current.delivered_at or incoming.delivered_at,
            'seen_at': current.seen_at or incoming.seen_at,
            'client_temp_id': current.client_temp_id or incoming.client_temp_id,
        })
        entry.status = max(entry.status, LocalStatus.of(entry.message))

    def merge_backlog(self, messages: Iterable[MessageOut]) -> int:
        """Fold a history page into the cache; returns how many were new."""
        added = 0
        for message in messages:
            temp_id = message.client_temp_id
            if temp_id and temp_id in self._by_temp:
                self.confirm(temp_id, message)
                added += 1
            elif self.upsert(message):
                added += 1
        return added

    def apply_status(
        self,
        message_id: uuid.UUID,
        status: str,
        delivered_at: datetime | None = None,
        seen_at: datetime | None = None,
    ) -> bool:
        entry = self._by_id.get(message_id)
        if entry is None:
            return False
        target = LocalStatus.SEEN if status == 'seen' else LocalStatus.DELIVERED
        if target <= entry.status:
            return False

        update = {'delivered_at': entry.message.delivered_at or delivered_at or seen_at}
        if target == LocalStatus.SEEN:
            update['seen_at'] = entry.message.seen_at or seen_at
        entry.message = entry.message.model_copy(update=update)
        entry.status = target
        return True

    def add_reaction(self, reaction: ReactionOut) -> bool:
        entry = self._by_id.get(reaction.message_id)
        if entry is None:
            return False
        reactions = entry.message.reactions
        if any(r.user_id == reaction.user_id and r.emoji == reaction.emoji for r in reactions):
            return False
        entry.message = entry.message.model_copy(update={'reactions': [*reactions, reaction]})
        return True

    def remove_reaction(self, message_id: uuid.UUID, user_id: uuid.UUID, emoji: str) -> bool:
        entry = self._by_id.get(message_id)
        if entry is None:
            return False
        reactions = entry.message.reactions
        kept = [r for r in reactions if not (r.user_id == user_id and r.emoji == emoji)]
        if len(kept) == len(reactions):
            return False
        entry.message = entry.message.model_copy(update={'reactions': kept})
        return True

    def set_pinned(self, message_id: uuid.UUID, is_pinned: bool) -> bool:
        entry = self._by_id.get(message_id)
        if entry is None or entry.message.is_pinned == is_pinned:
            return False
        entry.message = entry.message.model_copy(update={'is_pinned': is_pinned})
        return True

    def mark_deleted(self, message_id: uuid.UUID, for_everyone: bool, viewer_id: uuid.UUID) -> bool:
        entry = self._by_id.get(message_id)
        if entry is None:
            return False
        if for_everyone:
            entry.message = entry.message.model_copy(update={'is_deleted': True})
        else:
            deleted_for = set(entry.message.deleted_for) | {str(viewer_id)}
            entry.message = entry.message.model_copy(update={'deleted_for': sorted(deleted_for)})
        return True

    def messages(self, chat_key: str) -> list[LocalMessage]:
        return list(self._chats.get(chat_key, ()))

    def visible_messages(self, chat_key: str, viewer_id: uuid.UUID) -> list[MessageOut]:
        viewer = str(viewer_id)
        return [
            e.message
            for e in self._chats.get(chat_key, ())
            if not e.message.is_deleted and viewer not in e.message.deleted_for
        ]

    def pinned(self, chat_key: str) -> list[MessageOut]:
        return [e.message for e in self._chats.get(chat_key, ()) if e.message.is_pinned and not e.message.is_deleted]
