"""Persistence gateway for the realtime core.

Plain functions over a SQLModel ``Session``. They run in the threadpool, one
session per call, so everything handed back is already converted to wire
models (ORM rows are detached once the session closes).
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC

from sqlalchemy import and_, or_
from sqlmodel import Session, select, desc

import intrachat.services.notifications as notifications_service
from intrachat.schemas import (
    Group,
    GroupMember,
    Message,
    MessageReceipt,
    NotificationOut,
    Reaction,
    ReceiptStatus,
    User,
    to_message_out,
)
from intrachat.schemas.message_out import MessageOut, ReactionOut
from intrachat.services.chats import ChatRef
from intrachat.services.errors import BadRequestError, PermissionDeniedError, StaleTargetError

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    message: MessageOut
    chat: ChatRef
    created: bool
    recipient_ids: set[uuid.UUID] = field(default_factory=set)
    unread_counts: dict[uuid.UUID, int] = field(default_factory=dict)
    notifications: dict[uuid.UUID, NotificationOut] = field(default_factory=dict)


@dataclass
class ReceiptResult:
    message_id: uuid.UUID
    sender_id: uuid.UUID
    chat: ChatRef
    advanced: str | None
    delivered_at: datetime | None
    seen_at: datetime | None


@dataclass
class ChatReadResult:
    chat: ChatRef
    advanced: list[ReceiptResult]
    unread_count: int


@dataclass
class MutationResult:
    message: MessageOut
    chat: ChatRef
    participant_ids: set[uuid.UUID]
    changed: bool
    reaction: ReactionOut | None = None


def require_user(session: Session, user_id: uuid.UUID) -> User:
    user = session.get(User, user_id)
    if not user:
        raise StaleTargetError('User not found', {'user_id': str(user_id)})
    return user


def require_message(session: Session, message_id: uuid.UUID, allow_deleted: bool = False) -> Message:
    message = session.get(Message, message_id)
    if not message or (message.is_deleted and not allow_deleted):
        raise StaleTargetError('Message not found', {'message_id': str(message_id)})
    return message


def chat_of_message(session: Session, message_id: uuid.UUID) -> ChatRef:
    return ChatRef.of_message(require_message(session, message_id, allow_deleted=True))


def group_member_ids(session: Session, group_id: uuid.UUID) -> set[uuid.UUID]:
    return set(session.exec(select(GroupMember.user_id).where(GroupMember.group_id == group_id)).all())


def participant_ids(session: Session, chat: ChatRef) -> set[uuid.UUID]:
    if chat.is_group:
        return group_member_ids(session, chat.group_id)
    return set(chat.pair)


def require_participant(session: Session, user_id: uuid.UUID, chat: ChatRef) -> set[uuid.UUID]:
    participants = participant_ids(session, chat)
    if user_id not in participants:
        raise StaleTargetError('Not a participant of this chat')
    return participants


def _chat_clause(chat: ChatRef):
    if chat.is_group:
        return Message.group_id == chat.group_id
    a, b = chat.pair
    return or_(
        and_(Message.sender_id == a, Message.receiver_id == b, Message.group_id.is_(None)),
        and_(Message.sender_id == b, Message.receiver_id == a, Message.group_id.is_(None)),
    )


def reactions_for(session: Session, message_ids: list[uuid.UUID]) -> dict[uuid.UUID, list[Reaction]]:
    out: dict[uuid.UUID, list[Reaction]] = {mid: [] for mid in message_ids}
    if not message_ids:
        return out
    rows = session.exec(
        select(Reaction).where(Reaction.message_id.in_(message_ids)).order_by(Reaction.created_at)
    ).all()
    for r in rows:
        out[r.message_id].append(r)
    return out


def _message_out(session: Session, message: Message, viewer_id: uuid.UUID) -> MessageOut:
    reactions = reactions_for(session, [message.id])[message.id]
    return to_message_out(message, reactions, viewer_id)


def unread_count(session: Session, chat: ChatRef, user_id: uuid.UUID) -> int:
    rows = session.exec(
        select(Message, MessageReceipt.status)
        .join(
            MessageReceipt,
            and_(MessageReceipt.message_id == Message.id, MessageReceipt.user_id == user_id),
            isouter=True,
        )
        .where(_chat_clause(chat), Message.sender_id != user_id, Message.is_deleted == False)  # noqa: E712
    ).all()
    return sum(
        1
        for message, status in rows
        if status != ReceiptStatus.SEEN and not message.is_deleted_for(user_id)
    )


def create_message(session: Session, sender_id: uuid.UUID, payload: dict) -> IngestResult:
    """Store a composed message once per (sender, client_temp_id)."""
    existing = session.exec(
        select(Message).where(
            Message.sender_id == sender_id,
            Message.client_temp_id == payload['client_temp_id'],
        )
    ).first()
    if existing:
        logger.info('Duplicate send for temp id %s, returning %s', existing.client_temp_id, existing.id)
        chat = ChatRef.of_message(existing)
        # the first attempt may have committed without anyone hearing about it
        recipients = participant_ids(session, chat) - {sender_id}
        return IngestResult(
            message=_message_out(session, existing, sender_id),
            chat=chat,
            created=False,
            recipient_ids=recipients,
            unread_counts={uid: unread_count(session, chat, uid) for uid in recipients},
        )

    sender = require_user(session, sender_id)
    if not sender.is_active:
        raise PermissionDeniedError('Your account is not active')

    receiver_id = payload.get('receiver_id')
    group_id = payload.get('group_id')

    group = None
    if receiver_id is not None:
        receiver = require_user(session, receiver_id)
        if not receiver.is_active:
            raise PermissionDeniedError('Cannot send message to an inactive user')
        chat = ChatRef.direct(sender_id, receiver_id)
    else:
        group = session.get(Group, group_id)
        if not group:
            raise StaleTargetError('Group not found', {'group_id': str(group_id)})
        chat = ChatRef.group(group_id)

    participants = require_participant(session, sender_id, chat)

    reply_to_id = payload.get('reply_to_id')
    if reply_to_id is not None:
        reply_to = session.get(Message, reply_to_id)
        if not reply_to or ChatRef.of_message(reply_to) != chat:
            raise StaleTargetError('Replied message not found in this chat')

    forwarded_id = payload.get('forwarded_from_message_id')
    if forwarded_id is not None:
        require_message(session, forwarded_id)

    content = payload.get('content')
    message = Message(
        client_temp_id=payload['client_temp_id'],
        sender_id=sender_id,
        receiver_id=receiver_id,
        group_id=group_id,
        content=content.strip() if content else None,
        attachments=list(payload.get('attachments') or []),
        reply_to_id=reply_to_id,
        forwarded_from_message_id=forwarded_id,
    )
    session.add(message)

    recipients = participants - {sender_id}
    notifications = notifications_service.add_message_notifications(session, message, sender, group, recipients)
    session.commit()
    session.refresh(message)

    return IngestResult(
        message=to_message_out(message, viewer_id=sender_id),
        chat=chat,
        created=True,
        recipient_ids=recipients,
        unread_counts={uid: unread_count(session, chat, uid) for uid in recipients},
        notifications={n.user_id: NotificationOut.model_validate(n) for n in notifications},
    )


def _advance(message: Message, receipt: MessageReceipt, status: ReceiptStatus, now: datetime) -> str | None:
    """Move receipt and message forward; returns the message-level transition, if any."""
    if status.rank <= ReceiptStatus(receipt.status).rank:
        return None

    receipt.status = status
    if status == ReceiptStatus.SEEN:
        receipt.seen_at = now
    if receipt.delivered_at is None:
        receipt.delivered_at = now

    if status == ReceiptStatus.SEEN and message.seen_at is None:
        message.seen_at = now
        if message.delivered_at is None:
            message.delivered_at = now
        return 'seen'
    if status == ReceiptStatus.DELIVERED and message.delivered_at is None:
        message.delivered_at = now
        return 'delivered'
    return None


def _receipt_for(session: Session, message_id: uuid.UUID, user_id: uuid.UUID) -> MessageReceipt:
    receipt = session.get(MessageReceipt, (message_id, user_id))
    if not receipt:
        receipt = MessageReceipt(message_id=message_id, user_id=user_id, status=ReceiptStatus.SENT)
    return receipt


def apply_receipt(session: Session, user_id: uuid.UUID, message_id: uuid.UUID, status: ReceiptStatus) -> ReceiptResult:
    message = require_message(session, message_id)
    chat = ChatRef.of_message(message)
    if message.sender_id == user_id:
        raise PermissionDeniedError('Sender cannot acknowledge own message')
    require_participant(session, user_id, chat)

    receipt = _receipt_for(session, message_id, user_id)
    advanced = _advance(message, receipt, status, datetime.now(tz=UTC))
    session.add(receipt)
    session.add(message)
    session.commit()
    session.refresh(message)

    return ReceiptResult(
        message_id=message.id,
        sender_id=message.sender_id,
        chat=chat,
        advanced=advanced,
        delivered_at=message.delivered_at,
        seen_at=message.seen_at,
    )


def mark_chat_read(session: Session, user_id: uuid.UUID, chat: ChatRef) -> ChatReadResult:
    require_participant(session, user_id, chat)

    rows = session.exec(
        select(Message)
        .where(_chat_clause(chat), Message.sender_id != user_id, Message.is_deleted == False)  # noqa: E712
        .order_by(Message.created_at, Message.id)
    ).all()

    now = datetime.now(tz=UTC)
    touched = []
    for message in rows:
        receipt = _receipt_for(session, message.id, user_id)
        if receipt.status == ReceiptStatus.SEEN:
            continue
        advanced = _advance(message, receipt, ReceiptStatus.SEEN, now)
        session.add(receipt)
        session.add(message)
        touched.append((message, advanced))
    session.commit()

    results = [
        ReceiptResult(
            message_id=m.id,
            sender_id=m.sender_id,
            chat=chat,
            advanced=advanced,
            delivered_at=m.delivered_at,
            seen_at=m.seen_at,
        )
        for m, advanced in touched
    ]
    return ChatReadResult(chat=chat, advanced=results, unread_count=unread_count(session, chat, user_id))


def add_reaction(session: Session, user_id: uuid.UUID, message_id: uuid.UUID, emoji: str) -> MutationResult:
    message = require_message(session, message_id)
    chat = ChatRef.of_message(message)
    participants = require_participant(session, user_id, chat)

    reaction = session.get(Reaction, (message_id, user_id, emoji))
    changed = reaction is None
    if changed:
        reaction = Reaction(message_id=message_id, user_id=user_id, emoji=emoji)
        session.add(reaction)
        session.commit()
        session.refresh(reaction)

    return MutationResult(
        message=_message_out(session, message, user_id),
        chat=chat,
        participant_ids=participants,
        changed=changed,
        reaction=ReactionOut.model_validate(reaction),
    )


def remove_reaction(session: Session, user_id: uuid.UUID, message_id: uuid.UUID, emoji: str) -> MutationResult:
    message = require_message(session, message_id)
    chat = ChatRef.of_message(message)
    participants = require_participant(session, user_id, chat)

    reaction = session.get(Reaction, (message_id, user_id, emoji))
    if reaction:
        session.delete(reaction)
        session.commit()

    return MutationResult(
        message=_message_out(session, message, user_id),
        chat=chat,
        participant_ids=participants,
        changed=reaction is not None,
    )


def set_pinned(session: Session, user_id: uuid.UUID, message_id: uuid.UUID, is_pinned: bool) -> MutationResult:
    message = require_message(session, message_id)
    chat = ChatRef.of_message(message)
    participants = require_participant(session, user_id, chat)

    changed = message.is_pinned != is_pinned
    if changed:
        message.is_pinned = is_pinned
        session.add(message)
        session.commit()
        session.refresh(message)

    return MutationResult(
        message=_message_out(session, message, user_id),
        chat=chat,
        participant_ids=participants,
        changed=changed,
    )


def delete_message(session: Session, user_id: uuid.UUID, message_id: uuid.UUID, for_everyone: bool) -> MutationResult:
    message = require_message(session, message_id, allow_deleted=True)
    chat = ChatRef.of_message(message)
    participants = require_participant(session, user_id, chat)

    if for_everyone:
        if message.sender_id != user_id:
            raise PermissionDeniedError('Only sender can delete the message for everyone')
        changed = not message.is_deleted
        message.is_deleted = True
    else:
        changed = not message.is_deleted_for(user_id)
        if changed:
            message.deleted_for = [*(message.deleted_for or []), str(user_id)]

    if changed:
        session.add(message)
        session.commit()
        session.refresh(message)

    return MutationResult(
        message=_message_out(session, message, user_id),
        chat=chat,
        participant_ids=participants,
        changed=changed,
    )


def typing_recipients(session: Session, user_id: uuid.UUID, chat: ChatRef) -> set[uuid.UUID]:
    if chat.is_group:
        return require_participant(session, user_id, chat) - {user_id}
    return set(chat.pair) - {user_id}


def contact_ids(session: Session, user_id: uuid.UUID) -> set[uuid.UUID]:
    """Counterparts of the user's direct chats plus co-members of their groups."""
    contacts: set[uuid.UUID] = set()
    rows = session.exec(
        select(Message.sender_id, Message.receiver_id).where(
            Message.group_id.is_(None),
            or_(Message.sender_id == user_id, Message.receiver_id == user_id),
        )
    ).all()
    for sender, receiver in rows:
        contacts.update((sender, receiver))

    group_ids = session.exec(select(GroupMember.group_id).where(GroupMember.user_id == user_id)).all()
    if group_ids:
        contacts.update(session.exec(select(GroupMember.user_id).where(GroupMember.group_id.in_(group_ids))).all())

    contacts.discard(None)
    contacts.discard(user_id)
    return contacts


def record_presence(session: Session, user_id: uuid.UUID, is_online: bool, last_seen: datetime | None = None) -> None:
    user = session.get(User, user_id)
    if not user:
        return
    user.is_online = is_online
    if last_seen is not None:
        user.last_seen = last_seen
    session.add(user)
    session.commit()


def _history(session: Session, chat: ChatRef, viewer_id: uuid.UUID, limit: int) -> list[dict]:
    """Newest ``limit`` messages, oldest first.

    Deleted rows stay in the page as tombstones so a client that missed the
    ``messageDeleted`` event drops its cached copy on the next catch-up.
    """
    rows = session.exec(
        select(Message)
        .where(_chat_clause(chat))
        .order_by(desc(Message.created_at), desc(Message.id))
        .limit(limit)
    ).all()
    messages = list(reversed(rows))
    reactions = reactions_for(session, [m.id for m in messages])
    return [to_message_out(m, reactions[m.id], viewer_id).dump() for m in messages]


def get_direct_messages(session: Session, user_id: uuid.UUID, other_id: uuid.UUID, limit: int) -> list[dict]:
    require_user(session, user_id)
    require_user(session, other_id)
    return _history(session, ChatRef.direct(user_id, other_id), user_id, limit)


def get_group_messages(session: Session, group_id: uuid.UUID, viewer_id: uuid.UUID, limit: int) -> list[dict]:
    chat = ChatRef.group(group_id)
    if not session.get(Group, group_id):
        raise StaleTargetError('Group not found')
    require_participant(session, viewer_id, chat)
    return _history(session, chat, viewer_id, limit)


def get_pinned_messages(session: Session, group_id: uuid.UUID) -> list[dict]:
    rows = session.exec(
        select(Message)
        .where(Message.group_id == group_id, Message.is_pinned == True, Message.is_deleted == False)  # noqa: E712
        .order_by(desc(Message.created_at))
    ).all()
    reactions = reactions_for(session, [m.id for m in rows])
    return [to_message_out(m, reactions[m.id]).dump() for m in rows]


def get_recent_chats(session: Session, user_id: uuid.UUID) -> list[dict]:
    require_user(session, user_id)

    latest: dict[uuid.UUID, Message] = {}
    rows = session.exec(
        select(Message)
        .where(
            Message.group_id.is_(None),
            Message.is_deleted == False,  # noqa: E712
            or_(Message.sender_id == user_id, Message.receiver_id == user_id),
        )
        .order_by(desc(Message.created_at))
    ).all()
    for m in rows:
        if m.is_deleted_for(user_id):
            continue
        partner_id = m.receiver_id if m.sender_id == user_id else m.sender_id
        latest.setdefault(partner_id, m)

    chats = []
    for partner_id, m in latest.items():
        partner = session.get(User, partner_id)
        if not partner or (partner_id != user_id and not partner.is_active):
            continue
        chats.append({
            'id': str(partner_id),
            'name': partner.name,
            'isGroup': False,
            'isOnline': partner.is_online,
            'lastMessage': to_message_out(m, viewer_id=user_id).dump(),
            'unreadCount': unread_count(session, ChatRef.direct(user_id, partner_id), user_id),
        })

    memberships = session.exec(select(GroupMember).where(GroupMember.user_id == user_id)).all()
    for membership in memberships:
        group = session.get(Group, membership.group_id)
        if not group:
            continue
        chat = ChatRef.group(group.id)
        last = session.exec(
            select(Message)
            .where(Message.group_id == group.id, Message.is_deleted == False)  # noqa: E712
            .order_by(desc(Message.created_at))
            .limit(1)
        ).first()
        chats.append({
            'id': str(group.id),
            'name': group.name,
            'picture': group.picture,
            'isGroup': True,
            'lastMessage': to_message_out(last, viewer_id=user_id).dump() if last else None,
            'unreadCount': unread_count(session, chat, user_id),
        })

    chats.sort(key=lambda c: (c['lastMessage'] or {}).get('createdAt') or '', reverse=True)
    return chats


def validate_target(payload: dict) -> None:
    has_receiver = payload.get('receiver_id') is not None
    has_group = payload.get('group_id') is not None
    if has_receiver == has_group:
        raise BadRequestError('Exactly one of receiverId or groupId is required')

    content = payload.get('content')
    if not (content and content.strip()) and not payload.get('attachments'):
        raise BadRequestError('Message must have content or attachments')
