"""In-app notifications.

One row per recipient for every composed message, written in the same
transaction as the message so a rolled back send leaves none behind.
"""
import uuid
from collections.abc import Iterable

from sqlalchemy import func
from sqlmodel import Session, select, desc

from intrachat.schemas import Group, Message, Notification, NotificationOut, NotificationType, User
from intrachat.services.errors import StaleTargetError

NOTIFICATION_PAGE = 50
ATTACHMENT_PREVIEW = 'Sent an attachment'


def add_message_notifications(
    session: Session,
    message: Message,
    sender: User,
    group: Group | None,
    recipient_ids: Iterable[uuid.UUID],
) -> list[Notification]:
    """Stage a MESSAGE notification for each recipient; the caller commits."""
    if group is not None:
        title = f'{sender.name} in {group.name}'
        link = f'/groups/{group.id}'
    else:
        title = sender.name
        link = f'/chats/{sender.id}'
    preview = message.content or ATTACHMENT_PREVIEW

    notifications = [
        Notification(user_id=uid, type=NotificationType.MESSAGE, title=title, content=preview, link=link)
        for uid in recipient_ids
    ]
    session.add_all(notifications)
    return notifications


def _owned(session: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
    notification = session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise StaleTargetError('Notification not found', {'notification_id': str(notification_id)})
    return notification


def list_notifications(session: Session, user_id: uuid.UUID, unread_only: bool = False) -> list[NotificationOut]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712
    rows = session.exec(query.order_by(desc(Notification.created_at)).limit(NOTIFICATION_PAGE)).all()
    return [NotificationOut.model_validate(n) for n in rows]


def unread_notification_count(session: Session, user_id: uuid.UUID) -> int:
    return session.exec(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
    ).one()


def mark_notification_read(session: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> NotificationOut:
    notification = _owned(session, user_id, notification_id)
    if not notification.is_read:
        notification.is_read = True
        session.add(notification)
        session.commit()
        session.refresh(notification)
    return NotificationOut.model_validate(notification)


def mark_all_notifications_read(session: Session, user_id: uuid.UUID) -> int:
    rows = session.exec(
        select(Notification).where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
    ).all()
    for notification in rows:
        notification.is_read = True
        session.add(notification)
    session.commit()
    return len(rows)


def delete_notification(session: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
    session.delete(_owned(session, user_id, notification_id))
    session.commit()
