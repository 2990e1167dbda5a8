import uuid
from typing import Annotated

from fastapi import Depends, Query, status
from fastapi.routing import APIRouter
from sqlmodel import Session

import intrachat.services.notifications as notifications_service
from intrachat.db.session import get_session
from intrachat.schemas import NotificationOut
from intrachat.services.errors import MessagingError
from intrachat.utils.identity import get_user_id_http
from .common import http_error

router = APIRouter(prefix='/notifications')

ActingUser = Annotated[uuid.UUID, Depends(get_user_id_http)]


@router.get('')
async def get_notifications(
    user_id: ActingUser,
    unread_only: Annotated[bool, Query(alias='unreadOnly')] = False,
    session: Session = Depends(get_session),
) -> list[NotificationOut]:
    return notifications_service.list_notifications(session, user_id, unread_only)


@router.get('/unread-count')
async def get_unread_count(user_id: ActingUser, session: Session = Depends(get_session)) -> dict:
    return {'count': notifications_service.unread_notification_count(session, user_id)}


@router.patch('/read-all')
async def mark_all_as_read(user_id: ActingUser, session: Session = Depends(get_session)) -> dict:
    return {'count': notifications_service.mark_all_notifications_read(session, user_id)}


@router.patch('/{notification_id}/read')
async def mark_as_read(
    notification_id: uuid.UUID,
    user_id: ActingUser,
    session: Session = Depends(get_session),
) -> NotificationOut:
    try:
        return notifications_service.mark_notification_read(session, user_id, notification_id)
    except MessagingError as e:
        raise http_error(e)


@router.delete('/{notification_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: uuid.UUID,
    user_id: ActingUser,
    session: Session = Depends(get_session),
):
    try:
        notifications_service.delete_notification(session, user_id, notification_id)
    except MessagingError as e:
        raise http_error(e)
