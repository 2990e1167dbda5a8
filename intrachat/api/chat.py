import uuid
from typing import Annotated

from fastapi import Depends, Query
from fastapi.routing import APIRouter
from sqlmodel import Session

import intrachat.services.messaging as messaging_service
from intrachat.config import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT
from intrachat.db.session import get_session
from intrachat.services.errors import MessagingError
from .common import http_error

router = APIRouter(prefix='/chat')

Limit = Annotated[int, Query(ge=1, le=MAX_HISTORY_LIMIT)]


@router.get('/messages/{user_id}/{other_user_id}')
async def get_direct_messages(
    user_id: uuid.UUID,
    other_user_id: uuid.UUID,
    limit: Limit = DEFAULT_HISTORY_LIMIT,
    session: Session = Depends(get_session),
) -> list[dict]:
    try:
        return messaging_service.get_direct_messages(session, user_id, other_user_id, limit)
    except MessagingError as e:
        raise http_error(e)


@router.get('/group/{group_id}/messages')
async def get_group_messages(
    group_id: uuid.UUID,
    user_id: uuid.UUID,
    limit: Limit = DEFAULT_HISTORY_LIMIT,
    session: Session = Depends(get_session),
) -> list[dict]:
    try:
        return messaging_service.get_group_messages(session, group_id, user_id, limit)
    except MessagingError as e:
        raise http_error(e)


@router.get('/recent/{user_id}')
async def get_recent_chats(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
) -> list[dict]:
    try:
        return messaging_service.get_recent_chats(session, user_id)
    except MessagingError as e:
        raise http_error(e)


@router.get('/pinned/{group_id}')
async def get_pinned_messages(
    group_id: uuid.UUID,
    session: Session = Depends(get_session),
) -> list[dict]:
    return messaging_service.get_pinned_messages(session, group_id)
