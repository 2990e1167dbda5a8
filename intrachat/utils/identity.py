"""Identity resolution.

There are no credentials: a client picks a user from the directory and
presents its id. We only check that the user exists and is active.
"""
import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Query, WebSocketException, status
from sqlmodel import Session

from intrachat.db.session import get_session
from intrachat.schemas import User


def resolve_user_id(session: Session, raw: str | None) -> uuid.UUID | None:
    if not raw:
        return None
    try:
        user_id = uuid.UUID(raw)
    except ValueError:
        return None

    user = session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user_id


def get_user_id_http(
    user_id: Annotated[str | None, Query(alias='userId')] = None,
    session: Session = Depends(get_session),
) -> uuid.UUID:
    res = resolve_user_id(session, user_id)
    if res is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Unknown or inactive user',
        )
    return res


def get_user_id_ws(
    user_id: Annotated[str | None, Query(alias='userId')] = None,
    session: Session = Depends(get_session),
) -> uuid.UUID:
    res = resolve_user_id(session, user_id)
    if res is None:
        raise WebSocketException(status.WS_1008_POLICY_VIOLATION, 'Unknown or inactive user')
    return res
