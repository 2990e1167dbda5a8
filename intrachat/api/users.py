import uuid

from fastapi import Depends, HTTPException, status
from fastapi.routing import APIRouter
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from intrachat.db.session import get_session
from intrachat.schemas import User

router = APIRouter(prefix='/users')


class CreateUserRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: str | None = Field(default=None, max_length=200)


@router.get('')
async def list_users(session: Session = Depends(get_session)) -> list[User]:
    return list(session.exec(select(User).where(User.is_active == True).order_by(User.name)).all())  # noqa: E712


@router.post('', status_code=status.HTTP_201_CREATED)
async def create_user(data: CreateUserRequest, session: Session = Depends(get_session)) -> User:
    if data.email:
        existing = session.exec(select(User).where(User.email == data.email)).first()
        if existing:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, detail='Email already registered')

    user = User(name=data.name, email=data.email)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@router.get('/{user_id}')
async def get_user(user_id: uuid.UUID, session: Session = Depends(get_session)) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, 'User not found')
    return user
