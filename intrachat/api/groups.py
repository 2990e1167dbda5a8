import uuid
from datetime import datetime
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.routing import APIRouter
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from intrachat.db.session import get_session
from intrachat.schemas import Group, GroupMember, MemberRole, User
from intrachat.utils.identity import get_user_id_http

router = APIRouter(prefix='/groups')


class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    picture: str | None = None
    member_ids: list[uuid.UUID] = Field(default_factory=list, max_length=100)


class MemberInformation(BaseModel):
    id: uuid.UUID
    name: str
    role: MemberRole
    joined_at: datetime


def _require_membership(session: Session, group_id: uuid.UUID, user_id: uuid.UUID) -> GroupMember:
    group = session.get(Group, group_id)
    membership = session.get(GroupMember, (group_id, user_id))
    if not group or not membership:
        raise HTTPException(status.HTTP_404_NOT_FOUND, 'Could not find group')
    return membership


@router.get('')
async def get_groups(
    user_id: Annotated[uuid.UUID, Depends(get_user_id_http)],
    session: Session = Depends(get_session),
) -> list[Group]:
    groups = session.exec(
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
        .order_by(Group.name)
    ).all()
    return list(groups)


@router.post('', status_code=status.HTTP_201_CREATED)
async def create_group(
    data: CreateGroupRequest,
    user_id: Annotated[uuid.UUID, Depends(get_user_id_http)],
    session: Session = Depends(get_session),
) -> Group:
    member_ids = {m for m in data.member_ids if m != user_id}
    existing = session.exec(select(User.id).where(User.id.in_(member_ids))).all()
    if len(existing) != len(member_ids):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail='Adding non-existing user(s)')

    group = Group(name=data.name, picture=data.picture)
    members = [GroupMember(group_id=group.id, user_id=user_id, role=MemberRole.ADMIN)]
    members.extend(GroupMember(group_id=group.id, user_id=m) for m in member_ids)

    session.add(group)
    session.add_all(members)
    session.commit()
    session.refresh(group)
    return group


@router.get('/{group_id}/participants')
async def get_group_participants(
    group_id: uuid.UUID,
    user_id: Annotated[uuid.UUID, Depends(get_user_id_http)],
    session: Session = Depends(get_session),
) -> list[MemberInformation]:
    _require_membership(session, group_id, user_id)

    rows = session.exec(
        select(User.id, User.name, GroupMember.role, GroupMember.joined_at)
        .join(GroupMember, GroupMember.user_id == User.id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.joined_at)
    ).all()
    return [MemberInformation(id=r[0], name=r[1], role=r[2], joined_at=r[3]) for r in rows]


@router.put('/{group_id}/participants/{participant_id}', status_code=status.HTTP_204_NO_CONTENT)
async def add_group_participant(
    group_id: uuid.UUID,
    participant_id: uuid.UUID,
    user_id: Annotated[uuid.UUID, Depends(get_user_id_http)],
    session: Session = Depends(get_session),
) -> None:
    adder = _require_membership(session, group_id, user_id)
    if adder.role != MemberRole.ADMIN:
        raise HTTPException(status.HTTP_403_FORBIDDEN, 'Only admin can add members to a group')

    if not session.get(User, participant_id):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, 'Adding a non-existing user')

    if session.get(GroupMember, (group_id, participant_id)):
        return None

    session.add(GroupMember(group_id=group_id, user_id=participant_id))
    session.commit()
    return None


@router.delete('/{group_id}/participants/{participant_id}', status_code=status.HTTP_204_NO_CONTENT)
async def remove_group_participant(
    group_id: uuid.UUID,
    participant_id: uuid.UUID,
    user_id: Annotated[uuid.UUID, Depends(get_user_id_http)],
    session: Session = Depends(get_session),
) -> None:
    remover = _require_membership(session, group_id, user_id)
    to_remove = session.get(GroupMember, (group_id, participant_id))
    if not to_remove:
        return None

    if participant_id != user_id and remover.role != MemberRole.ADMIN:
        raise HTTPException(status.HTTP_403_FORBIDDEN, 'Only admin can remove other members from a group')

    session.delete(to_remove)
    session.commit()
    return None
