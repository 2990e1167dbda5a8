from sqlalchemy import or_
from sqlmodel import Session, col, select

from intrachat.schemas import Group, User

SEARCH_LIMIT = 10


def global_search(session: Session, query: str | None) -> dict[str, list]:
    """Active people by name or email, and groups by name."""
    term = (query or '').strip()
    if not term:
        return {'users': [], 'groups': []}

    users = session.exec(
        select(User)
        .where(
            User.is_active == True,  # noqa: E712
            or_(col(User.name).icontains(term, autoescape=True), col(User.email).icontains(term, autoescape=True)),
        )
        .order_by(User.name)
        .limit(SEARCH_LIMIT)
    ).all()
    groups = session.exec(
        select(Group)
        .where(col(Group.name).icontains(term, autoescape=True))
        .order_by(Group.name)
        .limit(SEARCH_LIMIT)
    ).all()
    return {'users': list(users), 'groups': list(groups)}
