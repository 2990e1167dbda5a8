from fastapi import Depends
from fastapi.routing import APIRouter
from sqlmodel import Session

from intrachat.db.session import get_session
from intrachat.services.search import global_search

router = APIRouter(prefix='/search')


@router.get('')
async def search(q: str = '', session: Session = Depends(get_session)) -> dict:
    return global_search(session, q)
