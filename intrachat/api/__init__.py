from fastapi.routing import APIRouter

from .chat import router as chat_router
from .groups import router as group_router
from .notifications import router as notification_router
from .search import router as search_router
from .users import router as user_router

api_router = APIRouter(prefix='/api')

api_router.include_router(chat_router)
api_router.include_router(group_router)
api_router.include_router(notification_router)
api_router.include_router(search_router)
api_router.include_router(user_router)

__all__ = ['api_router']
