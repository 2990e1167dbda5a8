from .websocket_router import router as ws_router

__all__ = ['ws_router']
