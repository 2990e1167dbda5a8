import asyncio
import contextlib
import logging
import uuid
from typing import Awaitable, Callable

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from intrachat.config import OUTBOUND_QUEUE_SIZE
from intrachat.services.presence import PresenceChange, PresenceRegistry

logger = logging.getLogger(__name__)


async def safe_close(ws: WebSocket, code: int, reason: str = ''):
    try:
        if ws.client_state == WebSocketState.CONNECTED:
            await ws.close(code=code, reason=reason)
    except Exception:
        logger.debug('close failed', exc_info=True)


class Connection:
    """One live websocket plus its bounded outbound queue."""

    def __init__(self, user_id: uuid.UUID, websocket: WebSocket, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.id = uuid.uuid4()
        self.user_id = user_id
        self.websocket = websocket
        self.outbox: asyncio.Queue[dict] = asyncio.Queue(maxsize=queue_size)
        self.writer_task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f'<Connection {self.id} user={self.user_id}>'

    def offer(self, event: dict) -> bool:
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    async def run_writer(self) -> None:
        while True:
            event = await self.outbox.get()
            try:
                await self.websocket.send_json(event)
            except Exception:
                logger.info('Writer for %r stopped: socket gone', self)
                return


class ConnectionManager:
    """Delivers events to every live connection of a user.

    Delivery never waits on a socket: events go into the connection's queue,
    and a connection whose queue is full is dropped instead of slowing
    everyone else down.
    """

    def __init__(self, presence: PresenceRegistry, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.presence = presence
        self.queue_size = queue_size
        self.on_offline: Callable[[PresenceChange], Awaitable[None]] | None = None
        self._background: set[asyncio.Task] = set()

    async def accept(self, user_id: uuid.UUID, websocket: WebSocket) -> Connection:
        await websocket.accept()
        conn = Connection(user_id, websocket, self.queue_size)
        conn.writer_task = asyncio.create_task(conn.run_writer())
        return conn

    async def release(self, conn: Connection) -> None:
        if conn.writer_task:
            conn.writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await conn.writer_task

    async def send_to_user(self, event: dict, user_id: uuid.UUID) -> None:
        for conn in self.presence.connections_for(user_id):
            if not conn.offer(event):
                self._drop(conn)

    def _drop(self, conn: Connection) -> None:
        logger.warning('Dropping slow connection %r (outbox full)', conn)
        change = self.presence.disconnect(conn)
        self._spawn(safe_close(conn.websocket, 1013, 'Too slow'))
        if change and self.on_offline:
            self._spawn(self.on_offline(change))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
