import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from intrachat.schemas.message_out import MessageOut
from intrachat.schemas.ws import SendMessagePayload

logger = logging.getLogger(__name__)


class SendFailed(Exception):
    def __init__(self, client_temp_id: str, reason: str, details: dict | None = None):
        super().__init__(reason)
        self.client_temp_id = client_temp_id
        self.details = details or {}


class OfflineQueue:
    """Compose requests made while disconnected, flushed in order on reconnect."""

    def __init__(self):
        self._items: deque[tuple[SendMessagePayload, asyncio.Event]] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, client_temp_id: str) -> bool:
        return any(p.client_temp_id == client_temp_id for p, _ in self._items)

    def push(self, payload: SendMessagePayload) -> asyncio.Event:
        """Queue a payload; the returned event is set once it has been submitted."""
        sent = asyncio.Event()
        self._items.append((payload, sent))
        return sent

    def discard(self, client_temp_id: str) -> bool:
        for item in self._items:
            if item[0].client_temp_id == client_temp_id:
                self._items.remove(item)
                return True
        return False

    async def flush(self, submit: Callable[[SendMessagePayload], Awaitable[bool]]) -> int:
        """Submit queued payloads oldest first; stops at the first one that cannot go out."""
        sent = 0
        while self._items:
            payload, event = self._items[0]
            if not await submit(payload):
                break
            self._items.popleft()
            event.set()
            sent += 1
        if sent:
            logger.info('Flushed %d queued message(s)', sent)
        return sent


class PendingSends:
    """One future per in-flight ``clientTempId``."""

    def __init__(self):
        self._futures: dict[str, asyncio.Future] = {}

    def __contains__(self, client_temp_id: str) -> bool:
        return client_temp_id in self._futures

    def open(self, client_temp_id: str) -> asyncio.Future:
        fut = asyncio.get_running_loop().create_future()
        self._futures[client_temp_id] = fut
        return fut

    def resolve(self, client_temp_id: str | None, message: MessageOut) -> bool:
        fut = self._futures.pop(client_temp_id, None) if client_temp_id else None
        if fut is None or fut.done():
            return False
        fut.set_result(message)
        return True

    def fail(self, client_temp_id: str | None, reason: str, details: dict | None = None) -> bool:
        fut = self._futures.pop(client_temp_id, None) if client_temp_id else None
        if fut is None or fut.done():
            return False
        fut.set_exception(SendFailed(client_temp_id, reason, details))
        return True

    def forget(self, client_temp_id: str) -> None:
        self._futures.pop(client_temp_id, None)

    def cancel_all(self) -> None:
        for fut in self._futures.values():
            if not fut.done():
                fut.cancel()
        self._futures.clear()
