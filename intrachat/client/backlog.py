import asyncio
import logging
import random
import uuid
from typing import Any

import httpx
from pydantic import TypeAdapter

from intrachat.schemas.message_out import MessageOut

logger = logging.getLogger(__name__)

_messages_adapter = TypeAdapter(list[MessageOut])


class BacklogError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BacklogClient:
    """Reads chat history over REST; used to catch up after a reconnect."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds, transport=transport)
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> 'BacklogClient':
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        delay = self._retry_base_delay * (2**attempt) + random.uniform(0, self._retry_base_delay)
        return min(delay, self._retry_max_delay)

    def _is_retryable_error(self, exc: Exception) -> bool:
        if isinstance(exc, httpx.TransportError):
            return True
        if isinstance(exc, httpx.HTTPStatusError):
            return 500 <= exc.response.status_code < 600
        return False

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        attempt = 0
        while True:
            try:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                return response.json()
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                if attempt >= self._max_retries or not self._is_retryable_error(exc):
                    status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
                    raise BacklogError(f'GET {path} failed: {exc}', status_code) from exc
                delay = self._calculate_retry_delay(attempt)
                attempt += 1
                logger.info('GET %s failed (%s), retrying in %.1fs (attempt %d)', path, exc, delay, attempt)
                await asyncio.sleep(delay)

    async def direct_history(self, user_id: uuid.UUID, other_user_id: uuid.UUID, limit: int = 50) -> list[MessageOut]:
        data = await self._get(f'/api/chat/messages/{user_id}/{other_user_id}', {'limit': limit})
        return _messages_adapter.validate_python(data)

    async def group_history(self, group_id: uuid.UUID, user_id: uuid.UUID, limit: int = 50) -> list[MessageOut]:
        data = await self._get(f'/api/chat/group/{group_id}/messages', {'user_id': str(user_id), 'limit': limit})
        return _messages_adapter.validate_python(data)

    async def history(self, viewer_id: uuid.UUID, chat_id: uuid.UUID, is_group: bool, limit: int = 50) -> list[MessageOut]:
        if is_group:
            return await self.group_history(chat_id, viewer_id, limit)
        return await self.direct_history(viewer_id, chat_id, limit)

    async def recent_chats(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        return await self._get(f'/api/chat/recent/{user_id}')

    async def pinned(self, group_id: uuid.UUID) -> list[MessageOut]:
        data = await self._get(f'/api/chat/pinned/{group_id}')
        return _messages_adapter.validate_python(data)
