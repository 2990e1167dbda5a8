"""Where fan-out ends up: local websockets, or the broker for every node."""
import logging
import uuid
from typing import Iterable, Protocol

from pydantic import BaseModel

from intrachat.rabbitmq import RMQPublisher

logger = logging.getLogger(__name__)


class EventDispatcher(Protocol):
    async def emit(self, user_ids: Iterable[uuid.UUID], event: BaseModel, chat_key: str | None = None) -> None:
        ...


class LocalDispatcher:
    def __init__(self, manager):
        self.manager = manager

    async def emit(self, user_ids: Iterable[uuid.UUID], event: BaseModel, chat_key: str | None = None) -> None:
        out = event.model_dump(mode='json', by_alias=True)
        for uid in set(user_ids):
            await self.manager.send_to_user(out, uid)


class RMQDispatcher:
    """Publishes addressed events; each node's bridge delivers to its own sockets."""

    def __init__(self, publisher: RMQPublisher):
        self.publisher = publisher

    async def emit(self, user_ids: Iterable[uuid.UUID], event: BaseModel, chat_key: str | None = None) -> None:
        targets = sorted({str(uid) for uid in user_ids})
        if not targets:
            return
        out = event.model_dump(mode='json', by_alias=True)
        out['targets'] = targets
        await self.publisher.publish(
            routing_key=build_routing_key(chat_key, out['type']),
            payload=out,
        )


def build_routing_key(chat_key: str | None, event_type: str) -> str:
    # routing keys are dot separated; chat keys use ':'
    scope = (chat_key or 'user').replace(':', '_')
    return f'chat.{scope}.{event_type}'
