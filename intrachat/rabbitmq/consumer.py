import asyncio
import logging
from typing import Awaitable, Callable

import aio_pika

from .connection import RMQConnection

logger = logging.getLogger(__name__)


class RMQConsumer:
    """Binds a per-node queue to the exchange and hands every frame to a handler."""

    def __init__(
            self,
            conn: RMQConnection,
            queue_name: str,
            routing_keys: list[str],
            exchange_name: str = 'messages',
        ):
        self.conn = conn
        self.queue_name = queue_name
        self.routing_keys = routing_keys
        self.exchange_name = exchange_name
        self._queue: aio_pika.abc.AbstractQueue | None = None
        self._consumer_tag: str | None = None
        self._stopped = asyncio.Event()

    async def start_consuming(
        self,
        handler: Callable[[aio_pika.abc.AbstractIncomingMessage], Awaitable[None]],
        prefetch: int = 10,
    ):
        channel = await self.conn.get_channel()
        await channel.set_qos(prefetch_count=prefetch)
        exchange = await self.conn.declare_exchange(self.exchange_name, type='topic')
        # one queue per node; it goes away with the node
        self._queue = await channel.declare_queue(self.queue_name, durable=False, exclusive=True, auto_delete=True)
        for routing_key in self.routing_keys:
            await self._queue.bind(exchange, routing_key)

        async def on_message(message: aio_pika.abc.AbstractIncomingMessage) -> None:
            # live frames only; a failed one is dropped, never redelivered
            async with message.process(requeue=False):
                try:
                    await handler(message)
                except Exception:
                    logger.exception('Handler failed for %s', message.routing_key)

        self._consumer_tag = await self._queue.consume(on_message)
        logger.info('Consuming %s (%s)', self.queue_name, ', '.join(self.routing_keys))
        await self._stopped.wait()

    async def stop_consuming(self):
        queue, tag = self._queue, self._consumer_tag
        self._consumer_tag = None
        if queue is not None and tag is not None:
            try:
                await queue.cancel(tag)
            except Exception:
                logger.warning('Could not cancel consumer on %s', self.queue_name, exc_info=True)
        self._stopped.set()
