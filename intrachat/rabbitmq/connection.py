import logging

import aio_pika

logger = logging.getLogger(__name__)


class RMQConnection:
    def __init__(self, url: str):
        self.url = url
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._exchanges: dict[str, aio_pika.abc.AbstractExchange] = {}

    async def connect(self) -> None:
        if self._connection and not self._connection.is_closed:
            return
        self._connection = await aio_pika.connect_robust(self.url)
        self._channel = None
        self._exchanges.clear()
        logger.info('Connected to RabbitMQ')

    async def get_channel(self) -> aio_pika.abc.AbstractChannel:
        await self.connect()
        if self._channel is None or self._channel.is_closed:
            self._channel = await self._connection.channel()
            self._exchanges.clear()
        return self._channel

    async def declare_exchange(self, name: str, type: str = 'topic', durable: bool = True) -> aio_pika.abc.AbstractExchange:
        if name in self._exchanges:
            return self._exchanges[name]
        channel = await self.get_channel()
        exchange = await channel.declare_exchange(name, aio_pika.ExchangeType(type), durable=durable)
        self._exchanges[name] = exchange
        return exchange

    async def close(self) -> None:
        if self._connection and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchanges.clear()
