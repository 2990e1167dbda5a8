import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from intrachat.api import api_router
from intrachat.config import CORS_ORIGINS, LOG_LEVEL, RMQ_EXCHANGE, RMQ_URL
from intrachat.db.session import init_db
from intrachat.rabbitmq import RMQConnection, RMQConsumer, RMQPublisher
from intrachat.services.dispatcher import LocalDispatcher, RMQDispatcher
from intrachat.services.hub import ChatHub
from intrachat.services.presence import PresenceRegistry
from intrachat.services.rmq_ws_bridge import build_rmq_ws_bridge
from intrachat.services.store import Store
from intrachat.ws import ws_router
from intrachat.ws.connection import ConnectionManager

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)


async def start_rabbit(app: FastAPI, manager: ConnectionManager) -> RMQDispatcher:
    app.state.rabbit = RMQConnection(RMQ_URL)
    await app.state.rabbit.connect()
    await app.state.rabbit.declare_exchange(RMQ_EXCHANGE)
    publisher = RMQPublisher(app.state.rabbit, exchange_name=RMQ_EXCHANGE)

    consumer = RMQConsumer(
        app.state.rabbit,
        queue_name=f'ws_bridge.{uuid.uuid4()}',
        routing_keys=['chat.#'],
        exchange_name=RMQ_EXCHANGE,
    )
    app.state.consumers.append(consumer)
    app.state.consumer_tasks.append(
        asyncio.create_task(consumer.start_consuming(handler=build_rmq_ws_bridge(manager)))
    )
    return RMQDispatcher(publisher)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    presence = PresenceRegistry()
    manager = ConnectionManager(presence)
    app.state.rabbit = None
    app.state.consumers = []
    app.state.consumer_tasks = []

    if RMQ_URL:
        dispatcher = await start_rabbit(app, manager)
        logger.info('Fan-out through RabbitMQ exchange %s', RMQ_EXCHANGE)
    else:
        dispatcher = LocalDispatcher(manager)
        logger.info('RMQ_URL not set; fan-out stays in this process')

    hub = ChatHub(Store(), dispatcher, presence)
    manager.on_offline = hub.handle_offline
    app.state.hub = hub
    app.state.connections = manager

    yield

    await hub.close()

    for consumer in app.state.consumers:
        await consumer.stop_consuming()

    for task in app.state.consumer_tasks:
        task.cancel()

    if app.state.rabbit:
        await app.state.rabbit.close()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(api_router)
app.include_router(ws_router)
