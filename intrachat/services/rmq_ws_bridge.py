import json
import logging
import uuid
from typing import Awaitable, Callable

import aio_pika

logger = logging.getLogger(__name__)


def _extract_targets(data: dict) -> list[uuid.UUID]:
    out = []
    for raw in data.get('targets') or []:
        try:
            out.append(raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw)))
        except ValueError:
            logger.warning('Dropping bad target id %r', raw)
    return out


async def deliver_frame(manager, data: dict) -> int:
    """Hand a broker frame to the locally connected targets; returns how many users were addressed."""
    event_type = data.get('type')
    payload = data.get('payload')

    if not isinstance(event_type, str) or not isinstance(payload, dict):
        logger.warning('Bad RMQ message format: %r', data)
        return 0

    targets = _extract_targets(data)
    if not targets:
        logger.warning('No targets for event=%s', event_type)
        return 0

    out = {'type': event_type, 'payload': payload}
    for uid in targets:
        await manager.send_to_user(out, uid)
    return len(targets)


def build_rmq_ws_bridge(manager) -> Callable[[aio_pika.abc.AbstractIncomingMessage], Awaitable[None]]:
    async def rmq_ws_bridge(inc_message: aio_pika.abc.AbstractIncomingMessage) -> None:
        try:
            data = json.loads(inc_message.body.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning('Undecodable RMQ message on %s', inc_message.routing_key)
            return
        if not isinstance(data, dict):
            logger.warning('Bad RMQ message format: %r', data)
            return
        try:
            await deliver_frame(manager, data)
        except Exception:
            logger.exception('Failed to bridge RMQ to WS')

    return rmq_ws_bridge
