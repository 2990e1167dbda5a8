import asyncio
import json
import logging
import time
import uuid
from datetime import datetime, UTC
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from intrachat.config import PING_IDLE_TIMEOUT_S, WATCHDOG_TICK_S
from intrachat.schemas.ws import (
    ErrorEvent,
    ErrorPayload,
    PingRequest,
    PongEvent,
    PongPayload,
    WSRequest,
    client_event_adapter,
)
from intrachat.services.errors import MessagingError
from intrachat.services.hub import ChatHub
from intrachat.utils.identity import get_user_id_ws
from .connection import Connection, safe_close

logger = logging.getLogger(__name__)
router = APIRouter(prefix='/ws')

EVENT_HANDLERS = {
    'sendMessage': lambda hub, user_id, p: hub.pipeline.ingest(user_id, p),
    'typing': lambda hub, user_id, p: hub.typing.set_typing(user_id, p),
    'stopTyping': lambda hub, user_id, p: hub.typing.clear_typing(user_id, p),
    'messageDelivered': lambda hub, user_id, p: hub.receipts.mark_delivered(user_id, p.message_id),
    'messageSeen': lambda hub, user_id, p: hub.receipts.mark_seen(user_id, p.message_id),
    'markChatAsRead': lambda hub, user_id, p: hub.receipts.mark_chat_as_read(user_id, p),
    'addReaction': lambda hub, user_id, p: hub.pipeline.add_reaction(user_id, p),
    'removeReaction': lambda hub, user_id, p: hub.pipeline.remove_reaction(user_id, p),
    'pinMessage': lambda hub, user_id, p: hub.pipeline.pin_message(user_id, p),
    'deleteMessage': lambda hub, user_id, p: hub.pipeline.delete_message(user_id, p),
}


async def heartbeat_watchdog(websocket: WebSocket, last_seen: dict) -> None:
    while True:
        await asyncio.sleep(WATCHDOG_TICK_S)
        if time.time() - last_seen['t'] > PING_IDLE_TIMEOUT_S:
            await safe_close(websocket, 1001, 'Heartbeat timeout')
            return


def ws_send_error(conn: Connection, code: str, message: str, details: dict | None = None, request_type: str | None = None):
    conn.offer(
        ErrorEvent(
            payload=ErrorPayload(code=code, message=message, request_type=request_type, details=details or {})
        ).dump()
    )


def handle_ping(conn: Connection, payload) -> None:
    conn.offer(PongEvent(payload=PongPayload(ts=payload.ts, server_ts=datetime.now(tz=UTC))).dump())


async def report_invalid_payload(hub: ChatHub, conn: Connection, user_id: uuid.UUID, ws_request: WSRequest, err: ValidationError):
    if ws_request.type == 'sendMessage':
        # the client still needs its temp id back to roll the optimistic copy out
        temp_id = ws_request.payload.get('clientTempId')
        await hub.pipeline.report_send_error(
            user_id,
            temp_id if isinstance(temp_id, str) else None,
            'Invalid payload',
            {'code': 'bad_request', 'err': str(err)},
        )
        return
    ws_send_error(conn, 'bad_request', 'Invalid payload', {'err': str(err)}, ws_request.type)


@router.websocket('')
async def ws_messages_endpoint(
    websocket: WebSocket,
    user_id: Annotated[uuid.UUID, Depends(get_user_id_ws)],
):
    hub: ChatHub = websocket.app.state.hub
    manager = websocket.app.state.connections

    conn = await manager.accept(user_id, websocket)
    await hub.connect(user_id, conn)

    last_seen = {'t': time.time()}
    watchdog_task = asyncio.create_task(heartbeat_watchdog(websocket, last_seen))

    try:
        while True:
            try:
                data_text = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            last_seen['t'] = time.time()

            try:
                raw = json.loads(data_text)
                ws_request = WSRequest.model_validate(raw)
            except (json.JSONDecodeError, ValidationError) as e:
                ws_send_error(conn, 'bad_request', 'Invalid JSON/schema', {'err': str(e)})
                continue

            if ws_request.type != 'ping' and ws_request.type not in EVENT_HANDLERS:
                ws_send_error(conn, 'bad_request', f'Unknown type: {ws_request.type}')
                continue

            try:
                event = client_event_adapter.validate_python(raw)
            except ValidationError as e:
                await report_invalid_payload(hub, conn, user_id, ws_request, e)
                continue

            if isinstance(event, PingRequest):
                handle_ping(conn, event.payload)
                continue

            handler = EVENT_HANDLERS[event.type]
            try:
                await handler(hub, user_id, event.payload)
            except MessagingError as e:
                ws_send_error(conn, e.code, str(e), e.details, event.type)
                continue
            except Exception:
                logger.exception('handler crash')
                ws_send_error(conn, 'server_error', 'Internal error in handler', request_type=event.type)
                continue

    except Exception:
        logger.exception('ws endpoint crashed')
        await safe_close(websocket, 1011, 'Server error')
    finally:
        watchdog_task.cancel()
        await hub.disconnect(conn)
        await manager.release(conn)
        await safe_close(websocket, 1000, 'bye')
