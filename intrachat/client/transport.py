import asyncio
import contextlib
import json
import logging
import math
import random
import time
from typing import Any, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from intrachat.schemas.ws import PingPayload, PingRequest

logger = logging.getLogger(__name__)

FrameHandler = Callable[[dict[str, Any]], Awaitable[None]]
Hook = Callable[[], Awaitable[None]]


class ClientTransport(Protocol):
    @property
    def connected(self) -> bool:
        ...

    async def send(self, frame: dict[str, Any]) -> bool:
        ...


def calculate_reconnect_backoff(
    attempt: int,
    *,
    base_seconds: float = 0.5,
    max_seconds: float = 30.0,
    rand_float: Callable[[], float] = random.random,
) -> float:
    if base_seconds <= 0.0 or max_seconds <= 0.0:
        return 0.0
    attempt = max(attempt, 0)
    cap_threshold = math.ceil(math.log2(max_seconds / (base_seconds * 0.8)))
    if attempt >= max(cap_threshold, 0):
        return max_seconds
    jitter = 0.8 + 0.4 * min(max(rand_float(), 0.0), 1.0)
    return min(max_seconds, base_seconds * (2**attempt) * jitter)


class WebSocketTransport:
    """Keeps one websocket to the server open, reconnecting with jittered backoff.

    The server drops sockets that stay silent, so an application level ping goes
    out every ``ping_interval`` seconds.
    """

    def __init__(self, url: str, *, ping_interval: float = 25.0, max_backoff: float = 30.0):
        self.url = url
        self.ping_interval = ping_interval
        self.max_backoff = max_backoff
        self._websocket: Any = None
        self._stop_event = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    async def send(self, frame: dict[str, Any]) -> bool:
        websocket = self._websocket
        if websocket is None:
            return False
        try:
            await websocket.send(json.dumps(frame))
        except ConnectionClosed:
            logger.info('Send failed: socket closed')
            return False
        return True

    async def stop(self) -> None:
        self._stop_event.set()
        if self._websocket is not None:
            with contextlib.suppress(Exception):
                await self._websocket.close()

    async def run(
        self,
        on_frame: FrameHandler,
        on_connected: Hook | None = None,
        on_disconnected: Hook | None = None,
    ) -> None:
        attempt = 0
        while not self._stop_event.is_set():
            established = False
            try:
                async with websockets.connect(self.url, ping_interval=None) as websocket:
                    self._websocket = websocket
                    established = True
                    attempt = 0
                    logger.info('Connected to %s', self.url)
                    if on_connected:
                        await on_connected()
                    await self._read(websocket, on_frame)
            except asyncio.CancelledError:
                raise
            except ConnectionClosed:
                logger.info('Socket closed; reconnecting')
            except Exception as exc:
                logger.warning('Websocket error; reconnecting: %s', exc)
            finally:
                self._websocket = None
                if established and on_disconnected:
                    await on_disconnected()

            if self._stop_event.is_set():
                break
            backoff = calculate_reconnect_backoff(attempt, max_seconds=self.max_backoff)
            attempt += 1
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=backoff)

    async def _read(self, websocket, on_frame: FrameHandler) -> None:
        pinger = asyncio.create_task(self._ping_loop())
        try:
            async for raw in websocket:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning('Ignoring non-JSON frame')
                    continue
                if not isinstance(frame, dict):
                    logger.warning('Ignoring frame that is not an object: %r', frame)
                    continue
                try:
                    await on_frame(frame)
                except Exception:
                    logger.exception('Frame handler failed for %s', frame.get('type'))
        finally:
            pinger.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pinger

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            await self.send(PingRequest(payload=PingPayload(ts=int(time.time() * 1000))).dump())
