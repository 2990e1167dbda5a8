import asyncio
import logging
import uuid
from typing import Awaitable, Callable

from intrachat.schemas.ws import StopTypingRequest, TypingPayload, TypingRequest

logger = logging.getLogger(__name__)

TYPING_INTERVAL_S = 1.0
TYPING_IDLE_S = 3.0


class TypingEmitter:
    """Turns keystrokes in one chat into ``typing``/``stopTyping`` frames.

    At most one ``typing`` goes out per interval. ``stopTyping`` goes out when
    the input is emptied, on send, or after the idle period without keystrokes.
    """

    def __init__(
        self,
        send: Callable[[dict], Awaitable[bool]],
        user_id: uuid.UUID,
        chat_id: uuid.UUID,
        is_group: bool = False,
        interval: float = TYPING_INTERVAL_S,
        idle: float = TYPING_IDLE_S,
        clock: Callable[[], float] | None = None,
    ):
        self._send = send
        self.payload = TypingPayload(user_id=user_id, chat_id=chat_id, is_group=is_group)
        self.interval = interval
        self.idle = idle
        self._clock = clock or (lambda: asyncio.get_running_loop().time())
        self._last_sent: float | None = None
        self._idle_task: asyncio.Task | None = None
        self.active = False

    async def on_input(self, text: str) -> None:
        if not text:
            await self.stop()
            return

        now = self._clock()
        if self._last_sent is None or now - self._last_sent >= self.interval:
            self._last_sent = now
            self.active = True
            await self._send(TypingRequest(payload=self.payload).dump())

        self._restart_idle_timer()

    async def stop(self) -> None:
        self._cancel_idle_timer()
        if not self.active:
            return
        self.active = False
        self._last_sent = None
        await self._send(StopTypingRequest(payload=self.payload).dump())

    def _restart_idle_timer(self) -> None:
        self._cancel_idle_timer()
        self._idle_task = asyncio.create_task(self._stop_when_idle())

    def _cancel_idle_timer(self) -> None:
        task, self._idle_task = self._idle_task, None
        if task and task is not asyncio.current_task():
            task.cancel()

    async def _stop_when_idle(self) -> None:
        await asyncio.sleep(self.idle)
        await self.stop()
