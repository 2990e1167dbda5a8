import asyncio
import logging
import threading
from typing import Any, Callable

from sqlalchemy import event
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from intrachat.config import PERSISTENCE_TIMEOUT_S
from intrachat.db.session import engine
from intrachat.services.errors import PersistenceTimeout

logger = logging.getLogger(__name__)


class CommitGate:
    """Decides between a worker's commit and the caller giving up.

    Whichever side gets here first wins: once the caller has abandoned the
    call the worker's commit is refused, and once the worker has started
    committing the caller waits for it instead of reporting a timeout.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state: str | None = None

    def enter_commit(self) -> bool:
        with self._lock:
            if self._state == 'abandoned':
                return False
            self._state = 'committing'
            return True

    def abandon(self) -> bool:
        with self._lock:
            if self._state == 'committing':
                return False
            self._state = 'abandoned'
            return True


def _log_late_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, PersistenceTimeout):
        logger.info('Timed out persistence call rolled back')
    elif exc is not None:
        logger.error('Timed out persistence call failed later: %r', exc)
    else:
        logger.warning('Timed out persistence call completed without writing')


class Store:
    """Runs gateway functions in the threadpool, each in its own session."""

    def __init__(self, session_factory: Callable[[], Session] | None = None, timeout: float = PERSISTENCE_TIMEOUT_S):
        self._session_factory = session_factory or (lambda: Session(engine))
        self.timeout = timeout

    def _call_in_own_session(self, gate: CommitGate, handler: Callable[..., Any], *args) -> Any:
        with self._session_factory() as session:

            @event.listens_for(session, 'before_commit')
            def refuse_abandoned(_session):
                if not gate.enter_commit():
                    raise PersistenceTimeout('Caller gave up before the write committed')

            return handler(session, *args)

    async def call(self, handler: Callable[..., Any], *args) -> Any:
        # the worker thread cannot be interrupted; the gate keeps it from committing late
        gate = CommitGate()
        task = asyncio.ensure_future(run_in_threadpool(self._call_in_own_session, gate, handler, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except asyncio.TimeoutError:
            if not gate.abandon():
                logger.info('%s is already committing, waiting for it', handler.__name__)
                return await task
            task.add_done_callback(_log_late_result)
            logger.error('%s timed out after %.1fs', handler.__name__, self.timeout)
            raise PersistenceTimeout(
                'Persistence gateway did not respond in time',
                {'operation': handler.__name__, 'timeout_s': self.timeout},
            )

    async def call_quietly(self, handler: Callable[..., Any], *args, default=None) -> Any:
        try:
            return await self.call(handler, *args)
        except Exception:
            logger.exception('%s failed', handler.__name__)
            return default
