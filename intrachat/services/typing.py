"""Typing indicators with forced expiry.

Each (chat, user) typing state owns an asyncio task that fires a synthetic
stop once the deadline passes, so a lost ``stopTyping`` never leaves an
indicator stuck on the other side.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field

import intrachat.services.messaging as messaging_service
from intrachat.config import TYPING_TTL_S
from intrachat.schemas.ws import TypingPayload, UserStoppedTypingEvent, UserTypingEvent
from intrachat.services.chats import ChatRef
from intrachat.services.dispatcher import EventDispatcher
from intrachat.services.pipeline import require_actor
from intrachat.services.sequencer import ChatSequencer
from intrachat.services.store import Store

logger = logging.getLogger(__name__)


@dataclass
class TypingState:
    chat: ChatRef
    payload: TypingPayload
    recipients: set[uuid.UUID]
    deadline: float
    expiry: asyncio.Task | None = field(default=None, repr=False)


class TypingCoordinator:
    def __init__(self, store: Store, dispatcher: EventDispatcher, sequencer: ChatSequencer, ttl: float = TYPING_TTL_S):
        self.store = store
        self.dispatcher = dispatcher
        self.sequencer = sequencer
        self.ttl = ttl
        self._states: dict[tuple[str, uuid.UUID], TypingState] = {}

    def is_typing(self, chat: ChatRef, user_id: uuid.UUID) -> bool:
        return (chat.key, user_id) in self._states

    async def set_typing(self, user_id: uuid.UUID, payload: TypingPayload) -> None:
        require_actor(user_id, payload.user_id)
        chat = ChatRef.from_client(user_id, payload.chat_id, payload.is_group)
        key = (chat.key, user_id)

        async with self.sequencer.hold(chat.key):
            recipients = await self.store.call(messaging_service.typing_recipients, user_id, chat)

            previous = self._states.pop(key, None)
            if previous and previous.expiry:
                previous.expiry.cancel()

            loop = asyncio.get_running_loop()
            state = TypingState(chat=chat, payload=payload, recipients=recipients, deadline=loop.time() + self.ttl)
            state.expiry = asyncio.create_task(self._expire(key, state))
            self._states[key] = state

            await self.dispatcher.emit(recipients, UserTypingEvent(payload=payload), chat.key)

    async def clear_typing(self, user_id: uuid.UUID, payload: TypingPayload) -> None:
        require_actor(user_id, payload.user_id)
        chat = ChatRef.from_client(user_id, payload.chat_id, payload.is_group)

        async with self.sequencer.hold(chat.key):
            state = self._states.pop((chat.key, user_id), None)
            if state:
                if state.expiry:
                    state.expiry.cancel()
                recipients = state.recipients
            else:
                recipients = await self.store.call(messaging_service.typing_recipients, user_id, chat)

            await self.dispatcher.emit(recipients, UserStoppedTypingEvent(payload=payload), chat.key)

    async def _expire(self, key: tuple[str, uuid.UUID], state: TypingState) -> None:
        await asyncio.sleep(max(0.0, state.deadline - asyncio.get_running_loop().time()))
        async with self.sequencer.hold(state.chat.key):
            if self._states.get(key) is not state:
                return
            del self._states[key]
            logger.debug('typing expired for %s in %s', key[1], key[0])
            await self.dispatcher.emit(state.recipients, UserStoppedTypingEvent(payload=state.payload), state.chat.key)

    async def clear_user(self, user_id: uuid.UUID) -> None:
        """Stop every indicator of a user whose last connection went away."""
        for key in [k for k in self._states if k[1] == user_id]:
            state = self._states.get(key)
            if state is None:
                continue
            async with self.sequencer.hold(state.chat.key):
                if self._states.get(key) is not state:
                    continue
                del self._states[key]
                if state.expiry:
                    state.expiry.cancel()
                await self.dispatcher.emit(
                    state.recipients, UserStoppedTypingEvent(payload=state.payload), state.chat.key
                )

    async def close(self) -> None:
        tasks = [s.expiry for s in self._states.values() if s.expiry]
        self._states.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
