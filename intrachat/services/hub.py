import logging
import uuid
from datetime import datetime, UTC
from typing import Hashable

import intrachat.services.messaging as messaging_service
from intrachat.config import TYPING_TTL_S
from intrachat.schemas.ws import PresencePayload, UserOnlineEvent
from intrachat.services.dispatcher import EventDispatcher
from intrachat.services.pipeline import MessagePipeline
from intrachat.services.presence import PresenceChange, PresenceRegistry
from intrachat.services.receipts import ReceiptTracker
from intrachat.services.sequencer import ChatSequencer
from intrachat.services.store import Store
from intrachat.services.typing import TypingCoordinator

logger = logging.getLogger(__name__)


class ChatHub:
    """Owns the realtime core for one process.

    Built once at startup and handed to the websocket layer; nothing in here is
    module-global.
    """

    def __init__(
        self,
        store: Store,
        dispatcher: EventDispatcher,
        presence: PresenceRegistry | None = None,
        typing_ttl: float = TYPING_TTL_S,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.presence = presence or PresenceRegistry()
        self.sequencer = ChatSequencer()
        self.pipeline = MessagePipeline(store, dispatcher, self.sequencer)
        self.receipts = ReceiptTracker(store, dispatcher, self.sequencer)
        self.typing = TypingCoordinator(store, dispatcher, self.sequencer, ttl=typing_ttl)

    async def connect(self, user_id: uuid.UUID, handle: Hashable) -> bool:
        first = self.presence.connect(user_id, handle)
        logger.info('User %s connected (first=%s)', user_id, first)
        if first:
            await self.store.call_quietly(messaging_service.record_presence, user_id, True)
            await self._broadcast_presence(PresenceChange(user_id=user_id, is_online=True))
        return first

    async def disconnect(self, handle: Hashable) -> PresenceChange | None:
        change = self.presence.disconnect(handle)
        if change:
            await self.handle_offline(change)
        return change

    async def handle_offline(self, change: PresenceChange) -> None:
        logger.info('User %s went offline', change.user_id)
        await self.typing.clear_user(change.user_id)
        await self.store.call_quietly(
            messaging_service.record_presence, change.user_id, False, change.last_seen or datetime.now(tz=UTC)
        )
        await self._broadcast_presence(change)

    async def _broadcast_presence(self, change: PresenceChange) -> None:
        contacts = await self.store.call_quietly(messaging_service.contact_ids, change.user_id, default=set())
        if not contacts:
            return
        event = UserOnlineEvent(
            payload=PresencePayload(user_id=change.user_id, is_online=change.is_online, last_seen=change.last_seen)
        )
        try:
            await self.dispatcher.emit(contacts, event)
        except Exception:
            logger.exception('presence broadcast failed for %s', change.user_id)

    async def close(self) -> None:
        await self.typing.close()
