import logging
import uuid

import intrachat.services.messaging as messaging_service
from intrachat.schemas import ReceiptStatus
from intrachat.schemas.ws import (
    MarkChatAsReadPayload,
    MessageStatusUpdateEvent,
    StatusUpdatePayload,
    UnreadCountPayload,
    UnreadCountUpdateEvent,
)
from intrachat.services.chats import ChatRef
from intrachat.services.dispatcher import EventDispatcher
from intrachat.services.pipeline import require_actor
from intrachat.services.sequencer import ChatSequencer
from intrachat.services.store import Store

logger = logging.getLogger(__name__)


class ReceiptTracker:
    """SENT -> DELIVERED -> SEEN per (message, recipient), relayed to the sender.

    Transitions only move forward. The sender hears about a message the first
    time any recipient device reaches a state; later acks are no-ops.
    """

    def __init__(self, store: Store, dispatcher: EventDispatcher, sequencer: ChatSequencer):
        self.store = store
        self.dispatcher = dispatcher
        self.sequencer = sequencer

    async def mark_delivered(self, user_id: uuid.UUID, message_id: uuid.UUID) -> messaging_service.ReceiptResult:
        return await self._acknowledge(user_id, message_id, ReceiptStatus.DELIVERED)

    async def mark_seen(self, user_id: uuid.UUID, message_id: uuid.UUID) -> messaging_service.ReceiptResult:
        return await self._acknowledge(user_id, message_id, ReceiptStatus.SEEN)

    async def _acknowledge(self, user_id: uuid.UUID, message_id: uuid.UUID, status: ReceiptStatus):
        chat = await self.store.call(messaging_service.chat_of_message, message_id)
        async with self.sequencer.hold(chat.key):
            result = await self.store.call(messaging_service.apply_receipt, user_id, message_id, status)
            await self._notify_sender(result)
        return result

    async def _notify_sender(self, result: messaging_service.ReceiptResult) -> None:
        if result.advanced is None:
            return
        event = MessageStatusUpdateEvent(
            payload=StatusUpdatePayload(
                message_id=result.message_id,
                status=result.advanced,
                delivered_at=result.delivered_at,
                seen_at=result.seen_at if result.advanced == 'seen' else None,
            )
        )
        await self.dispatcher.emit([result.sender_id], event, result.chat.key)

    async def mark_chat_as_read(self, user_id: uuid.UUID, payload: MarkChatAsReadPayload) -> messaging_service.ChatReadResult:
        require_actor(user_id, payload.user_id)
        chat = ChatRef.from_client(user_id, payload.chat_id, payload.is_group)

        async with self.sequencer.hold(chat.key):
            result = await self.store.call(messaging_service.mark_chat_read, user_id, chat)
            for receipt in result.advanced:
                await self._notify_sender(receipt)

            logger.debug('%s read %d messages in %s', user_id, len(result.advanced), chat.key)
            await self.dispatcher.emit(
                [user_id],
                UnreadCountUpdateEvent(
                    payload=UnreadCountPayload(chat_id=payload.chat_id, unread_count=result.unread_count)
                ),
                chat.key,
            )
        return result
