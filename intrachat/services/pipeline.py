"""Message ingest and per-chat fan-out.

Compose requests are persisted once, confirmed to every connection of the
sender (carrying the client temp id back) and pushed to every recipient
connection. Reaction, pin and delete mutations share the same shape: resolve
the chat, apply under the chat's sequencer, fan out to its participants.
"""
import logging
import uuid

import intrachat.services.messaging as messaging_service
from intrachat.schemas.message_out import MessageOut
from intrachat.schemas.ws import (
    DeleteMessagePayload,
    MessageDeletedEvent,
    MessageDeletedPayload,
    MessageErrorEvent,
    MessageErrorPayload,
    MessagePinnedEvent,
    MessagePinnedPayload,
    MessageSavedEvent,
    NewMessageEvent,
    NewNotificationEvent,
    PinMessagePayload,
    ReactionAddedEvent,
    ReactionAddedPayload,
    ReactionPayload,
    ReactionRemovedEvent,
    SendMessagePayload,
    UnreadCountPayload,
    UnreadCountUpdateEvent,
)
from intrachat.services.chats import ChatRef
from intrachat.services.dispatcher import EventDispatcher
from intrachat.services.errors import MessagingError, PermissionDeniedError
from intrachat.services.sequencer import ChatSequencer
from intrachat.services.store import Store

logger = logging.getLogger(__name__)


def require_actor(actor_id: uuid.UUID, claimed_id: uuid.UUID) -> None:
    if actor_id != claimed_id:
        raise PermissionDeniedError('userId does not match the connected user')


class MessagePipeline:
    def __init__(self, store: Store, dispatcher: EventDispatcher, sequencer: ChatSequencer):
        self.store = store
        self.dispatcher = dispatcher
        self.sequencer = sequencer

    async def ingest(self, sender_id: uuid.UUID, payload: SendMessagePayload) -> MessageOut | None:
        """Persist and fan out.

        Only a failure to persist becomes a messageError for the sender. Once
        the message is committed it stays sent; a failed fan-out is logged and
        recipients catch up from history.
        """
        data = payload.model_dump()
        try:
            require_actor(sender_id, payload.sender_id)
            messaging_service.validate_target(data)
            if payload.group_id is not None:
                chat = ChatRef.group(payload.group_id)
            else:
                chat = ChatRef.direct(sender_id, payload.receiver_id)

            async with self.sequencer.hold(chat.key):
                result = await self.store.call(messaging_service.create_message, sender_id, data)
                await self._fan_out(sender_id, result)
        except MessagingError as e:
            logger.info('sendMessage %s rejected: %s', payload.client_temp_id, e)
            await self.report_send_error(sender_id, payload.client_temp_id, str(e), {'code': e.code, **e.details})
            return None
        except Exception:
            logger.exception('sendMessage %s crashed', payload.client_temp_id)
            await self.report_send_error(sender_id, payload.client_temp_id, 'Internal error', {'code': 'server_error'})
            return None

        return result.message

    async def _fan_out(self, sender_id: uuid.UUID, result: messaging_service.IngestResult) -> None:
        chat = result.chat
        try:
            await self.dispatcher.emit([sender_id], MessageSavedEvent(payload=result.message), chat.key)

            # a repeated temp id is re-announced too; clients dedupe newMessage by id
            public = result.message.model_copy(update={'client_temp_id': None})
            for uid in result.recipient_ids:
                await self.dispatcher.emit([uid], NewMessageEvent(payload=public), chat.key)
                await self.dispatcher.emit(
                    [uid],
                    UnreadCountUpdateEvent(
                        payload=UnreadCountPayload(
                            chat_id=chat.chat_id_for(uid),
                            unread_count=result.unread_counts.get(uid, 0),
                        )
                    ),
                    chat.key,
                )
                notification = result.notifications.get(uid)
                if notification is not None:
                    await self.dispatcher.emit([uid], NewNotificationEvent(payload=notification), chat.key)
        except Exception:
            logger.exception('Fan-out of message %s failed after it was stored', result.message.id)

    async def report_send_error(self, sender_id: uuid.UUID, client_temp_id: str | None, error: str, details: dict | None = None) -> None:
        event = MessageErrorEvent(
            payload=MessageErrorPayload(client_temp_id=client_temp_id, error=error, details=details or {})
        )
        await self.dispatcher.emit([sender_id], event)

    async def add_reaction(self, actor_id: uuid.UUID, payload: ReactionPayload) -> messaging_service.MutationResult:
        require_actor(actor_id, payload.user_id)
        chat = await self.store.call(messaging_service.chat_of_message, payload.message_id)
        async with self.sequencer.hold(chat.key):
            result = await self.store.call(
                messaging_service.add_reaction, actor_id, payload.message_id, payload.emoji
            )
            event = ReactionAddedEvent(
                payload=ReactionAddedPayload(message_id=payload.message_id, reaction=result.reaction)
            )
            await self.dispatcher.emit(result.participant_ids, event, chat.key)
        return result

    async def remove_reaction(self, actor_id: uuid.UUID, payload: ReactionPayload) -> messaging_service.MutationResult:
        require_actor(actor_id, payload.user_id)
        chat = await self.store.call(messaging_service.chat_of_message, payload.message_id)
        async with self.sequencer.hold(chat.key):
            result = await self.store.call(
                messaging_service.remove_reaction, actor_id, payload.message_id, payload.emoji
            )
            await self.dispatcher.emit(result.participant_ids, ReactionRemovedEvent(payload=payload), chat.key)
        return result

    async def pin_message(self, actor_id: uuid.UUID, payload: PinMessagePayload) -> messaging_service.MutationResult:
        chat = await self.store.call(messaging_service.chat_of_message, payload.message_id)
        async with self.sequencer.hold(chat.key):
            result = await self.store.call(
                messaging_service.set_pinned, actor_id, payload.message_id, payload.is_pinned
            )
            event = MessagePinnedEvent(
                payload=MessagePinnedPayload(message_id=payload.message_id, is_pinned=result.message.is_pinned)
            )
            await self.dispatcher.emit(result.participant_ids, event, chat.key)
        return result

    async def delete_message(self, actor_id: uuid.UUID, payload: DeleteMessagePayload) -> messaging_service.MutationResult:
        require_actor(actor_id, payload.user_id)
        chat = await self.store.call(messaging_service.chat_of_message, payload.message_id)
        async with self.sequencer.hold(chat.key):
            result = await self.store.call(
                messaging_service.delete_message, actor_id, payload.message_id, payload.delete_for_everyone
            )
            event = MessageDeletedEvent(
                payload=MessageDeletedPayload(
                    message_id=payload.message_id,
                    for_everyone=payload.delete_for_everyone,
                )
            )
            # delete-for-me only concerns the actor's own devices
            targets = result.participant_ids if payload.delete_for_everyone else {actor_id}
            await self.dispatcher.emit(targets, event, chat.key)
        return result
