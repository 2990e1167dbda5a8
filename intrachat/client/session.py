"""One signed-in user's view of the realtime core.

``ChatSession`` owns the message cache, the offline queue and the in-flight
sends. Every server event is applied to the cache here; the UI only reads.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from intrachat.client.backlog import BacklogClient, BacklogError
from intrachat.client.outbox import OfflineQueue, PendingSends, SendFailed
from intrachat.client.store import ChatStore
from intrachat.client.transport import ClientTransport
from intrachat.schemas.message_out import MessageOut
from intrachat.schemas.notification import NotificationOut
from intrachat.schemas.ws import (
    AddReactionRequest,
    DeleteMessagePayload,
    DeleteMessageRequest,
    ErrorEvent,
    MarkChatAsReadPayload,
    MarkChatAsReadRequest,
    MessageDeletedEvent,
    MessageDeliveredRequest,
    MessageErrorEvent,
    MessagePinnedEvent,
    MessageSavedEvent,
    MessageSeenRequest,
    MessageStatusUpdateEvent,
    NewMessageEvent,
    NewNotificationEvent,
    PinMessagePayload,
    PinMessageRequest,
    PongEvent,
    ReactionAddedEvent,
    ReactionPayload,
    ReactionRemovedEvent,
    ReceiptPayload,
    RemoveReactionRequest,
    SendMessagePayload,
    SendMessageRequest,
    UnreadCountUpdateEvent,
    UserOnlineEvent,
    UserStoppedTypingEvent,
    UserTypingEvent,
    server_event_adapter,
)
from intrachat.services.chats import ChatRef

logger = logging.getLogger(__name__)

SEND_TIMEOUT_S = 10.0


@dataclass
class SendResult:
    client_temp_id: str
    message: MessageOut | None = None
    error: str | None = None
    details: dict = field(default_factory=dict)
    queued: bool = False

    @property
    def ok(self) -> bool:
        return self.message is not None


@dataclass
class OpenChat:
    chat_id: uuid.UUID
    is_group: bool
    visible: bool = True


class ChatSession:
    def __init__(
        self,
        user_id: uuid.UUID,
        transport: ClientTransport,
        backlog: BacklogClient | None = None,
        *,
        send_timeout: float = SEND_TIMEOUT_S,
        history_limit: int = 50,
        on_send_failed: Callable[[SendResult], None] | None = None,
    ):
        self.user_id = user_id
        self.transport = transport
        self.backlog = backlog
        self.send_timeout = send_timeout
        self.history_limit = history_limit
        self.on_send_failed = on_send_failed

        self.store = ChatStore()
        self.offline = OfflineQueue()
        self.pending = PendingSends()
        self.open_chat: OpenChat | None = None
        self.unread: dict[uuid.UUID, int] = {}
        self.online: dict[uuid.UUID, bool] = {}
        self.last_seen: dict[uuid.UUID, datetime | None] = {}
        self.typing: dict[str, set[uuid.UUID]] = {}
        self.notifications: list[NotificationOut] = []
        self.last_error: dict[str, Any] | None = None
        self.last_pong: datetime | None = None
        self._background: set[asyncio.Task] = set()

    def chat_ref(self, chat_id: uuid.UUID, is_group: bool) -> ChatRef:
        return ChatRef.from_client(self.user_id, chat_id, is_group)

    def visible_messages(self, chat_id: uuid.UUID, is_group: bool = False) -> list[MessageOut]:
        return self.store.visible_messages(self.chat_ref(chat_id, is_group).key, self.user_id)

    def typing_users(self, chat_id: uuid.UUID, is_group: bool = False) -> set[uuid.UUID]:
        return set(self.typing.get(self.chat_ref(chat_id, is_group).key, ()))

    # sending

    async def send_message(
        self,
        *,
        receiver_id: uuid.UUID | None = None,
        group_id: uuid.UUID | None = None,
        content: str | None = None,
        attachments: Iterable[str] = (),
        reply_to_id: uuid.UUID | None = None,
        forwarded_from_message_id: uuid.UUID | None = None,
    ) -> SendResult:
        if (receiver_id is None) == (group_id is None):
            raise ValueError('exactly one of receiver_id and group_id is required')
        attachments = list(attachments)
        if not (content and content.strip()) and not attachments:
            raise ValueError('message needs content or an attachment')

        temp_id = f'temp-{uuid.uuid4()}'
        self.store.insert_optimistic(
            temp_id,
            self.user_id,
            receiver_id=receiver_id,
            group_id=group_id,
            content=content,
            attachments=attachments,
            reply_to_id=reply_to_id,
        )
        payload = SendMessagePayload(
            client_temp_id=temp_id,
            sender_id=self.user_id,
            receiver_id=receiver_id,
            group_id=group_id,
            content=content,
            attachments=attachments,
            reply_to_id=reply_to_id,
            forwarded_from_message_id=forwarded_from_message_id,
        )

        fut = self.pending.open(temp_id)
        if not await self._submit(payload):
            sent = self.offline.push(payload)
            logger.info('Offline; queued %s', temp_id)
            self._spawn(self._await_confirmation(temp_id, fut, sent))
            return SendResult(client_temp_id=temp_id, queued=True)
        return await self._await_confirmation(temp_id, fut)

    async def _submit(self, payload: SendMessagePayload) -> bool:
        return await self.transport.send(SendMessageRequest(payload=payload).dump())

    async def _await_confirmation(
        self, temp_id: str, fut: asyncio.Future, sent: asyncio.Event | None = None
    ) -> SendResult:
        if sent is not None:
            # the clock starts once the request actually leaves
            try:
                await sent.wait()
            except asyncio.CancelledError:
                self.pending.forget(temp_id)
                raise

        try:
            message = await asyncio.wait_for(fut, timeout=self.send_timeout)
        except asyncio.TimeoutError:
            self.pending.forget(temp_id)
            result = SendResult(client_temp_id=temp_id, error='timeout')
        except SendFailed as e:
            result = SendResult(client_temp_id=temp_id, error=str(e), details=e.details)
        else:
            return SendResult(client_temp_id=temp_id, message=message)

        self.store.rollback(temp_id)
        logger.warning('Send %s failed: %s', temp_id, result.error)
        if self.on_send_failed:
            self.on_send_failed(result)
        return result

    async def add_reaction(self, message_id: uuid.UUID, emoji: str) -> bool:
        payload = ReactionPayload(message_id=message_id, user_id=self.user_id, emoji=emoji)
        return await self.transport.send(AddReactionRequest(payload=payload).dump())

    async def remove_reaction(self, message_id: uuid.UUID, emoji: str) -> bool:
        payload = ReactionPayload(message_id=message_id, user_id=self.user_id, emoji=emoji)
        return await self.transport.send(RemoveReactionRequest(payload=payload).dump())

    async def pin_message(self, message_id: uuid.UUID, is_pinned: bool = True) -> bool:
        return await self.transport.send(
            PinMessageRequest(payload=PinMessagePayload(message_id=message_id, is_pinned=is_pinned)).dump()
        )

    async def delete_message(self, message_id: uuid.UUID, for_everyone: bool = False) -> bool:
        payload = DeleteMessagePayload(message_id=message_id, user_id=self.user_id, delete_for_everyone=for_everyone)
        return await self.transport.send(DeleteMessageRequest(payload=payload).dump())

    # chat focus

    async def open(self, chat_id: uuid.UUID, is_group: bool = False, visible: bool = True) -> list[MessageOut]:
        self.open_chat = OpenChat(chat_id=chat_id, is_group=is_group, visible=visible)
        await self._load_history(chat_id, is_group)
        if visible:
            await self.mark_chat_as_read()
        return self.visible_messages(chat_id, is_group)

    def close_chat(self) -> None:
        self.open_chat = None

    async def set_visible(self, visible: bool) -> None:
        if self.open_chat is None:
            return
        became_visible = visible and not self.open_chat.visible
        self.open_chat.visible = visible
        if became_visible:
            await self.mark_chat_as_read()

    async def mark_chat_as_read(self) -> bool:
        chat = self.open_chat
        if chat is None:
            return False
        payload = MarkChatAsReadPayload(chat_id=chat.chat_id, user_id=self.user_id, is_group=chat.is_group)
        return await self.transport.send(MarkChatAsReadRequest(payload=payload).dump())

    def _is_open(self, message: MessageOut) -> bool:
        chat = self.open_chat
        if chat is None:
            return False
        return ChatRef.of_message(message).key == self.chat_ref(chat.chat_id, chat.is_group).key

    async def _load_history(self, chat_id: uuid.UUID, is_group: bool) -> int:
        if self.backlog is None:
            return 0
        try:
            messages = await self.backlog.history(self.user_id, chat_id, is_group, self.history_limit)
            if is_group:
                # pins can be older than the history page
                messages = [*await self.backlog.pinned(chat_id), *messages]
        except BacklogError as e:
            logger.warning('Could not load history for %s: %s', chat_id, e)
            return 0
        added = self.store.merge_backlog(messages)
        for message in messages:
            # our own rows carry the temp id; settle sends whose messageSaved was lost
            self.pending.resolve(message.client_temp_id, message)
        return added

    async def refresh_chats(self) -> list[dict[str, Any]]:
        """Reload unread counts and contact presence from the recent chats list."""
        if self.backlog is None:
            return []
        try:
            chats = await self.backlog.recent_chats(self.user_id)
        except BacklogError as e:
            logger.warning('Could not load recent chats: %s', e)
            return []
        for chat in chats:
            chat_id = uuid.UUID(chat['id'])
            self.unread[chat_id] = chat.get('unreadCount', 0)
            if not chat.get('isGroup') and 'isOnline' in chat:
                self.online[chat_id] = chat['isOnline']
        return chats

    # connection lifecycle

    async def run(self) -> None:
        await self.transport.run(self.handle_frame, self.handle_connected, self.handle_disconnected)

    async def handle_connected(self) -> None:
        await self.offline.flush(self._submit)
        await self.resync()

    async def handle_disconnected(self) -> None:
        # indicators from before the gap are stale
        self.typing.clear()

    async def resync(self) -> None:
        """Catch up on whatever happened while the socket was down."""
        await self.refresh_chats()
        chat = self.open_chat
        if chat is None:
            return
        await self._load_history(chat.chat_id, chat.is_group)
        if chat.visible:
            await self.mark_chat_as_read()

    async def close(self) -> None:
        self.pending.cancel_all()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # inbound

    async def handle_frame(self, frame: dict[str, Any]) -> None:
        try:
            event = server_event_adapter.validate_python(frame)
        except ValidationError:
            logger.warning('Ignoring unknown or malformed event %r', frame.get('type'))
            return

        match event:
            case MessageSavedEvent(payload=message):
                self.store.confirm(message.client_temp_id, message)
                self.pending.resolve(message.client_temp_id, message)
            case MessageErrorEvent(payload=p):
                if not self.pending.fail(p.client_temp_id, p.error, p.details):
                    self.store.rollback(p.client_temp_id)
            case NewMessageEvent(payload=message):
                await self._on_new_message(message)
            case MessageStatusUpdateEvent(payload=p):
                self.store.apply_status(p.message_id, p.status, p.delivered_at, p.seen_at)
            case UserTypingEvent(payload=p):
                if p.user_id != self.user_id:
                    key = ChatRef.from_client(p.user_id, p.chat_id, p.is_group).key
                    self.typing.setdefault(key, set()).add(p.user_id)
            case UserStoppedTypingEvent(payload=p):
                key = ChatRef.from_client(p.user_id, p.chat_id, p.is_group).key
                self.typing.get(key, set()).discard(p.user_id)
            case ReactionAddedEvent(payload=p):
                self.store.add_reaction(p.reaction)
            case ReactionRemovedEvent(payload=p):
                self.store.remove_reaction(p.message_id, p.user_id, p.emoji)
            case MessageDeletedEvent(payload=p):
                self.store.mark_deleted(p.message_id, p.for_everyone, self.user_id)
            case MessagePinnedEvent(payload=p):
                self.store.set_pinned(p.message_id, p.is_pinned)
            case UnreadCountUpdateEvent(payload=p):
                self.unread[p.chat_id] = p.unread_count
            case NewNotificationEvent(payload=p):
                self.notifications.insert(0, p)
            case UserOnlineEvent(payload=p):
                self.online[p.user_id] = p.is_online
                self.last_seen[p.user_id] = p.last_seen
            case PongEvent(payload=p):
                self.last_pong = p.server_ts
            case ErrorEvent(payload=p):
                self.last_error = p.model_dump()
                logger.warning('Server rejected %s: %s (%s)', p.request_type, p.message, p.code)

    async def _on_new_message(self, message: MessageOut) -> None:
        if not self.store.upsert(message):
            return
        if message.sender_id == self.user_id or not self._is_open(message):
            return

        # the message is on screen, acknowledge it right away
        receipt = ReceiptPayload(message_id=message.id)
        await self.transport.send(MessageDeliveredRequest(payload=receipt).dump())
        if self.open_chat.visible:
            await self.transport.send(MessageSeenRequest(payload=receipt).dump())
