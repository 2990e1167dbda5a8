"""Websocket protocol.

Every frame is ``{"type": ..., "payload": {...}}``. Inbound and outbound frames
are discriminated unions over ``type`` so a consumer can match on the event
class instead of poking at dicts.
"""
import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter
from sqlmodel import SQLModel

from intrachat.config import MAX_CONTENT_LENGTH
from intrachat.schemas.base import CamelModel
from intrachat.schemas.message_out import MessageOut, ReactionOut
from intrachat.schemas.notification import NotificationOut


class WSRequest(SQLModel, table=False):
    type: str
    payload: dict = {}


# client -> server payloads

class SendMessagePayload(CamelModel):
    client_temp_id: str = Field(min_length=1, max_length=128)
    sender_id: uuid.UUID
    receiver_id: uuid.UUID | None = None
    group_id: uuid.UUID | None = None
    content: str | None = Field(default=None, max_length=MAX_CONTENT_LENGTH)
    attachments: list[str] = Field(default_factory=list, max_length=20)
    reply_to_id: uuid.UUID | None = None
    forwarded_from_message_id: uuid.UUID | None = None


class TypingPayload(CamelModel):
    user_id: uuid.UUID
    chat_id: uuid.UUID
    is_group: bool = False


class ReceiptPayload(CamelModel):
    message_id: uuid.UUID


class ReactionPayload(CamelModel):
    message_id: uuid.UUID
    user_id: uuid.UUID
    emoji: str = Field(min_length=1, max_length=32)


class DeleteMessagePayload(CamelModel):
    message_id: uuid.UUID
    user_id: uuid.UUID
    delete_for_everyone: bool = False


class PinMessagePayload(CamelModel):
    message_id: uuid.UUID
    is_pinned: bool
    chat_id: uuid.UUID | None = None
    group_id: uuid.UUID | None = None


class MarkChatAsReadPayload(CamelModel):
    chat_id: uuid.UUID
    user_id: uuid.UUID
    is_group: bool = False


class PingPayload(CamelModel):
    ts: Any = None


class SendMessageRequest(CamelModel):
    type: Literal['sendMessage'] = 'sendMessage'
    payload: SendMessagePayload


class TypingRequest(CamelModel):
    type: Literal['typing'] = 'typing'
    payload: TypingPayload


class StopTypingRequest(CamelModel):
    type: Literal['stopTyping'] = 'stopTyping'
    payload: TypingPayload


class MessageDeliveredRequest(CamelModel):
    type: Literal['messageDelivered'] = 'messageDelivered'
    payload: ReceiptPayload


class MessageSeenRequest(CamelModel):
    type: Literal['messageSeen'] = 'messageSeen'
    payload: ReceiptPayload


class AddReactionRequest(CamelModel):
    type: Literal['addReaction'] = 'addReaction'
    payload: ReactionPayload


class RemoveReactionRequest(CamelModel):
    type: Literal['removeReaction'] = 'removeReaction'
    payload: ReactionPayload


class DeleteMessageRequest(CamelModel):
    type: Literal['deleteMessage'] = 'deleteMessage'
    payload: DeleteMessagePayload


class PinMessageRequest(CamelModel):
    type: Literal['pinMessage'] = 'pinMessage'
    payload: PinMessagePayload


class MarkChatAsReadRequest(CamelModel):
    type: Literal['markChatAsRead'] = 'markChatAsRead'
    payload: MarkChatAsReadPayload


class PingRequest(CamelModel):
    type: Literal['ping'] = 'ping'
    payload: PingPayload = PingPayload()


ClientEvent = Annotated[
    Union[
        SendMessageRequest,
        TypingRequest,
        StopTypingRequest,
        MessageDeliveredRequest,
        MessageSeenRequest,
        AddReactionRequest,
        RemoveReactionRequest,
        DeleteMessageRequest,
        PinMessageRequest,
        MarkChatAsReadRequest,
        PingRequest,
    ],
    Field(discriminator='type'),
]
client_event_adapter = TypeAdapter(ClientEvent)


# server -> client payloads

class MessageErrorPayload(CamelModel):
    client_temp_id: str | None
    error: str
    details: dict = {}


class StatusUpdatePayload(CamelModel):
    message_id: uuid.UUID
    status: Literal['delivered', 'seen']
    delivered_at: datetime | None = None
    seen_at: datetime | None = None


class ReactionAddedPayload(CamelModel):
    message_id: uuid.UUID
    reaction: ReactionOut


class MessageDeletedPayload(CamelModel):
    message_id: uuid.UUID
    for_everyone: bool = True


class MessagePinnedPayload(CamelModel):
    message_id: uuid.UUID
    is_pinned: bool


class UnreadCountPayload(CamelModel):
    chat_id: uuid.UUID
    unread_count: int


class PresencePayload(CamelModel):
    user_id: uuid.UUID
    is_online: bool
    last_seen: datetime | None = None


class PongPayload(CamelModel):
    ts: Any = None
    server_ts: datetime


class ErrorPayload(CamelModel):
    code: str
    message: str
    request_type: str | None = None
    details: dict = {}


class MessageSavedEvent(CamelModel):
    type: Literal['messageSaved'] = 'messageSaved'
    payload: MessageOut


class MessageErrorEvent(CamelModel):
    type: Literal['messageError'] = 'messageError'
    payload: MessageErrorPayload


class NewMessageEvent(CamelModel):
    type: Literal['newMessage'] = 'newMessage'
    payload: MessageOut


class UserTypingEvent(CamelModel):
    type: Literal['userTyping'] = 'userTyping'
    payload: TypingPayload


class UserStoppedTypingEvent(CamelModel):
    type: Literal['userStoppedTyping'] = 'userStoppedTyping'
    payload: TypingPayload


class MessageStatusUpdateEvent(CamelModel):
    type: Literal['messageStatusUpdate'] = 'messageStatusUpdate'
    payload: StatusUpdatePayload


class ReactionAddedEvent(CamelModel):
    type: Literal['reactionAdded'] = 'reactionAdded'
    payload: ReactionAddedPayload


class ReactionRemovedEvent(CamelModel):
    type: Literal['reactionRemoved'] = 'reactionRemoved'
    payload: ReactionPayload


class MessageDeletedEvent(CamelModel):
    type: Literal['messageDeleted'] = 'messageDeleted'
    payload: MessageDeletedPayload


class MessagePinnedEvent(CamelModel):
    type: Literal['messagePinned'] = 'messagePinned'
    payload: MessagePinnedPayload


class UnreadCountUpdateEvent(CamelModel):
    type: Literal['unreadCountUpdate'] = 'unreadCountUpdate'
    payload: UnreadCountPayload


class NewNotificationEvent(CamelModel):
    type: Literal['newNotification'] = 'newNotification'
    payload: NotificationOut


class UserOnlineEvent(CamelModel):
    type: Literal['userOnline'] = 'userOnline'
    payload: PresencePayload


class PongEvent(CamelModel):
    type: Literal['pong'] = 'pong'
    payload: PongPayload


class ErrorEvent(CamelModel):
    type: Literal['error'] = 'error'
    payload: ErrorPayload


ServerEvent = Annotated[
    Union[
        MessageSavedEvent,
        MessageErrorEvent,
        NewMessageEvent,
        UserTypingEvent,
        UserStoppedTypingEvent,
        MessageStatusUpdateEvent,
        ReactionAddedEvent,
        ReactionRemovedEvent,
        MessageDeletedEvent,
        MessagePinnedEvent,
        UnreadCountUpdateEvent,
        NewNotificationEvent,
        UserOnlineEvent,
        PongEvent,
        ErrorEvent,
    ],
    Field(discriminator='type'),
]
server_event_adapter = TypeAdapter(ServerEvent)
