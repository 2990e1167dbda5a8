import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class ChatRef:
    """A direct pair or a group.

    A direct chat is an unordered pair; from one participant's point of view it
    is identified by the counterpart's user id. A group is identified by its id.
    """

    group_id: uuid.UUID | None = None
    pair: tuple[uuid.UUID, uuid.UUID] | None = None

    @classmethod
    def direct(cls, a: uuid.UUID, b: uuid.UUID) -> 'ChatRef':
        return cls(pair=tuple(sorted((a, b), key=str)))

    @classmethod
    def group(cls, group_id: uuid.UUID) -> 'ChatRef':
        return cls(group_id=group_id)

    @classmethod
    def from_client(cls, user_id: uuid.UUID, chat_id: uuid.UUID, is_group: bool) -> 'ChatRef':
        return cls.group(chat_id) if is_group else cls.direct(user_id, chat_id)

    @classmethod
    def of_message(cls, message) -> 'ChatRef':
        if message.group_id is not None:
            return cls.group(message.group_id)
        return cls.direct(message.sender_id, message.receiver_id)

    @property
    def is_group(self) -> bool:
        return self.group_id is not None

    @property
    def key(self) -> str:
        if self.is_group:
            return f'group:{self.group_id}'
        a, b = self.pair
        return f'direct:{a}:{b}'

    def chat_id_for(self, viewer_id: uuid.UUID) -> uuid.UUID:
        if self.is_group:
            return self.group_id
        a, b = self.pair
        return b if a == viewer_id else a
