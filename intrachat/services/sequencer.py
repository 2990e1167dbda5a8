import asyncio
from contextlib import asynccontextmanager


class ChatSequencer:
    """Serializes work per chat key; different chats never wait on each other."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, chat_key: str):
        lock = self._locks.setdefault(chat_key, asyncio.Lock())
        self._users[chat_key] = self._users.get(chat_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[chat_key] -= 1
            if not self._users[chat_key]:
                del self._users[chat_key]
                del self._locks[chat_key]

    def active_keys(self) -> set[str]:
        return set(self._locks)
