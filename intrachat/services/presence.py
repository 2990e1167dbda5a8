"""Which users are connected right now, and through how many connections."""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Hashable


@dataclass
class PresenceEntry:
    connections: set = field(default_factory=set)
    last_seen: datetime | None = None

    @property
    def is_online(self) -> bool:
        return bool(self.connections)


@dataclass(frozen=True)
class PresenceChange:
    user_id: uuid.UUID
    is_online: bool
    last_seen: datetime | None = None


class PresenceRegistry:
    """Thread-safe map of user id -> live connection handles.

    Handles are opaque hashables (the websocket layer uses its Connection
    objects). None of the operations raise.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[uuid.UUID, PresenceEntry] = {}
        self._owners: dict[Hashable, uuid.UUID] = {}

    def connect(self, user_id: uuid.UUID, handle: Hashable) -> bool:
        """Register a handle; True when it is the user's first live connection."""
        with self._lock:
            entry = self._entries.setdefault(user_id, PresenceEntry())
            was_online = entry.is_online
            entry.connections.add(handle)
            self._owners[handle] = user_id
            return not was_online

    def disconnect(self, handle: Hashable) -> PresenceChange | None:
        """Drop a handle; returns the offline transition if it was the last one."""
        with self._lock:
            user_id = self._owners.pop(handle, None)
            if user_id is None:
                return None
            entry = self._entries[user_id]
            entry.connections.discard(handle)
            if entry.is_online:
                return None
            entry.last_seen = datetime.now(tz=UTC)
            return PresenceChange(user_id=user_id, is_online=False, last_seen=entry.last_seen)

    def is_online(self, user_id: uuid.UUID) -> bool:
        with self._lock:
            entry = self._entries.get(user_id)
            return bool(entry and entry.is_online)

    def connections_for(self, user_id: uuid.UUID) -> frozenset:
        with self._lock:
            entry = self._entries.get(user_id)
            return frozenset(entry.connections) if entry else frozenset()
