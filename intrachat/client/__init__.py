from .backlog import BacklogClient, BacklogError
from .outbox import OfflineQueue, PendingSends, SendFailed
from .session import ChatSession, SendResult
from .store import ChatStore, LocalMessage, LocalStatus
from .transport import ClientTransport, WebSocketTransport
from .typing_emitter import TypingEmitter

__all__ = [
    'BacklogClient',
    'BacklogError',
    'ChatSession',
    'ChatStore',
    'ClientTransport',
    'LocalMessage',
    'LocalStatus',
    'OfflineQueue',
    'PendingSends',
    'SendFailed',
    'SendResult',
    'TypingEmitter',
    'WebSocketTransport',
]
