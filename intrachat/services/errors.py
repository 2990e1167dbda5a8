class MessagingError(Exception):
    code = 'server_error'

    def __init__(self, message: str = '', details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class BadRequestError(MessagingError):
    """Malformed compose or mutation request."""

    code = 'bad_request'


class PermissionDeniedError(MessagingError):
    code = 'forbidden'


class StaleTargetError(MessagingError):
    """Referenced message/chat is gone or the actor is not a participant."""

    code = 'not_found'


class PersistenceTimeout(MessagingError):
    """The store did not answer in time; nothing was committed from our side."""

    code = 'timeout'
