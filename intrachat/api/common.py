from fastapi import HTTPException, status

from intrachat.services.errors import (
    BadRequestError,
    MessagingError,
    PermissionDeniedError,
    PersistenceTimeout,
    StaleTargetError,
)

_STATUS = {
    BadRequestError: status.HTTP_400_BAD_REQUEST,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    StaleTargetError: status.HTTP_404_NOT_FOUND,
    PersistenceTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
}


def http_error(e: MessagingError) -> HTTPException:
    return HTTPException(_STATUS.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR), detail=str(e))
