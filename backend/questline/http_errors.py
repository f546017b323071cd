"""Translation of progression errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from .errors import (
    ForbiddenError,
    InvalidWindowError,
    NotFoundError,
    QuestlineError,
    ReviewConflictError,
    StoreUnavailableError,
)

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ReviewConflictError, status.HTTP_409_CONFLICT),
    (InvalidWindowError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: QuestlineError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


__all__ = ["to_http_exception"]
