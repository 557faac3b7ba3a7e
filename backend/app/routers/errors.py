"""Translate billing errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from ..services.errors import (
    BillingError,
    InconsistentState,
    NotFound,
    TransientStoreError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[BillingError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InconsistentState, status.HTTP_409_CONFLICT),
    (TransientStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: BillingError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": exc.message},
    )
