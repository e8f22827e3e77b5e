"""Translate ledger exceptions into HTTP errors."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..services.errors import (
    ConcurrentUpdateError,
    LedgerConsistencyError,
    LedgerUnavailableError,
)

LOGGER = logging.getLogger(__name__)

LEDGER_ERRORS = (ValueError, LookupError, LedgerConsistencyError, ConcurrentUpdateError, LedgerUnavailableError)


def http_error(exc: Exception) -> HTTPException:
    """Return the HTTPException matching a ledger failure."""

    if isinstance(exc, LookupError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, (LedgerConsistencyError, ConcurrentUpdateError)):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
            headers={"X-Retryable": "true"} if exc.retryable else None,
        )
    LOGGER.error("Ledger storage unavailable: %s", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(exc),
        headers={"Retry-After": "1"},
    )
