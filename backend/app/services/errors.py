"""Exception taxonomy shared by the ledger services."""

from __future__ import annotations


class LedgerError(RuntimeError):
    """Base class for ledger failures that are not plain validation errors."""

    retryable = False


class LedgerValidationError(ValueError):
    """Raised when input is rejected before anything is mutated."""


class LedgerNotFoundError(LookupError):
    """Raised when a client, charge or payment does not exist."""


class LedgerConsistencyError(LedgerError):
    """Raised when an operation would break a ledger invariant."""


class DuplicatePeriodChargeError(LedgerConsistencyError):
    """Raised when storage rejects a second recurring charge for a period."""


class ConcurrentUpdateError(LedgerError):
    """Raised when another session changed the client's ledger first."""

    retryable = True


class LedgerUnavailableError(LedgerError):
    """Raised when the storage layer fails; nothing was committed."""

    retryable = True
