"""Service layer encapsulating business logic for API routers."""

from .account_state import (
    AccountStanding,
    AccountState,
    PeriodState,
    PeriodStatus,
    derive_account_state,
    pending_total,
    period_statuses,
)
from .audit import AuditTrail
from .balance import BalanceKeeper, ledger_transaction, lock_billing_profile
from .billing_periods import BillingPeriod, PeriodRange, iter_periods
from .credit import CreditPool
from .data_consistency import DataConsistencyService, LedgerConsistencySnapshot
from .errors import (
    ConcurrentUpdateError,
    DuplicatePeriodChargeError,
    LedgerConsistencyError,
    LedgerError,
    LedgerNotFoundError,
    LedgerUnavailableError,
    LedgerValidationError,
)
from .ledger import BatchGenerationReport, ChargeGenerationResult, ChargeLedgerService
from .observability import ObservabilityService
from .payments import AllocationPlan, PaymentRecordResult, PaymentService, plan_allocation
from .proration import ProrationResult, calculate_initial_total, calculate_proration
from .statements import AccountStateService, Statement

__all__ = [
    "AccountStanding",
    "AccountState",
    "PeriodState",
    "PeriodStatus",
    "derive_account_state",
    "pending_total",
    "period_statuses",
    "AuditTrail",
    "BalanceKeeper",
    "ledger_transaction",
    "lock_billing_profile",
    "BillingPeriod",
    "PeriodRange",
    "iter_periods",
    "CreditPool",
    "DataConsistencyService",
    "LedgerConsistencySnapshot",
    "ConcurrentUpdateError",
    "DuplicatePeriodChargeError",
    "LedgerConsistencyError",
    "LedgerError",
    "LedgerNotFoundError",
    "LedgerUnavailableError",
    "LedgerValidationError",
    "BatchGenerationReport",
    "ChargeGenerationResult",
    "ChargeLedgerService",
    "ObservabilityService",
    "AllocationPlan",
    "PaymentRecordResult",
    "PaymentService",
    "plan_allocation",
    "ProrationResult",
    "calculate_initial_total",
    "calculate_proration",
    "AccountStateService",
    "Statement",
]
