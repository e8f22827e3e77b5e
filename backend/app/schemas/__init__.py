"""Expose Pydantic schemas for convenient imports."""

from .account import (
    AccountStateRead,
    PeriodStatusListResponse,
    PeriodStatusRead,
    StatementRead,
)
from .billing import (
    BillingProfileCreate,
    BillingProfileRead,
    BillingProfileUpdate,
    ProrationRead,
)
from .charge import (
    BatchGenerationRequest,
    BatchGenerationResponse,
    ChargeCreate,
    ChargeGenerationRequest,
    ChargeGenerationResponse,
    ChargeListResponse,
    ChargeRead,
    ChargeUpdate,
)
from .common import PaginatedResponse
from .consistency import (
    BalanceDriftRead,
    ChargeStatusMismatchRead,
    ConsistencyReportRead,
    PaymentAllocationMismatchRead,
)
from .payment import (
    AllocatedCharge,
    AllocationSummary,
    PaymentCreate,
    PaymentListResponse,
    PaymentPreviewRequest,
    PaymentRead,
    PaymentUpdate,
    PaymentWithSummary,
)

__all__ = [
    "AccountStateRead",
    "PeriodStatusListResponse",
    "PeriodStatusRead",
    "StatementRead",
    "BillingProfileCreate",
    "BillingProfileRead",
    "BillingProfileUpdate",
    "ProrationRead",
    "BatchGenerationRequest",
    "BatchGenerationResponse",
    "ChargeCreate",
    "ChargeGenerationRequest",
    "ChargeGenerationResponse",
    "ChargeListResponse",
    "ChargeRead",
    "ChargeUpdate",
    "PaginatedResponse",
    "BalanceDriftRead",
    "ChargeStatusMismatchRead",
    "ConsistencyReportRead",
    "PaymentAllocationMismatchRead",
    "AllocatedCharge",
    "AllocationSummary",
    "PaymentCreate",
    "PaymentListResponse",
    "PaymentPreviewRequest",
    "PaymentRead",
    "PaymentUpdate",
    "PaymentWithSummary",
]
