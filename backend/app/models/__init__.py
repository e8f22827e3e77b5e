"""Expose SQLAlchemy models for convenient imports."""

from .audit import AuditAction, AuditEntity, LedgerAuditEntry
from .billing_profile import BillingProfile
from .charge import Charge, ChargeKind, ChargeStatus
from .charge_catalog import ChargeCatalogItem
from .client import Client
from .credit_transfer import PaymentCreditTransfer
from .operational_metric import OperationalMetricEvent
from .payment import Payment, PaymentMethod

__all__ = [
    "AuditAction",
    "AuditEntity",
    "LedgerAuditEntry",
    "BillingProfile",
    "Charge",
    "ChargeKind",
    "ChargeStatus",
    "ChargeCatalogItem",
    "Client",
    "OperationalMetricEvent",
    "Payment",
    "PaymentCreditTransfer",
    "PaymentMethod",
]
