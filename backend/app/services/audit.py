"""Writes append-only audit entries for ledger mutations."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from .. import models


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


def charge_snapshot(charge: models.Charge) -> dict[str, Any]:
    return {
        "description": charge.description,
        "kind": _stringify(charge.kind),
        "period": charge.period_key,
        "amount": _stringify(charge.amount),
        "status": _stringify(charge.status),
        "payment_id": _stringify(charge.payment_id),
        "paid_date": _stringify(charge.paid_date),
        "is_advance": bool(charge.is_advance),
    }


def payment_snapshot(payment: models.Payment) -> dict[str, Any]:
    return {
        "amount": _stringify(payment.amount),
        "paid_on": _stringify(payment.paid_on),
        "method": _stringify(payment.method),
        "bank_reference": payment.bank_reference,
        "receipt_number": payment.receipt_number,
        "unapplied_amount": _stringify(payment.unapplied_amount),
        "recorded_by": payment.recorded_by,
    }


class AuditTrail:
    """Emits change records to the audit sink. The ledger never reads them back."""

    @staticmethod
    def record(
        db: Session,
        *,
        client_id: str,
        entity: models.AuditEntity,
        entity_id: str,
        action: models.AuditAction,
        actor: Optional[str] = None,
        field_name: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        snapshot: Optional[dict[str, Any]] = None,
    ) -> models.LedgerAuditEntry:
        entry = models.LedgerAuditEntry(
            client_id=str(client_id),
            entity_type=entity,
            entity_id=str(entity_id),
            action=action,
            field_name=field_name,
            old_value=_stringify(old_value),
            new_value=_stringify(new_value),
            actor=actor,
            snapshot=snapshot,
        )
        db.add(entry)
        return entry

    @classmethod
    def record_changes(
        cls,
        db: Session,
        *,
        client_id: str,
        entity: models.AuditEntity,
        entity_id: str,
        changes: Mapping[str, tuple[Any, Any]],
        actor: Optional[str] = None,
    ) -> list[models.LedgerAuditEntry]:
        """Record one ``updated`` entry per field whose value actually changed."""

        entries = []
        for field_name, (old_value, new_value) in changes.items():
            if _stringify(old_value) == _stringify(new_value):
                continue
            entries.append(
                cls.record(
                    db,
                    client_id=client_id,
                    entity=entity,
                    entity_id=entity_id,
                    action=models.AuditAction.UPDATED,
                    actor=actor,
                    field_name=field_name,
                    old_value=old_value,
                    new_value=new_value,
                )
            )
        return entries
