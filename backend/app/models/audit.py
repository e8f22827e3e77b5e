"""Append-only audit trail for ledger mutations."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, JSON, String, Text, func
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON

from ..database import Base
from ..db_types import GUID


class AuditAction(str, enum.Enum):
    """Actions recorded in the ledger audit trail."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class AuditEntity(str, enum.Enum):
    """Kinds of records tracked by the audit trail."""

    CHARGE = "charge"
    PAYMENT = "payment"
    BILLING_PROFILE = "billing_profile"


class LedgerAuditEntry(Base):
    """One field-level change applied to a ledger record.

    Entries intentionally carry no foreign keys: they must outlive the
    charge or payment they describe.
    """

    __tablename__ = "ledger_audit_entries"

    id = Column("audit_entry_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(GUID(), nullable=False, index=True)
    entity_type = Column(
        Enum(
            AuditEntity,
            name="audit_entity_enum",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            native_enum=False,
        ),
        nullable=False,
    )
    entity_id = Column(GUID(), nullable=False, index=True)
    action = Column(
        Enum(
            AuditAction,
            name="audit_action_enum",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            native_enum=False,
        ),
        nullable=False,
    )
    field_name = Column(String, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    actor = Column(String, nullable=True)
    snapshot = Column(JSON().with_variant(SQLiteJSON(), "sqlite"), nullable=True)
    changed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
