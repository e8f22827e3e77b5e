"""Models representing owed amounts for a client."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, Money


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChargeStatus(str, enum.Enum):
    """Lifecycle status for a charge."""

    PENDING = "pending"
    PAID = "paid"


class ChargeKind(str, enum.Enum):
    """Origin of a charge."""

    RECURRING = "recurring"
    PRORATION = "proration"
    INSTALLATION = "installation"
    ADDITIONAL = "additional"
    AD_HOC = "ad_hoc"


CHARGE_STATUS_ENUM = SAEnum(
    ChargeStatus,
    name="charge_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)

CHARGE_KIND_ENUM = SAEnum(
    ChargeKind,
    name="charge_kind_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Charge(Base):
    """An amount owed by a client.

    Recurring charges carry their billing period in ``period_year`` and
    ``period_month``; the unique constraint keeps one recurring charge per
    client and period even when two batch runs race.
    """

    __tablename__ = "charges"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_charges_amount_positive"),
        CheckConstraint(
            "(status = 'paid' AND payment_id IS NOT NULL AND paid_date IS NOT NULL)"
            " OR (status = 'pending' AND payment_id IS NULL AND paid_date IS NULL)",
            name="ck_charges_status_matches_payment",
        ),
        CheckConstraint(
            "(kind = 'recurring' AND period_year IS NOT NULL AND period_month IS NOT NULL)"
            " OR (kind <> 'recurring' AND period_year IS NULL AND period_month IS NULL)",
            name="ck_charges_period_only_for_recurring",
        ),
        CheckConstraint(
            "period_month IS NULL OR (period_month >= 1 AND period_month <= 12)",
            name="ck_charges_period_month_range",
        ),
        UniqueConstraint(
            "client_id",
            "period_year",
            "period_month",
            name="charges_unique_client_period",
        ),
    )

    id = Column("charge_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    kind = Column(CHARGE_KIND_ENUM, nullable=False, default=ChargeKind.AD_HOC)
    period_year = Column(Integer, nullable=True)
    period_month = Column(Integer, nullable=True)
    description = Column(String, nullable=False)
    amount = Column(Money(), nullable=False)
    status = Column(CHARGE_STATUS_ENUM, nullable=False, default=ChargeStatus.PENDING)
    due_date = Column(Date, nullable=True)
    paid_date = Column(Date, nullable=True)
    payment_id = Column(
        GUID(),
        ForeignKey("payments.payment_id", ondelete="RESTRICT"),
        nullable=True,
    )
    is_advance = Column(Boolean, nullable=False, default=False)
    catalog_item_id = Column(
        GUID(),
        ForeignKey("charge_catalog_items.catalog_item_id", ondelete="SET NULL"),
        nullable=True,
    )
    notes = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    client = relationship("Client", back_populates="charges")
    payment = relationship("Payment", back_populates="charges")
    catalog_item = relationship("ChargeCatalogItem")

    @property
    def period(self):
        """Return the billing period for recurring charges, ``None`` otherwise."""

        if self.period_year is None or self.period_month is None:
            return None
        from ..services.billing_periods import BillingPeriod

        return BillingPeriod(year=self.period_year, month=self.period_month)

    @property
    def period_key(self) -> str | None:
        period = self.period
        return period.key if period else None


Index("charges_client_status_idx", Charge.client_id, Charge.status)
Index("charges_payment_idx", Charge.payment_id)
