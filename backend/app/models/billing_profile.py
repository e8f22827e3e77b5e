"""SQLAlchemy model holding the billing terms and cached balance of a client."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, Money


class BillingProfile(Base):
    """Billing terms for a client plus the materialized pending balance.

    ``balance`` always equals the sum of the client's pending charges once a
    ledger operation commits. ``version`` backs SQLAlchemy's optimistic
    concurrency check so two sessions cannot both apply a delta computed
    from the same stale row.
    """

    __tablename__ = "billing_profiles"
    __table_args__ = (
        CheckConstraint("monthly_fee >= 0", name="ck_billing_profiles_fee_non_negative"),
        CheckConstraint(
            "billing_day >= 1 AND billing_day <= 28",
            name="ck_billing_profiles_billing_day_range",
        ),
        CheckConstraint(
            "installation_cost >= 0", name="ck_billing_profiles_installation_non_negative"
        ),
        CheckConstraint(
            "additional_charges >= 0", name="ck_billing_profiles_additional_non_negative"
        ),
    )

    id = Column("billing_profile_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    monthly_fee = Column(Money(), nullable=False)
    billing_day = Column(Integer, nullable=False)
    installation_date = Column(Date, nullable=False)
    first_billing_date = Column(Date, nullable=False)
    installation_cost = Column(Money(), nullable=False, default=0)
    prorated_amount = Column(Money(), nullable=False, default=0)
    additional_charges = Column(Money(), nullable=False, default=0)
    additional_charges_notes = Column(Text, nullable=True)
    balance = Column(Money(), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    client = relationship("Client", back_populates="billing_profile")

    __mapper_args__ = {"version_id_col": version}
