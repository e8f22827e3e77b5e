"""Credit moved from one payment's unapplied remainder to a later payment."""

from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, Money


class PaymentCreditTransfer(Base):
    """Unapplied money of ``source`` spent by the allocation of ``target``.

    Rows are removed when the target's allocation is undone, which hands the
    amount back to the source payment. The services write the foreign keys
    directly; the relationships are read-only.
    """

    __tablename__ = "payment_credit_transfers"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transfers_amount_positive"),
        CheckConstraint(
            "source_payment_id <> target_payment_id",
            name="ck_credit_transfers_distinct_payments",
        ),
    )

    id = Column("transfer_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    source_payment_id = Column(
        GUID(),
        ForeignKey("payments.payment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    target_payment_id = Column(
        GUID(),
        ForeignKey("payments.payment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount = Column(Money(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    source = relationship("Payment", foreign_keys=[source_payment_id], viewonly=True)
    target = relationship("Payment", foreign_keys=[target_payment_id], viewonly=True)


Index("credit_transfers_source_idx", PaymentCreditTransfer.source_payment_id)
Index("credit_transfers_target_idx", PaymentCreditTransfer.target_payment_id)
