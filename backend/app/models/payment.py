"""SQLAlchemy model definitions for client payments."""

from __future__ import annotations

import enum
import uuid
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, Money


class PaymentMethod(str, enum.Enum):
    """Supported payment methods."""

    EFECTIVO = "Efectivo"
    TRANSFERENCIA = "Transferencia"
    DEPOSITO = "Deposito"
    TARJETA = "Tarjeta"
    OTRO = "Otro"


PAYMENT_METHOD_ENUM = Enum(
    PaymentMethod,
    name="payment_method_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Payment(Base):
    """A settled amount received from a client.

    The charges a payment covers point back to it through
    ``Charge.payment_id``; whatever could not be allocated stays in
    ``unapplied_amount``. Later payments may spend that remainder through
    credit transfers, so ``amount + credit_received`` always equals the
    linked charges plus ``unapplied_amount`` plus ``credit_given``.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint("unapplied_amount >= 0", name="ck_payments_unapplied_non_negative"),
        CheckConstraint(
            "unapplied_amount <= amount", name="ck_payments_unapplied_within_amount"
        ),
    )

    id = Column("payment_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount = Column(Money(), nullable=False)
    paid_on = Column(Date, nullable=False)
    method = Column(PAYMENT_METHOD_ENUM, nullable=False, default=PaymentMethod.EFECTIVO)
    bank_reference = Column(String, nullable=True)
    receipt_number = Column(String, nullable=True)
    payer_name = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    unapplied_amount = Column(Money(), nullable=False, default=0)
    recorded_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    client = relationship("Client", back_populates="payments")
    charges = relationship("Charge", back_populates="payment")
    credits_given = relationship(
        "PaymentCreditTransfer",
        foreign_keys="PaymentCreditTransfer.source_payment_id",
        viewonly=True,
    )
    credits_received = relationship(
        "PaymentCreditTransfer",
        foreign_keys="PaymentCreditTransfer.target_payment_id",
        viewonly=True,
    )

    @property
    def charge_ids(self) -> list[str]:
        return [str(charge.id) for charge in self.charges]

    @property
    def credit_applied(self) -> Decimal:
        return sum((Decimal(str(item.amount)) for item in self.credits_received), Decimal("0"))


Index("payments_client_paid_on_idx", Payment.client_id, Payment.paid_on)
