"""SQLAlchemy model for the client identity stub."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Index, String, func
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID


class Client(Base):
    """Client identity as supplied by the client directory.

    The ledger only reads these fields; billing data lives in
    :class:`BillingProfile`.
    """

    __tablename__ = "clients"

    id = Column("client_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    external_code = Column(String, unique=True, nullable=True)
    full_name = Column(String, nullable=False)
    location = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    billing_profile = relationship(
        "BillingProfile",
        back_populates="client",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    charges = relationship(
        "Charge",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    payments = relationship(
        "Payment",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


Index("clients_full_name_idx", Client.full_name)
