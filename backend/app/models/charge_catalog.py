"""Catalog of reusable ad-hoc charge templates."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text, func

from ..database import Base
from ..db_types import GUID, Money


class ChargeCatalogItem(Base):
    """Template offered by the catalog service for manual charges."""

    __tablename__ = "charge_catalog_items"

    id = Column("catalog_item_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False, unique=True)
    default_amount = Column(Money(), nullable=False, default=0)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
