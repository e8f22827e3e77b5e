"""Track unapplied payment credit spent by later payments.

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 12:00:00.000000
"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

from backend.app.db_types import GUID


revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if inspector.has_table("payment_credit_transfers"):
        return

    op.create_table(
        "payment_credit_transfers",
        sa.Column("transfer_id", GUID(), primary_key=True, nullable=False),
        sa.Column(
            "client_id",
            GUID(),
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "source_payment_id",
            GUID(),
            sa.ForeignKey("payments.payment_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "target_payment_id",
            GUID(),
            sa.ForeignKey("payments.payment_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("amount > 0", name="ck_credit_transfers_amount_positive"),
        sa.CheckConstraint(
            "source_payment_id <> target_payment_id",
            name="ck_credit_transfers_distinct_payments",
        ),
    )
    op.create_index(
        "credit_transfers_source_idx", "payment_credit_transfers", ["source_payment_id"]
    )
    op.create_index(
        "credit_transfers_target_idx", "payment_credit_transfers", ["target_payment_id"]
    )


def downgrade() -> None:
    op.drop_table("payment_credit_transfers")
