"""Create the billing ledger schema.

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import sqlite

from backend.app.db_types import GUID


revision = "20261019_0001"
down_revision = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, validate_strings=True)


def _money() -> sa.Numeric:
    return sa.Numeric(12, 2)


def _json() -> sa.JSON:
    return sa.JSON().with_variant(sqlite.JSON(), "sqlite")


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("clients"):
        op.create_table(
            "clients",
            sa.Column("client_id", GUID(), primary_key=True, nullable=False),
            sa.Column("external_code", sa.String(), nullable=True, unique=True),
            sa.Column("full_name", sa.String(), nullable=False),
            sa.Column("location", sa.String(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )
        op.create_index("clients_full_name_idx", "clients", ["full_name"])

    if not inspector.has_table("billing_profiles"):
        op.create_table(
            "billing_profiles",
            sa.Column("billing_profile_id", GUID(), primary_key=True, nullable=False),
            sa.Column(
                "client_id",
                GUID(),
                sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
                nullable=False,
                unique=True,
            ),
            sa.Column("monthly_fee", _money(), nullable=False),
            sa.Column("billing_day", sa.Integer(), nullable=False),
            sa.Column("installation_date", sa.Date(), nullable=False),
            sa.Column("first_billing_date", sa.Date(), nullable=False),
            sa.Column("installation_cost", _money(), nullable=False, server_default="0"),
            sa.Column("prorated_amount", _money(), nullable=False, server_default="0"),
            sa.Column("additional_charges", _money(), nullable=False, server_default="0"),
            sa.Column("additional_charges_notes", sa.Text(), nullable=True),
            sa.Column("balance", _money(), nullable=False, server_default="0"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.CheckConstraint("monthly_fee >= 0", name="ck_billing_profiles_fee_non_negative"),
            sa.CheckConstraint(
                "billing_day >= 1 AND billing_day <= 28",
                name="ck_billing_profiles_billing_day_range",
            ),
            sa.CheckConstraint(
                "installation_cost >= 0",
                name="ck_billing_profiles_installation_non_negative",
            ),
            sa.CheckConstraint(
                "additional_charges >= 0",
                name="ck_billing_profiles_additional_non_negative",
            ),
        )

    if not inspector.has_table("charge_catalog_items"):
        op.create_table(
            "charge_catalog_items",
            sa.Column("catalog_item_id", GUID(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(), nullable=False, unique=True),
            sa.Column("default_amount", _money(), nullable=False, server_default="0"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )

    if not inspector.has_table("payments"):
        op.create_table(
            "payments",
            sa.Column("payment_id", GUID(), primary_key=True, nullable=False),
            sa.Column(
                "client_id",
                GUID(),
                sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("amount", _money(), nullable=False),
            sa.Column("paid_on", sa.Date(), nullable=False),
            sa.Column(
                "method",
                _enum(
                    "payment_method_enum",
                    "Efectivo",
                    "Transferencia",
                    "Deposito",
                    "Tarjeta",
                    "Otro",
                ),
                nullable=False,
            ),
            sa.Column("bank_reference", sa.String(), nullable=True),
            sa.Column("receipt_number", sa.String(), nullable=True),
            sa.Column("payer_name", sa.String(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("unapplied_amount", _money(), nullable=False, server_default="0"),
            sa.Column("recorded_by", sa.String(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
            sa.CheckConstraint(
                "unapplied_amount >= 0", name="ck_payments_unapplied_non_negative"
            ),
            sa.CheckConstraint(
                "unapplied_amount <= amount", name="ck_payments_unapplied_within_amount"
            ),
        )
        op.create_index("payments_client_paid_on_idx", "payments", ["client_id", "paid_on"])

    if not inspector.has_table("charges"):
        op.create_table(
            "charges",
            sa.Column("charge_id", GUID(), primary_key=True, nullable=False),
            sa.Column(
                "client_id",
                GUID(),
                sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "kind",
                _enum(
                    "charge_kind_enum",
                    "recurring",
                    "proration",
                    "installation",
                    "additional",
                    "ad_hoc",
                ),
                nullable=False,
            ),
            sa.Column("period_year", sa.Integer(), nullable=True),
            sa.Column("period_month", sa.Integer(), nullable=True),
            sa.Column("description", sa.String(), nullable=False),
            sa.Column("amount", _money(), nullable=False),
            sa.Column(
                "status",
                _enum("charge_status_enum", "pending", "paid"),
                nullable=False,
                server_default="pending",
            ),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("paid_date", sa.Date(), nullable=True),
            sa.Column(
                "payment_id",
                GUID(),
                sa.ForeignKey("payments.payment_id", ondelete="RESTRICT"),
                nullable=True,
            ),
            sa.Column("is_advance", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "catalog_item_id",
                GUID(),
                sa.ForeignKey("charge_catalog_items.catalog_item_id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("amount > 0", name="ck_charges_amount_positive"),
            sa.CheckConstraint(
                "(status = 'paid' AND payment_id IS NOT NULL AND paid_date IS NOT NULL)"
                " OR (status = 'pending' AND payment_id IS NULL AND paid_date IS NULL)",
                name="ck_charges_status_matches_payment",
            ),
            sa.CheckConstraint(
                "(kind = 'recurring' AND period_year IS NOT NULL AND period_month IS NOT NULL)"
                " OR (kind <> 'recurring' AND period_year IS NULL AND period_month IS NULL)",
                name="ck_charges_period_only_for_recurring",
            ),
            sa.CheckConstraint(
                "period_month IS NULL OR (period_month >= 1 AND period_month <= 12)",
                name="ck_charges_period_month_range",
            ),
            sa.UniqueConstraint(
                "client_id",
                "period_year",
                "period_month",
                name="charges_unique_client_period",
            ),
        )
        op.create_index("charges_client_status_idx", "charges", ["client_id", "status"])
        op.create_index("charges_payment_idx", "charges", ["payment_id"])

    if not inspector.has_table("ledger_audit_entries"):
        op.create_table(
            "ledger_audit_entries",
            sa.Column("audit_entry_id", GUID(), primary_key=True, nullable=False),
            sa.Column("client_id", GUID(), nullable=False),
            sa.Column(
                "entity_type",
                _enum("audit_entity_enum", "charge", "payment", "billing_profile"),
                nullable=False,
            ),
            sa.Column("entity_id", GUID(), nullable=False),
            sa.Column(
                "action",
                _enum("audit_action_enum", "created", "updated", "deleted"),
                nullable=False,
            ),
            sa.Column("field_name", sa.String(), nullable=True),
            sa.Column("old_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("actor", sa.String(), nullable=True),
            sa.Column("snapshot", _json(), nullable=True),
            sa.Column(
                "changed_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )
        op.create_index(
            "ix_ledger_audit_entries_client_id", "ledger_audit_entries", ["client_id"]
        )
        op.create_index(
            "ix_ledger_audit_entries_entity_id", "ledger_audit_entries", ["entity_id"]
        )

    if not inspector.has_table("operational_metric_events"):
        op.create_table(
            "operational_metric_events",
            sa.Column("event_id", GUID(), primary_key=True, nullable=False),
            sa.Column("event_type", sa.String(length=120), nullable=False),
            sa.Column("outcome", sa.String(length=32), nullable=False),
            sa.Column("duration_ms", sa.Numeric(14, 3), nullable=True),
            sa.Column("labels", _json(), nullable=False),
            sa.Column("details", _json(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )
        for column in ("event_type", "outcome", "created_at"):
            op.create_index(
                f"ix_operational_metric_events_{column}",
                "operational_metric_events",
                [column],
            )


def downgrade() -> None:
    for table in (
        "operational_metric_events",
        "ledger_audit_entries",
        "charges",
        "payments",
        "charge_catalog_items",
        "billing_profiles",
        "clients",
    ):
        op.drop_table(table)
