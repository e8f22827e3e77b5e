from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.app import models, schemas
from backend.app.services import (
    BillingPeriod,
    ChargeLedgerService,
    LedgerConsistencyError,
    LedgerNotFoundError,
    LedgerValidationError,
    PaymentService,
)


def _charges(db, client_id, kind=None):
    db.expire_all()
    items = ChargeLedgerService.charges_for_client(db, client_id)
    if kind is not None:
        items = [charge for charge in items if charge.kind == kind]
    return items


def _audit_entries(db, entity_id):
    return (
        db.query(models.LedgerAuditEntry)
        .filter(models.LedgerAuditEntry.entity_id == str(entity_id))
        .all()
    )


def test_onboarding_creates_initial_charges_and_balance(
    db_session, create_client, assert_balance_matches
):
    client = create_client()

    profile = ChargeLedgerService.onboard_client(
        db_session,
        client.id,
        schemas.BillingProfileCreate(
            installation_date=date(2026, 4, 15),
            billing_day=10,
            monthly_fee=Decimal("500"),
            installation_cost=Decimal("200"),
            additional_charges=Decimal("50"),
            additional_charges_notes="Router adicional",
        ),
    )

    assert profile.first_billing_date == date(2026, 5, 10)
    assert Decimal(profile.prorated_amount) == Decimal("416.67")
    assert Decimal(profile.balance) == Decimal("666.67")

    descriptions = {charge.description: Decimal(charge.amount) for charge in _charges(db_session, client.id)}
    assert descriptions == {
        "Costo de instalación": Decimal("200.00"),
        "Prorrateo inicial": Decimal("416.67"),
        "Router adicional": Decimal("50.00"),
    }
    assert_balance_matches(db_session, client.id)


def test_onboarding_on_billing_day_creates_no_proration_charge(db_session, onboard):
    client = onboard(installation_date=date(2026, 1, 10), installation_cost="0")

    assert _charges(db_session, client.id) == []
    assert Decimal(ChargeLedgerService.get_profile(db_session, client.id).balance) == Decimal("0")


def test_onboarding_uses_default_billing_day(db_session, create_client, monkeypatch):
    monkeypatch.setenv("DEFAULT_BILLING_DAY", "5")
    client = create_client()

    profile = ChargeLedgerService.onboard_client(
        db_session,
        client.id,
        schemas.BillingProfileCreate(installation_date=date(2026, 4, 5), monthly_fee=Decimal("300")),
    )

    assert profile.billing_day == 5
    assert profile.first_billing_date == date(2026, 4, 5)


def test_onboarding_twice_is_rejected(db_session, onboard):
    client = onboard()

    with pytest.raises(LedgerConsistencyError):
        ChargeLedgerService.onboard_client(
            db_session,
            client.id,
            schemas.BillingProfileCreate(installation_date=date(2026, 1, 10), monthly_fee=Decimal("300")),
        )


def test_onboarding_unknown_client_is_not_found(db_session):
    with pytest.raises(LedgerNotFoundError):
        ChargeLedgerService.onboard_client(
            db_session,
            "00000000-0000-0000-0000-000000000000",
            schemas.BillingProfileCreate(installation_date=date(2026, 1, 10), monthly_fee=Decimal("300")),
        )


def test_generate_missing_charges_is_idempotent(db_session, onboard, assert_balance_matches):
    client = onboard(monthly_fee="300")
    period = BillingPeriod(2026, 2)

    first = ChargeLedgerService.generate_missing_charges(db_session, client.id, period)
    second = ChargeLedgerService.generate_missing_charges(db_session, client.id, period)

    assert len(first.created) == 1
    assert second.created == []
    assert second.existing_periods == [period]

    recurring = _charges(db_session, client.id, models.ChargeKind.RECURRING)
    assert len(recurring) == 1
    assert recurring[0].description == "Mensualidad 2/2026"
    assert recurring[0].period_key == "2026-02"
    assert recurring[0].due_date == date(2026, 2, 10)
    assert assert_balance_matches(db_session, client.id) == Decimal("300.00")


def test_generating_before_billing_start_is_rejected(db_session, onboard):
    client = onboard(installation_date=date(2026, 3, 10))

    with pytest.raises(LedgerValidationError):
        ChargeLedgerService.generate_missing_charges(db_session, client.id, BillingPeriod(2026, 2))

    assert _charges(db_session, client.id) == []
    assert Decimal(ChargeLedgerService.get_profile(db_session, client.id).balance) == Decimal("0")


def test_generate_outstanding_charges_fills_every_gap(db_session, onboard, assert_balance_matches):
    client = onboard(monthly_fee="250")
    ChargeLedgerService.generate_missing_charges(db_session, client.id, BillingPeriod(2026, 2))

    result = ChargeLedgerService.generate_outstanding_charges(
        db_session, client.id, as_of=date(2026, 4, 20)
    )

    assert [charge.period_key for charge in result.created] == ["2026-01", "2026-03", "2026-04"]
    assert [period.key for period in result.existing_periods] == ["2026-02"]
    assert assert_balance_matches(db_session, client.id) == Decimal("1000.00")


def test_batch_generation_reports_each_client(db_session, onboard):
    early = onboard(full_name="Cliente Enero", installation_date=date(2026, 1, 10))
    late = onboard(full_name="Cliente Junio", installation_date=date(2026, 6, 10))

    report = ChargeLedgerService.generate_charges_for_period(db_session, BillingPeriod(2026, 3))

    assert report.created == [early.id]
    assert report.skipped == [late.id]
    assert report.failed == {}

    rerun = ChargeLedgerService.generate_charges_for_period(db_session, BillingPeriod(2026, 3))
    assert rerun.created == []
    assert sorted(rerun.skipped) == sorted([early.id, late.id])
    assert len(_charges(db_session, early.id, models.ChargeKind.RECURRING)) == 1


def test_batch_generation_isolates_failing_clients(db_session, onboard, monkeypatch):
    first = onboard(full_name="Cliente Uno")
    second = onboard(full_name="Cliente Dos")
    original = ChargeLedgerService.create_charge

    def flaky_create(db, **kwargs):
        if kwargs["client_id"] == first.id:
            raise LedgerValidationError("monto inválido")
        return original(db, **kwargs)

    monkeypatch.setattr(ChargeLedgerService, "create_charge", staticmethod(flaky_create))

    report = ChargeLedgerService.generate_charges_for_period(db_session, BillingPeriod(2026, 2))

    assert report.failed == {first.id: "monto inválido"}
    assert report.created == [second.id]
    assert _charges(db_session, first.id) == []
    assert Decimal(ChargeLedgerService.get_profile(db_session, first.id).balance) == Decimal("0")


def test_ad_hoc_charge_from_catalog_uses_default_amount(db_session, onboard, assert_balance_matches):
    client = onboard()
    item = models.ChargeCatalogItem(name="Reconexión", default_amount=Decimal("150"))
    db_session.add(item)
    db_session.commit()

    charge = ChargeLedgerService.add_ad_hoc_charge(
        db_session,
        schemas.ChargeCreate(client_id=client.id, catalog_item_id=item.id, recorded_by="caja"),
    )

    assert charge.description == "Reconexión"
    assert Decimal(charge.amount) == Decimal("150.00")
    assert charge.kind == models.ChargeKind.AD_HOC
    assert charge.period_key is None
    assert assert_balance_matches(db_session, client.id) == Decimal("150.00")
    assert [entry.action for entry in _audit_entries(db_session, charge.id)] == [
        models.AuditAction.CREATED
    ]


def test_inactive_catalog_item_is_rejected(db_session, onboard):
    client = onboard()
    item = models.ChargeCatalogItem(name="Antena", default_amount=Decimal("900"), is_active=False)
    db_session.add(item)
    db_session.commit()

    with pytest.raises(LedgerValidationError):
        ChargeLedgerService.add_ad_hoc_charge(
            db_session, schemas.ChargeCreate(client_id=client.id, catalog_item_id=item.id)
        )


def test_editing_pending_charge_adjusts_balance(db_session, onboard, assert_balance_matches):
    client = onboard()
    charge = ChargeLedgerService.add_ad_hoc_charge(
        db_session,
        schemas.ChargeCreate(client_id=client.id, amount=Decimal("100"), description="Visita técnica"),
    )

    ChargeLedgerService.edit_charge(
        db_session,
        charge.id,
        schemas.ChargeUpdate(amount=Decimal("80"), description="Visita técnica (descuento)", recorded_by="ana"),
    )

    assert assert_balance_matches(db_session, client.id) == Decimal("80.00")
    updates = {
        entry.field_name: (entry.old_value, entry.new_value, entry.actor)
        for entry in _audit_entries(db_session, charge.id)
        if entry.action == models.AuditAction.UPDATED
    }
    assert updates["amount"] == ("100.00", "80.00", "ana")
    assert updates["description"][1] == "Visita técnica (descuento)"


def test_editing_paid_charge_amount_is_rejected(db_session, onboard):
    client = onboard()
    ChargeLedgerService.generate_missing_charges(db_session, client.id, BillingPeriod(2026, 1))
    PaymentService.apply_payment(
        db_session, schemas.PaymentCreate(client_id=client.id, amount=Decimal("300"), paid_on=date(2026, 1, 5))
    )
    charge = _charges(db_session, client.id)[0]

    with pytest.raises(LedgerConsistencyError):
        ChargeLedgerService.edit_charge(db_session, charge.id, schemas.ChargeUpdate(amount=Decimal("250")))

    db_session.expire_all()
    assert Decimal(ChargeLedgerService.get_charge(db_session, charge.id).amount) == Decimal("300.00")


def test_deleting_pending_charge_reduces_balance_and_is_audited(
    db_session, onboard, assert_balance_matches
):
    client = onboard()
    ChargeLedgerService.generate_missing_charges(db_session, client.id, BillingPeriod(2026, 1))
    charge = _charges(db_session, client.id)[0]

    ChargeLedgerService.delete_charge(db_session, charge.id, actor="ana")

    assert assert_balance_matches(db_session, client.id) == Decimal("0")
    deleted = [
        entry for entry in _audit_entries(db_session, charge.id)
        if entry.action == models.AuditAction.DELETED
    ]
    assert len(deleted) == 1
    assert deleted[0].old_value == "300.00"
    assert deleted[0].snapshot["status"] == "pending"
    assert deleted[0].actor == "ana"


def test_deleting_paid_charge_keeps_balance_and_frees_payment_amount(
    db_session, onboard, assert_balance_matches
):
    client = onboard()
    ChargeLedgerService.generate_outstanding_charges(db_session, client.id, as_of=date(2026, 2, 1))
    result = PaymentService.apply_payment(
        db_session, schemas.PaymentCreate(client_id=client.id, amount=Decimal("300"), paid_on=date(2026, 2, 1))
    )
    paid = [c for c in _charges(db_session, client.id) if c.status == models.ChargeStatus.PAID][0]

    ChargeLedgerService.delete_charge(db_session, paid.id)

    assert assert_balance_matches(db_session, client.id) == Decimal("300.00")
    payment = PaymentService.get_payment(db_session, result.payment.id)
    assert Decimal(payment.unapplied_amount) == Decimal("300.00")
    assert payment.charge_ids == []


def test_missing_charge_is_not_found(db_session):
    with pytest.raises(LedgerNotFoundError):
        ChargeLedgerService.delete_charge(db_session, "00000000-0000-0000-0000-000000000000")


def test_billing_profile_update_applies_to_future_charges_only(db_session, onboard):
    client = onboard(monthly_fee="300", billing_day=10)
    ChargeLedgerService.generate_missing_charges(db_session, client.id, BillingPeriod(2026, 1))

    profile = ChargeLedgerService.update_billing_profile(
        db_session,
        client.id,
        schemas.BillingProfileUpdate(billing_day=20, monthly_fee=Decimal("350"), recorded_by="ana"),
    )
    ChargeLedgerService.generate_missing_charges(db_session, client.id, BillingPeriod(2026, 2))

    assert profile.billing_day == 20
    january, february = sorted(
        _charges(db_session, client.id), key=lambda charge: charge.period_key
    )
    assert (january.due_date, Decimal(january.amount)) == (date(2026, 1, 10), Decimal("300.00"))
    assert (february.due_date, Decimal(february.amount)) == (date(2026, 2, 20), Decimal("350.00"))
    fields = {entry.field_name for entry in _audit_entries(db_session, profile.id)}
    assert {"billing_day", "monthly_fee"} <= fields


def test_list_charges_filters_by_status_and_period(db_session, onboard):
    client = onboard()
    ChargeLedgerService.generate_outstanding_charges(db_session, client.id, as_of=date(2026, 3, 1))

    items, total = ChargeLedgerService.list_charges(db_session, client_id=client.id, period_key="2026-02")
    assert total == 1
    assert [charge.period_key for charge in items] == ["2026-02"]

    items, total = ChargeLedgerService.list_charges(
        db_session, client_id=client.id, status=models.ChargeStatus.PENDING
    )
    assert total == 3
    assert [charge.period_key for charge in items] == ["2026-03", "2026-02", "2026-01"]
