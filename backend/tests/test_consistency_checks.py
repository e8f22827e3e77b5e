from datetime import date
from decimal import Decimal

from sqlalchemy import text

from backend.app import models, schemas
from backend.app.services import (
    BillingPeriod,
    ChargeLedgerService,
    DataConsistencyService,
    PaymentService,
)


def _pay(db, client_id, amount):
    return PaymentService.apply_payment(
        db,
        schemas.PaymentCreate(client_id=client_id, amount=Decimal(amount), paid_on=date(2026, 2, 1)),
    )


def test_consistency_endpoint_reports_clean_state(client, db_session, onboard):
    customer = onboard(monthly_fee="300")
    ChargeLedgerService.generate_outstanding_charges(db_session, customer.id, as_of=date(2026, 2, 1))
    _pay(db_session, customer.id, "450")

    response = client.get("/billing/consistency")

    assert response.status_code == 200
    data = response.json()
    assert data["is_consistent"] is True
    assert data["balance_drift"] == []
    assert data["charge_status_mismatches"] == []
    assert data["payment_allocation_mismatches"] == []
    assert data["duplicate_periods"] == []


def test_balance_drift_is_detected_and_reconciled(client, db_session, onboard):
    customer = onboard(monthly_fee="300")
    ChargeLedgerService.generate_missing_charges(db_session, customer.id, BillingPeriod(2026, 1))
    db_session.query(models.BillingProfile).filter(
        models.BillingProfile.client_id == customer.id
    ).update({"balance": Decimal("999.00")}, synchronize_session=False)
    db_session.commit()

    snapshot = DataConsistencyService.check_consistency(db_session)

    assert not snapshot.is_consistent
    assert len(snapshot.balance_drift) == 1
    drift = snapshot.balance_drift[0]
    assert drift.client_id == customer.id
    assert drift.cached_balance == Decimal("999.00")
    assert drift.pending_total == Decimal("300.00")

    response = client.post(f"/billing/balances/{customer.id}/reconcile")

    assert response.status_code == 200
    assert Decimal(response.json()["balance"]) == Decimal("300.00")
    db_session.expire_all()
    assert DataConsistencyService.check_consistency(db_session).is_consistent


def test_reconcile_is_a_no_op_for_consistent_accounts(db_session, onboard):
    customer = onboard(monthly_fee="300")
    ChargeLedgerService.generate_missing_charges(db_session, customer.id, BillingPeriod(2026, 1))

    balance = DataConsistencyService.reconcile_balance(db_session, customer.id)

    assert balance == Decimal("300.00")
    assert DataConsistencyService.balance_drift(db_session) == []


def test_reconcile_unknown_client_returns_404(client):
    response = client.post("/billing/balances/missing/reconcile")

    assert response.status_code == 404


def test_status_and_allocation_mismatches_are_reported(client, db_session, onboard):
    customer = onboard(monthly_fee="300")
    ChargeLedgerService.generate_missing_charges(db_session, customer.id, BillingPeriod(2026, 1))
    paid = _pay(db_session, customer.id, "300")
    partial = _pay(db_session, customer.id, "120")

    january = ChargeLedgerService.charges_for_client(db_session, customer.id)[0]
    # rows written before the status check constraint existed
    db_session.execute(text("PRAGMA ignore_check_constraints = ON"))
    db_session.query(models.Charge).filter(models.Charge.id == january.id).update(
        {"payment_id": None}, synchronize_session=False
    )
    db_session.query(models.Payment).filter(models.Payment.id == partial.payment.id).update(
        {"unapplied_amount": Decimal("20.00")}, synchronize_session=False
    )
    db_session.commit()
    db_session.execute(text("PRAGMA ignore_check_constraints = OFF"))

    response = client.get("/billing/consistency")

    assert response.status_code == 200
    data = response.json()
    assert data["is_consistent"] is False
    assert data["balance_drift"] == []
    assert [item["charge_id"] for item in data["charge_status_mismatches"]] == [january.id]
    assert data["charge_status_mismatches"][0]["status"] == "paid"
    mismatched = {item["payment_id"]: item for item in data["payment_allocation_mismatches"]}
    assert set(mismatched) == {paid.payment.id, partial.payment.id}
    assert Decimal(mismatched[paid.payment.id]["allocated"]) == Decimal("0")
    assert Decimal(mismatched[partial.payment.id]["unapplied_amount"]) == Decimal("20.00")
