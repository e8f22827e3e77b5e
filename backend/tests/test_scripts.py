from contextlib import contextmanager
from decimal import Decimal

import pytest

from backend.app import models
from backend.app.scripts import generate_monthly_charges, reconcile_balances
from backend.app.services import ChargeLedgerService, DataConsistencyService


@pytest.fixture
def script_session(db_session, monkeypatch):
    @contextmanager
    def _scope():
        yield db_session

    for module in (generate_monthly_charges, reconcile_balances):
        monkeypatch.setattr(module, "session_scope", _scope)
    return db_session


def test_generate_monthly_charges_is_idempotent(script_session, onboard):
    customer = onboard(monthly_fee="300")

    assert generate_monthly_charges.main(["--period", "2026-02", "--actor", "cron"]) == 0
    assert generate_monthly_charges.main(["--period", "2026-02"]) == 0

    charges = ChargeLedgerService.charges_for_client(script_session, customer.id)
    assert [charge.period_key for charge in charges] == ["2026-02"]
    assert charges[0].created_by == "cron"


def test_generate_monthly_charges_rejects_bad_period(script_session):
    assert generate_monthly_charges.main(["--period", "02-2026"]) == 2


def test_reconcile_balances_reports_and_repairs_drift(script_session, onboard):
    customer = onboard(monthly_fee="300", installation_cost="150")
    script_session.query(models.BillingProfile).filter(
        models.BillingProfile.client_id == customer.id
    ).update({"balance": Decimal("10.00")}, synchronize_session=False)
    script_session.commit()

    assert reconcile_balances.main([]) == 1
    assert reconcile_balances.main(["--repair"]) == 0

    script_session.expire_all()
    assert DataConsistencyService.balance_drift(script_session) == []
    assert Decimal(ChargeLedgerService.get_profile(script_session, customer.id).balance) == Decimal(
        "150.00"
    )
    assert reconcile_balances.main([]) == 0
