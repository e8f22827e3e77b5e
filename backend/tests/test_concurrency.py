from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.app import models, schemas
from backend.app.database import Base
from backend.app.services import (
    BalanceKeeper,
    ChargeLedgerService,
    ConcurrentUpdateError,
    DataConsistencyService,
    LedgerNotFoundError,
    LedgerUnavailableError,
    LedgerValidationError,
    ledger_transaction,
    lock_billing_profile,
)
from backend.app.services.observability import outcome_for


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessions(file_engine):
    factory = sessionmaker(bind=file_engine, autoflush=False)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()


def _onboard(db):
    client = models.Client(full_name="Cliente Concurrente")
    db.add(client)
    db.commit()
    ChargeLedgerService.onboard_client(
        db,
        client.id,
        schemas.BillingProfileCreate(
            installation_date=date(2026, 1, 10),
            billing_day=10,
            monthly_fee=Decimal("300"),
            installation_cost=Decimal("500"),
        ),
    )
    return client.id


def test_stale_profile_update_is_rejected(sessions):
    db_a, db_b = sessions
    client_id = _onboard(db_a)

    stale = (
        db_b.query(models.BillingProfile)
        .filter(models.BillingProfile.client_id == client_id)
        .one()
    )

    ChargeLedgerService.add_ad_hoc_charge(
        db_a,
        schemas.ChargeCreate(client_id=client_id, amount=Decimal("80"), description="Antena"),
    )

    with pytest.raises(ConcurrentUpdateError) as excinfo:
        with ledger_transaction(db_b, "stale_update", client_id=client_id):
            BalanceKeeper.apply_delta(db_b, stale, Decimal("0"))

    assert excinfo.value.retryable is True
    db_a.expire_all()
    assert Decimal(ChargeLedgerService.get_profile(db_a, client_id).balance) == Decimal("580.00")


def test_retry_after_conflict_sees_committed_state(sessions):
    db_a, db_b = sessions
    client_id = _onboard(db_a)
    stale = (
        db_b.query(models.BillingProfile)
        .filter(models.BillingProfile.client_id == client_id)
        .one()
    )
    ChargeLedgerService.add_ad_hoc_charge(
        db_a,
        schemas.ChargeCreate(client_id=client_id, amount=Decimal("80"), description="Antena"),
    )
    with pytest.raises(ConcurrentUpdateError):
        with ledger_transaction(db_b, "stale_update", client_id=client_id):
            BalanceKeeper.apply_delta(db_b, stale, Decimal("0"))

    with ledger_transaction(db_b, "retry", client_id=client_id):
        profile = lock_billing_profile(db_b, client_id)
        balance = BalanceKeeper.apply_delta(db_b, profile, Decimal("0"))

    assert balance == Decimal("580.00")
    assert DataConsistencyService.check_consistency(db_b).is_consistent


def test_interleaved_sessions_keep_balance_consistent(sessions):
    db_a, db_b = sessions
    client_id = _onboard(db_a)

    ChargeLedgerService.add_ad_hoc_charge(
        db_b,
        schemas.ChargeCreate(client_id=client_id, amount=Decimal("40"), description="Cable"),
    )
    ChargeLedgerService.add_ad_hoc_charge(
        db_a,
        schemas.ChargeCreate(client_id=client_id, amount=Decimal("60"), description="Conector"),
    )

    for db in (db_a, db_b):
        db.expire_all()
        assert Decimal(ChargeLedgerService.get_profile(db, client_id).balance) == Decimal("600.00")
    assert DataConsistencyService.balance_drift(db_a) == []


@pytest.mark.parametrize(
    "exc, expected",
    [
        (None, "success"),
        (ConcurrentUpdateError("otra sesión"), "conflict"),
        (LedgerValidationError("monto"), "rejected"),
        (LedgerNotFoundError("cliente"), "rejected"),
        (LedgerUnavailableError("db"), "error"),
    ],
)
def test_operation_outcomes_are_classified(exc, expected):
    assert outcome_for(exc) == expected
