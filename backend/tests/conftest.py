from __future__ import annotations

import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root (which exposes the ``backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("LEDGER_RUN_MIGRATIONS", "0")

from backend.app import models, schemas  # noqa: E402
from backend.app.database import Base, get_db  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.services import ChargeLedgerService  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def create_client(db_session: Session):
    def _create(full_name: str = "Cliente Demo", **kwargs) -> models.Client:
        client = models.Client(full_name=full_name, location="Centro", **kwargs)
        db_session.add(client)
        db_session.commit()
        return client

    return _create


@pytest.fixture
def onboard(db_session: Session, create_client):
    """Create a client with a billing profile. Defaults leave no initial charges."""

    def _onboard(
        *,
        monthly_fee: str = "300",
        billing_day: int = 10,
        installation_date: date = date(2026, 1, 10),
        installation_cost: str = "0",
        additional_charges: str = "0",
        full_name: str = "Cliente Demo",
    ) -> models.Client:
        client = create_client(full_name)
        ChargeLedgerService.onboard_client(
            db_session,
            client.id,
            schemas.BillingProfileCreate(
                installation_date=installation_date,
                billing_day=billing_day,
                monthly_fee=Decimal(monthly_fee),
                installation_cost=Decimal(installation_cost),
                additional_charges=Decimal(additional_charges),
                recorded_by="tester",
            ),
        )
        return client

    return _onboard


@pytest.fixture
def assert_balance_matches():
    """Check the cached balance equals the sum of pending charges."""

    def _check(db: Session, client_id: str) -> Decimal:
        db.expire_all()
        profile = ChargeLedgerService.get_profile(db, client_id)
        pending = sum(
            (
                Decimal(charge.amount)
                for charge in ChargeLedgerService.charges_for_client(db, client_id)
                if charge.status == models.ChargeStatus.PENDING
            ),
            Decimal("0"),
        )
        assert Decimal(profile.balance) == pending
        return pending

    return _check
