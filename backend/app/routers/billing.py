"""Router exposing ledger-wide billing operations."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..services import BillingPeriod, ChargeLedgerService, DataConsistencyService
from .errors import LEDGER_ERRORS, http_error

router = APIRouter()


@router.get(
    "/proration",
    response_model=schemas.ProrationRead,
    summary="Calcular el prorrateo de la primera factura",
)
def calculate_proration(
    installation_date: date = Query(..., description="Fecha de instalación"),
    billing_day: int = Query(..., ge=1, le=28, description="Día de corte"),
    monthly_fee: Decimal = Query(..., ge=0, description="Mensualidad"),
    installation_cost: Decimal = Query(Decimal("0"), ge=0),
    additional_charges: Decimal = Query(Decimal("0"), ge=0),
) -> schemas.ProrationRead:
    try:
        return ChargeLedgerService.preview_proration(
            installation_date,
            billing_day,
            monthly_fee,
            installation_cost,
            additional_charges,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post(
    "/charges/generate",
    response_model=schemas.BatchGenerationResponse,
    summary="Generar la mensualidad del periodo para todos los clientes",
)
def generate_period_charges(
    payload: schemas.BatchGenerationRequest, db: Session = Depends(get_db)
) -> schemas.BatchGenerationResponse:
    try:
        period = BillingPeriod.from_key(payload.period_key) if payload.period_key else None
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    report = ChargeLedgerService.generate_charges_for_period(
        db, period, actor=payload.recorded_by
    )
    return schemas.BatchGenerationResponse(
        period_key=report.period.key,
        created=report.created,
        skipped=report.skipped,
        failed=report.failed,
    )


@router.get("/consistency", response_model=schemas.ConsistencyReportRead)
def check_consistency(db: Session = Depends(get_db)) -> schemas.ConsistencyReportRead:
    snapshot = DataConsistencyService.check_consistency(db)
    return schemas.ConsistencyReportRead(
        balance_drift=[schemas.BalanceDriftRead(**asdict(item)) for item in snapshot.balance_drift],
        charge_status_mismatches=[
            schemas.ChargeStatusMismatchRead(**asdict(item))
            for item in snapshot.charge_status_mismatches
        ],
        payment_allocation_mismatches=[
            schemas.PaymentAllocationMismatchRead(**asdict(item))
            for item in snapshot.payment_allocation_mismatches
        ],
        duplicate_periods=snapshot.duplicate_periods,
        is_consistent=snapshot.is_consistent,
    )


@router.post(
    "/balances/{client_id}/reconcile",
    response_model=schemas.BillingProfileRead,
    summary="Recalcular el saldo de un cliente a partir de sus cargos pendientes",
)
def reconcile_balance(client_id: str, db: Session = Depends(get_db)) -> schemas.BillingProfileRead:
    try:
        DataConsistencyService.reconcile_balance(db, client_id)
        profile = ChargeLedgerService.get_profile(db, client_id)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return schemas.BillingProfileRead.model_validate(profile)
