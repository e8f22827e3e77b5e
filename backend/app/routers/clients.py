"""Router exposing billing profile and account views for a client."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..services import AccountStateService, BillingPeriod, ChargeLedgerService
from .errors import LEDGER_ERRORS, http_error

router = APIRouter()


def _account_state_read(client_id: str, state) -> schemas.AccountStateRead:
    return schemas.AccountStateRead(
        client_id=str(client_id),
        pending_total=state.pending_total,
        display_balance=state.display_balance,
        standing=state.standing,
        has_advance=state.has_advance,
        next_due_date=state.next_due_date,
        covered_until=state.covered_until,
        covered_until_period=state.covered_until_period,
        pending_count=state.pending_count,
        credit_amount=state.credit_amount,
    )


@router.post(
    "/{client_id}/billing",
    response_model=schemas.BillingProfileRead,
    status_code=status.HTTP_201_CREATED,
    summary="Dar de alta la facturación de un cliente",
)
def onboard_client(
    client_id: str,
    payload: schemas.BillingProfileCreate,
    db: Session = Depends(get_db),
) -> schemas.BillingProfileRead:
    try:
        profile = ChargeLedgerService.onboard_client(db, client_id, payload)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return schemas.BillingProfileRead.model_validate(profile)


@router.get("/{client_id}/billing", response_model=schemas.BillingProfileRead)
def get_billing_profile(client_id: str, db: Session = Depends(get_db)) -> schemas.BillingProfileRead:
    try:
        profile = ChargeLedgerService.get_profile(db, client_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.BillingProfileRead.model_validate(profile)


@router.patch("/{client_id}/billing", response_model=schemas.BillingProfileRead)
def update_billing_profile(
    client_id: str,
    payload: schemas.BillingProfileUpdate,
    db: Session = Depends(get_db),
) -> schemas.BillingProfileRead:
    try:
        profile = ChargeLedgerService.update_billing_profile(db, client_id, payload)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return schemas.BillingProfileRead.model_validate(profile)


@router.get("/{client_id}/account-state", response_model=schemas.AccountStateRead)
def get_account_state(
    client_id: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Query(None, description="Fecha de referencia"),
) -> schemas.AccountStateRead:
    try:
        state = AccountStateService.account_state(db, client_id, today=today)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _account_state_read(client_id, state)


@router.get(
    "/{client_id}/periods",
    response_model=schemas.PeriodStatusListResponse,
    summary="Estatus de mensualidades por periodo",
)
def list_period_statuses(
    client_id: str,
    db: Session = Depends(get_db),
    as_of: Optional[date] = Query(None, description="Fecha de referencia"),
    newest_first: bool = Query(True),
) -> schemas.PeriodStatusListResponse:
    try:
        statuses = AccountStateService.period_statuses(
            db, client_id, as_of=as_of, newest_first=newest_first
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    items = [
        schemas.PeriodStatusRead(
            period_key=item.period.key,
            label=item.period.display_name,
            due_date=item.due_date,
            days_until_due=item.days_until_due,
            status=item.status,
            charge_id=item.charge_id,
            amount=item.amount,
            is_advance=item.is_advance,
        )
        for item in statuses
    ]
    return schemas.PeriodStatusListResponse(items=items, total=len(items))


@router.get("/{client_id}/statement", response_model=schemas.StatementRead)
def get_statement(
    client_id: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Query(None, description="Fecha de referencia"),
) -> schemas.StatementRead:
    try:
        statement = AccountStateService.statement(db, client_id, today=today)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.StatementRead(
        client_id=str(statement.client.id),
        client_name=statement.client.full_name,
        generated_on=statement.generated_on,
        profile=schemas.BillingProfileRead.model_validate(statement.profile),
        state=_account_state_read(statement.client.id, statement.state),
        charges=[schemas.ChargeRead.model_validate(charge) for charge in statement.charges],
        payments=[schemas.PaymentRead.model_validate(payment) for payment in statement.payments],
    )


@router.post(
    "/{client_id}/charges/generate",
    response_model=schemas.ChargeGenerationResponse,
    summary="Generar mensualidades faltantes",
)
def generate_client_charges(
    client_id: str,
    payload: schemas.ChargeGenerationRequest,
    db: Session = Depends(get_db),
) -> schemas.ChargeGenerationResponse:
    try:
        if payload.period_key:
            result = ChargeLedgerService.generate_missing_charges(
                db,
                client_id,
                BillingPeriod.from_key(payload.period_key),
                actor=payload.recorded_by,
            )
        else:
            result = ChargeLedgerService.generate_outstanding_charges(
                db, client_id, as_of=payload.as_of, actor=payload.recorded_by
            )
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return schemas.ChargeGenerationResponse(
        created=[schemas.ChargeRead.model_validate(charge) for charge in result.created],
        existing_periods=[period.key for period in result.existing_periods],
    )
