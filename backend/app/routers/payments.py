"""Router exposing payment related operations."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..models.payment import PaymentMethod
from ..services import PaymentRecordResult, PaymentService
from .errors import LEDGER_ERRORS, http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _with_summary(result: PaymentRecordResult) -> schemas.PaymentWithSummary:
    payment = schemas.PaymentRead.model_validate(result.payment)
    return schemas.PaymentWithSummary(**payment.model_dump(), summary=result.summary)


@router.get("", response_model=schemas.PaymentListResponse)
def list_payments(
    db: Session = Depends(get_db),
    client_id: Optional[str] = Query(None, description="Filtrar por cliente"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    method: Optional[PaymentMethod] = Query(None),
    min_amount: Optional[Decimal] = Query(None, ge=0),
    max_amount: Optional[Decimal] = Query(None, ge=0),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> schemas.PaymentListResponse:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be before or equal to end_date",
        )
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="min_amount cannot be greater than max_amount",
        )
    items, total = PaymentService.list_payments(
        db,
        client_id=client_id,
        start_date=start_date,
        end_date=end_date,
        method=method,
        min_amount=min_amount,
        max_amount=max_amount,
        skip=skip,
        limit=limit,
    )
    return schemas.PaymentListResponse.from_rows(items, total, skip=skip, limit=limit)


@router.post(
    "/preview",
    response_model=schemas.AllocationSummary,
    summary="Simular la aplicación de un pago",
)
def preview_payment(
    payload: schemas.PaymentPreviewRequest, db: Session = Depends(get_db)
) -> schemas.AllocationSummary:
    try:
        return PaymentService.preview_payment(
            db,
            payload.client_id,
            payload.amount,
            paid_on=payload.paid_on,
            charge_ids=payload.charge_ids,
        )
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc


@router.post(
    "",
    response_model=schemas.PaymentWithSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Registrar un pago y aplicarlo a los cargos pendientes",
)
def create_payment(
    payload: schemas.PaymentCreate, db: Session = Depends(get_db)
) -> schemas.PaymentWithSummary:
    try:
        result = PaymentService.apply_payment(db, payload)
    except LEDGER_ERRORS as exc:
        LOGGER.info("Payment rejected: %s", exc, extra={"client_id": payload.client_id})
        raise http_error(exc) from exc
    return _with_summary(result)


@router.get("/{payment_id}", response_model=schemas.PaymentRead)
def get_payment(payment_id: str, db: Session = Depends(get_db)) -> schemas.PaymentRead:
    try:
        payment = PaymentService.get_payment(db, payment_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.PaymentRead.model_validate(payment)


@router.patch("/{payment_id}", response_model=schemas.PaymentWithSummary)
def update_payment(
    payment_id: str, payload: schemas.PaymentUpdate, db: Session = Depends(get_db)
) -> schemas.PaymentWithSummary:
    try:
        result = PaymentService.update_payment(db, payment_id, payload)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return _with_summary(result)


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    actor: Optional[str] = Query(None, description="Usuario que elimina el pago"),
) -> Response:
    try:
        PaymentService.delete_payment(db, payment_id, actor=actor)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
