"""Router exposing charge ledger operations."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..services import ChargeLedgerService
from .errors import LEDGER_ERRORS, http_error

router = APIRouter()


@router.get("", response_model=schemas.ChargeListResponse)
def list_charges(
    db: Session = Depends(get_db),
    client_id: Optional[str] = Query(None, description="Filtrar por cliente"),
    status_filter: Optional[models.ChargeStatus] = Query(None, alias="status"),
    kind: Optional[models.ChargeKind] = Query(None),
    period_key: Optional[str] = Query(None, description="Periodo YYYY-MM"),
    payment_id: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> schemas.ChargeListResponse:
    try:
        items, total = ChargeLedgerService.list_charges(
            db,
            client_id=client_id,
            status=status_filter,
            kind=kind,
            period_key=period_key,
            payment_id=payment_id,
            skip=skip,
            limit=limit,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.ChargeListResponse.from_rows(items, total, skip=skip, limit=limit)


@router.post(
    "",
    response_model=schemas.ChargeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Registrar un cargo adicional",
)
def create_charge(payload: schemas.ChargeCreate, db: Session = Depends(get_db)) -> schemas.ChargeRead:
    try:
        charge = ChargeLedgerService.add_ad_hoc_charge(db, payload)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return schemas.ChargeRead.model_validate(charge)


@router.get("/{charge_id}", response_model=schemas.ChargeRead)
def get_charge(charge_id: str, db: Session = Depends(get_db)) -> schemas.ChargeRead:
    try:
        charge = ChargeLedgerService.get_charge(db, charge_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.ChargeRead.model_validate(charge)


@router.patch("/{charge_id}", response_model=schemas.ChargeRead)
def update_charge(
    charge_id: str, payload: schemas.ChargeUpdate, db: Session = Depends(get_db)
) -> schemas.ChargeRead:
    try:
        charge = ChargeLedgerService.edit_charge(db, charge_id, payload)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return schemas.ChargeRead.model_validate(charge)


@router.delete("/{charge_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_charge(
    charge_id: str,
    db: Session = Depends(get_db),
    actor: Optional[str] = Query(None, description="Usuario que elimina el cargo"),
) -> Response:
    try:
        ChargeLedgerService.delete_charge(db, charge_id, actor=actor)
    except LEDGER_ERRORS as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
