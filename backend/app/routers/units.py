"""Router exposing per-unit ledger views and credit adjustments."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..models import BillingModule
from ..services import BillingError, ChargeLedger
from .errors import http_error

router = APIRouter()


@router.get("/{unit_id}/unpaid-summary", response_model=schemas.UnpaidSummaryResponse)
def unpaid_summary(
    unit_id: str,
    module: Optional[BillingModule] = Query(None, description="Restrict to one module"),
    db: Session = Depends(get_db),
) -> schemas.UnpaidSummaryResponse:
    """Periods that still have money due, oldest first."""
    try:
        unit = ChargeLedger.get_unit(db, unit_id)
        periods = ChargeLedger.unpaid_summary(db, unit_id, module)
    except BillingError as exc:
        raise http_error(exc) from exc

    items = [
        schemas.UnpaidPeriodRead(
            period_key=period.period_key,
            module=period.module,
            fiscal_year=period.fiscal_year,
            period_index=period.period_index,
            due_date=period.due_date,
            total_due_cents=period.total_due_cents,
            status=period.status,
        )
        for period in periods
    ]
    return schemas.UnpaidSummaryResponse(
        unit_id=unit.id,
        credit_balance_cents=unit.credit_balance_cents or 0,
        total_due_cents=sum(item.total_due_cents for item in items),
        items=items,
    )


@router.get("/{unit_id}/charges", response_model=list[schemas.ChargeRead])
def list_charges(
    unit_id: str,
    fiscal_year: Optional[int] = Query(
        None, ge=2000, le=9999, description="Defaults to the client's current fiscal year"
    ),
    period_key: Optional[str] = Query(None, description="Restrict to one period, as YYYY-NN"),
    module: BillingModule = Query(BillingModule.HOA),
    db: Session = Depends(get_db),
) -> list[schemas.ChargeRead]:
    try:
        unit = ChargeLedger.get_unit(db, unit_id)
        year, period_index = ChargeLedger.charge_period(unit, fiscal_year, period_key)
    except BillingError as exc:
        raise http_error(exc) from exc
    return ChargeLedger.get_charges(db, unit_id, year, module, period_index=period_index)


@router.get("/{unit_id}/credit-history", response_model=list[schemas.CreditHistoryEntryRead])
def credit_history(
    unit_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[schemas.CreditHistoryEntryRead]:
    try:
        return ChargeLedger.credit_history(db, unit_id, limit=limit)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{unit_id}/credit-adjustments",
    response_model=schemas.CreditHistoryEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def adjust_credit(
    unit_id: str,
    payload: schemas.CreditAdjustmentCreate,
    db: Session = Depends(get_db),
) -> schemas.CreditHistoryEntryRead:
    """Apply a manual, journaled change to the unit's credit balance."""
    try:
        return ChargeLedger.adjust_credit_balance(
            db,
            unit_id,
            payload.delta_cents,
            note=payload.note,
            recorded_by=payload.recorded_by,
        )
    except BillingError as exc:
        raise http_error(exc) from exc
