"""Router exposing payment related operations."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..models import BillingModule
from ..services import BillingError, ChangedPeriod, PaymentService
from ..services.allocation import AllocationPlan
from .errors import http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _changed_periods(periods: Iterable[ChangedPeriod]) -> list[schemas.ChangedPeriodRead]:
    return [
        schemas.ChangedPeriodRead(
            unit_id=period.unit_id,
            fiscal_year=period.fiscal_year,
            period_index=period.period_index,
            period_key=period.period_key,
        )
        for period in periods
    ]


def _plan_payload(plan: AllocationPlan) -> dict:
    return {
        "allocations": [
            schemas.AllocationRead(
                allocation_code=line.allocation_code,
                sequence=line.sequence,
                kind=line.kind,
                amount_cents=line.amount_cents,
                charge_id=line.charge_id,
                period_key=line.period_key,
                category_name=line.category_name,
                label=line.label,
            )
            for line in plan.lines
        ],
        "new_credit_balance_cents": plan.credit_balance_after_cents,
        "credit_delta_cents": plan.credit_delta_cents,
        "changed_periods": _changed_periods(plan.changed_periods),
        "category_label": plan.category_label,
    }


@router.get("", response_model=schemas.PaymentListResponse)
def list_payments(
    db: Session = Depends(get_db),
    unit_id: Optional[str] = Query(None, description="Filter by unit"),
    client_id: Optional[str] = Query(None, description="Filter by client"),
    fiscal_year: Optional[int] = Query(None, ge=2000, le=9999),
    module: Optional[BillingModule] = Query(None),
    reference: Optional[str] = Query(None, description="External reference to look up"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> schemas.PaymentListResponse:
    items, total = PaymentService.list_payments(
        db,
        unit_id=unit_id,
        client_id=client_id,
        fiscal_year=fiscal_year,
        module=module,
        reference=reference,
        skip=skip,
        limit=limit,
    )
    return schemas.PaymentListResponse(items=items, total=total, limit=limit, skip=skip)


@router.post(
    "",
    response_model=schemas.PaymentRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_payment(
    payment_in: schemas.PaymentCreate, db: Session = Depends(get_db)
) -> schemas.PaymentRecordResponse:
    """Record a payment and distribute it over the unit's charges."""
    try:
        result = PaymentService.record_payment(db, payment_in)
    except BillingError as exc:
        raise http_error(exc) from exc

    LOGGER.info(
        "Payment created",
        extra={"unit_id": payment_in.unit_id, "payment_id": str(result.payment.id)},
    )
    return schemas.PaymentRecordResponse(
        transaction_id=result.payment.id,
        payment=schemas.PaymentRead.model_validate(result.payment),
        snapshot_status=result.snapshot.status if result.snapshot is not None else None,
        **_plan_payload(result.plan),
    )


@router.post("/preview", response_model=schemas.PaymentPreviewResponse)
def preview_payment(
    payment_in: schemas.PaymentCreate, db: Session = Depends(get_db)
) -> schemas.PaymentPreviewResponse:
    """Return the allocation a payment would produce without recording it."""
    try:
        plan = PaymentService.preview_payment(db, payment_in)
    except BillingError as exc:
        raise http_error(exc) from exc
    return schemas.PaymentPreviewResponse(**_plan_payload(plan))


@router.get("/{payment_id}", response_model=schemas.PaymentRead)
def get_payment(payment_id: str, db: Session = Depends(get_db)) -> schemas.PaymentRead:
    try:
        return PaymentService.get_payment(db, payment_id)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.get(
    "/{payment_id}/receipt",
    response_class=HTMLResponse,
    summary="Printable payment receipt",
)
def print_receipt(payment_id: str, db: Session = Depends(get_db)):
    try:
        payment = PaymentService.get_payment(db, payment_id)
    except BillingError as exc:
        raise http_error(exc) from exc
    return HTMLResponse(content=PaymentService.build_receipt(payment))


@router.delete("/{payment_id}", response_model=schemas.PaymentReversalResponse)
def delete_payment(
    payment_id: str,
    performed_by: Optional[str] = Query(None, max_length=120),
    db: Session = Depends(get_db),
) -> schemas.PaymentReversalResponse:
    """Reverse a payment's allocations and delete it."""
    try:
        result = PaymentService.delete_payment(db, payment_id, performed_by=performed_by)
    except BillingError as exc:
        raise http_error(exc) from exc

    reversal = result.reversal
    return schemas.PaymentReversalResponse(
        payment_id=reversal.payment_id,
        new_credit_balance_cents=reversal.credit_balance_after_cents,
        credit_delta_cents=reversal.credit_delta_cents,
        changed_periods=_changed_periods(reversal.changed_periods),
        snapshot_status=result.snapshot.status if result.snapshot is not None else None,
    )
