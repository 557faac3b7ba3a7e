"""Router containing operations for clients, their units and billing rules."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..models import BillingModule
from ..services import (
    AggregationService,
    BillingConfigService,
    BillingError,
    ChangedPeriod,
    ChargeLedger,
    ClientService,
    FiscalPeriodService,
)
from ..services.ledger import MeterReading
from .errors import http_error

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=schemas.ClientListResponse)
def list_clients(
    skip: int = Query(0, ge=0, description="Number of clients to skip"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of clients to return"),
    search: Optional[str] = Query(None, description="Case-insensitive search by client name"),
    db: Session = Depends(get_db),
) -> schemas.ClientListResponse:
    """Return clients with pagination and optional filters."""
    normalized_search = search.strip() if search else None
    items, total = ClientService.list_clients(
        db, skip=skip, limit=limit, search=normalized_search
    )
    return schemas.ClientListResponse(items=items, total=total, limit=limit, skip=skip)


@router.post("", response_model=schemas.ClientRead, status_code=status.HTTP_201_CREATED)
def create_client(
    client_in: schemas.ClientCreate, db: Session = Depends(get_db)
) -> schemas.ClientRead:
    try:
        return ClientService.create_client(db, client_in)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.get("/{client_id}", response_model=schemas.ClientRead)
def get_client(client_id: str, db: Session = Depends(get_db)) -> schemas.ClientRead:
    """Retrieve a single client by its identifier."""
    try:
        return ClientService.get_client(db, client_id)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.get("/{client_id}/units", response_model=list[schemas.UnitRead])
def list_units(client_id: str, db: Session = Depends(get_db)) -> list[schemas.UnitRead]:
    try:
        return ClientService.list_units(db, client_id)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{client_id}/units",
    response_model=schemas.UnitRead,
    status_code=status.HTTP_201_CREATED,
)
def create_unit(
    client_id: str, unit_in: schemas.UnitCreate, db: Session = Depends(get_db)
) -> schemas.UnitRead:
    try:
        return ClientService.create_unit(db, client_id, unit_in)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{client_id}/units/import",
    response_model=schemas.UnitImportSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Import units from CSV",
)
def import_units(
    client_id: str,
    payload: schemas.UnitImportRequest,
    db: Session = Depends(get_db),
) -> schemas.UnitImportSummary:
    try:
        return ClientService.import_units_from_csv(db, client_id, payload.content)
    except BillingError as exc:
        raise http_error(exc) from exc


@router.get("/{client_id}/billing-config/{module}", response_model=schemas.BillingConfigRead)
def get_billing_config(
    client_id: str, module: BillingModule, db: Session = Depends(get_db)
) -> schemas.BillingConfigRead:
    try:
        ClientService.get_client(db, client_id)
    except BillingError as exc:
        raise http_error(exc) from exc
    return BillingConfigService.get_config(db, client_id, module)


@router.put("/{client_id}/billing-config/{module}", response_model=schemas.BillingConfigRead)
def update_billing_config(
    client_id: str,
    module: BillingModule,
    payload: schemas.BillingConfigUpdate,
    db: Session = Depends(get_db),
) -> schemas.BillingConfigRead:
    try:
        return BillingConfigService.upsert_config(db, client_id, module, payload)
    except BillingError as exc:
        raise http_error(exc) from exc


def _generation_response(
    db: Session,
    client_id: str,
    module: BillingModule,
    fiscal_year: int,
    period_index: int,
    created: list[models.Charge],
    skipped: list[str],
) -> schemas.ChargeGenerateResponse:
    changed = [
        ChangedPeriod(
            unit_id=str(charge.unit_id),
            fiscal_year=charge.fiscal_year,
            period_index=charge.period_index,
        )
        for charge in created
    ]
    created_ids = {str(charge.id) for charge in created}
    AggregationService.patch_changed(db, client_id, module, changed)

    charges = ChargeLedger.charges_for_units(
        db, [str(charge.unit_id) for charge in created], module, fiscal_year
    )
    period_key = FiscalPeriodService.period_key(fiscal_year, period_index)
    LOGGER.info(
        "Generated charges",
        extra={
            "client_id": client_id,
            "module": module.value,
            "period_key": period_key,
            "created": len(created_ids),
        },
    )
    return schemas.ChargeGenerateResponse(
        period_key=period_key,
        created=[charge for charge in charges if str(charge.id) in created_ids],
        skipped_unit_ids=skipped,
    )


@router.post(
    "/{client_id}/charges/generate",
    response_model=schemas.ChargeGenerateResponse,
    status_code=status.HTTP_201_CREATED,
)
def generate_charges(
    client_id: str,
    payload: schemas.ChargeGenerateRequest,
    db: Session = Depends(get_db),
) -> schemas.ChargeGenerateResponse:
    """Create one period's charges for every unit of the client."""
    try:
        created, skipped = ChargeLedger.generate_charges(
            db,
            client_id,
            payload.module,
            payload.fiscal_year,
            payload.period_index,
            amounts=payload.amounts,
            due_date=payload.due_date,
        )
        return _generation_response(
            db,
            client_id,
            payload.module,
            payload.fiscal_year,
            payload.period_index,
            created,
            skipped,
        )
    except BillingError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{client_id}/water-bills/generate",
    response_model=schemas.ChargeGenerateResponse,
    status_code=status.HTTP_201_CREATED,
)
def generate_water_bills(
    client_id: str,
    payload: schemas.WaterBillGenerateRequest,
    db: Session = Depends(get_db),
) -> schemas.ChargeGenerateResponse:
    """Bill metered water consumption from the period's meter readings."""
    readings = {
        unit_id: MeterReading(
            current_reading=reading.current_reading,
            prior_reading=reading.prior_reading,
        )
        for unit_id, reading in payload.readings.items()
    }
    try:
        created, skipped = ChargeLedger.generate_water_bills(
            db,
            client_id,
            payload.fiscal_year,
            payload.period_index,
            readings,
            due_date=payload.due_date,
        )
        return _generation_response(
            db,
            client_id,
            BillingModule.WATER,
            payload.fiscal_year,
            payload.period_index,
            created,
            skipped,
        )
    except BillingError as exc:
        raise http_error(exc) from exc
