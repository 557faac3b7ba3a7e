"""Router exposing the cached per-fiscal-year billing snapshots."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..models import BillingModule
from ..services import AggregationService, BillingError
from .errors import http_error

router = APIRouter()


def _snapshot_response(snapshot: models.AggregationSnapshot) -> schemas.SnapshotRead:
    return schemas.SnapshotRead(
        client_id=snapshot.client_id,
        module=snapshot.module,
        fiscal_year=snapshot.fiscal_year,
        status=snapshot.status,
        stale_reason=snapshot.stale_reason,
        generated_at=snapshot.generated_at,
        updated_at=snapshot.updated_at,
        entries=[
            schemas.SnapshotEntryRead.model_validate(entry)
            for entry in AggregationService.sorted_entries(snapshot)
        ],
    )


@router.get("/{client_id}/{module}/{fiscal_year}", response_model=schemas.SnapshotRead)
def read_snapshot(
    client_id: str,
    module: BillingModule,
    fiscal_year: int = Path(..., ge=2000, le=9999),
    rebuild_if_stale: Optional[bool] = Query(
        None, description="Rebuild a stale or missing snapshot before returning it"
    ),
    db: Session = Depends(get_db),
) -> schemas.SnapshotRead:
    try:
        snapshot = AggregationService.read_snapshot(
            db, client_id, module, fiscal_year, rebuild_if_stale=rebuild_if_stale
        )
    except BillingError as exc:
        raise http_error(exc) from exc
    return _snapshot_response(snapshot)


@router.post("/{client_id}/{module}/{fiscal_year}/rebuild", response_model=schemas.SnapshotRead)
def rebuild_snapshot(
    client_id: str,
    module: BillingModule,
    fiscal_year: int = Path(..., ge=2000, le=9999),
    as_of: Optional[date] = Query(None, description="Date penalties are accrued to"),
    db: Session = Depends(get_db),
) -> schemas.SnapshotRead:
    """Recompute the whole snapshot from the ledger."""
    try:
        snapshot = AggregationService.rebuild_all(db, client_id, module, fiscal_year, as_of=as_of)
    except BillingError as exc:
        raise http_error(exc) from exc
    return _snapshot_response(snapshot)
