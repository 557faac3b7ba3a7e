"""Router exposing ledger reconciliation reports."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..services import LedgerConsistencyService

router = APIRouter()


@router.get("/ledger", response_model=schemas.LedgerConsistencyReport)
def ledger_report(db: Session = Depends(get_db)) -> schemas.LedgerConsistencyReport:
    """Report charges, payments, credit balances and snapshots that disagree."""
    report = LedgerConsistencyService.ledger_report(db)
    return schemas.LedgerConsistencyReport(is_consistent=report.is_consistent, **asdict(report))
