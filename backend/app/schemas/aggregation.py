from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import BillingModule, ChargeStatus, SnapshotStatus
from .common import Identifier


class SnapshotEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    unit_id: Identifier
    unit_code: str
    period_index: int
    period_key: str
    due_date: date
    base_amount_cents: int
    penalty_amount_cents: int
    paid_amount_cents: int
    total_due_cents: int
    past_due_carryover_cents: int
    total_to_clear_cents: int
    status: ChargeStatus
    last_payment_id: Optional[Identifier] = None


class SnapshotRead(BaseModel):
    """Cached billing view of one client module and fiscal year."""

    model_config = ConfigDict(from_attributes=True)

    client_id: Identifier
    module: BillingModule
    fiscal_year: int
    status: SnapshotStatus
    stale_reason: Optional[str] = None
    generated_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    entries: list[SnapshotEntryRead] = Field(default_factory=list)
