from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, model_validator

from ..models import AllocationKind, BillingModule, PaymentMethod, SnapshotStatus
from .common import Identifier, PaginatedResponse


class PaymentCreate(BaseModel):
    """Payload to record a payment against a unit."""

    unit_id: str = Field(..., description="Unit receiving the payment")
    fiscal_year: int = Field(..., ge=2000, le=9999)
    module: BillingModule = BillingModule.HOA
    amount_cents: StrictInt = Field(..., description="Amount received, in cents")
    paid_on: Optional[date] = Field(
        default=None, description="Date the money was received; defaults to today"
    )
    method: PaymentMethod = PaymentMethod.CASH
    note: Optional[str] = Field(default=None, max_length=2000)
    reference: Optional[str] = Field(
        default=None,
        max_length=120,
        description="External reference, unique per unit, used to detect retries",
    )
    recorded_by: Optional[str] = Field(default=None, max_length=120)
    use_credit: bool = Field(
        default=False,
        description="Consume existing positive credit for what the payment does not cover",
    )

    @model_validator(mode="after")
    def _normalize_reference(self):
        if self.reference is not None:
            self.reference = self.reference.strip() or None
        return self


class AllocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    allocation_code: str
    sequence: int
    kind: AllocationKind
    amount_cents: int
    charge_id: Optional[Identifier] = None
    period_key: Optional[str] = None
    category_name: str
    label: str


class ChangedPeriodRead(BaseModel):
    unit_id: Identifier
    fiscal_year: int
    period_index: int
    period_key: str


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Identifier
    unit_id: Identifier
    client_id: Identifier
    module: BillingModule
    fiscal_year: int
    amount_cents: int
    paid_on: date
    method: PaymentMethod
    note: Optional[str] = None
    reference: Optional[str] = None
    recorded_by: Optional[str] = None
    category_label: str
    credit_balance_before_cents: int
    credit_balance_after_cents: int
    created_at: Optional[datetime] = None
    allocations: list[AllocationRead] = Field(default_factory=list)


class PaymentPreviewResponse(BaseModel):
    allocations: list[AllocationRead]
    new_credit_balance_cents: int
    credit_delta_cents: int
    changed_periods: list[ChangedPeriodRead]
    category_label: str


class PaymentRecordResponse(PaymentPreviewResponse):
    transaction_id: Identifier
    payment: PaymentRead
    snapshot_status: Optional[SnapshotStatus] = None


class PaymentReversalResponse(BaseModel):
    reversed: bool = True
    payment_id: Identifier
    new_credit_balance_cents: int
    credit_delta_cents: int
    changed_periods: list[ChangedPeriodRead]
    snapshot_status: Optional[SnapshotStatus] = None


PaymentListResponse = PaginatedResponse[PaymentRead]
