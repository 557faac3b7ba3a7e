"""Schemas for charges, unpaid summaries and credit history."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator, model_validator

from ..models import BillingModule, ChargeStatus, CreditSource
from .common import Identifier


class ChargeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Identifier
    unit_id: Identifier
    module: BillingModule
    fiscal_year: int
    period_index: int
    period_key: str
    due_date: date
    base_amount_cents: int
    penalty_amount_cents: int
    base_paid_cents: int
    penalty_paid_cents: int
    paid_amount_cents: int
    total_amount_cents: int
    remaining_cents: int
    status: ChargeStatus
    last_penalty_update: Optional[date] = None
    prior_reading: Optional[int] = None
    current_reading: Optional[int] = None
    consumption: Optional[int] = None
    payment_ids: list[Identifier] = Field(default_factory=list)


class ChargeGenerateRequest(BaseModel):
    module: BillingModule
    fiscal_year: int = Field(..., ge=2000, le=9999)
    period_index: int = Field(..., ge=0, le=11)
    due_date: Optional[date] = None
    amounts: Optional[dict[str, StrictInt]] = Field(
        default=None,
        description="Per-unit base amounts in cents; defaults to each unit's periodic charge",
    )

    @field_validator("amounts")
    @classmethod
    def _non_negative_amounts(cls, value: Optional[dict[str, int]]):
        if value and any(amount < 0 for amount in value.values()):
            raise ValueError("Charge amounts must be non-negative")
        return value


class MeterReadingCreate(BaseModel):
    current_reading: StrictInt = Field(..., ge=0, description="Meter reading in cubic metres")
    prior_reading: Optional[StrictInt] = Field(
        default=None,
        ge=0,
        description="Defaults to the current reading of the unit's previous water bill",
    )

    @model_validator(mode="after")
    def _readings_do_not_go_backwards(self) -> "MeterReadingCreate":
        if self.prior_reading is not None and self.current_reading < self.prior_reading:
            raise ValueError("current_reading must not be lower than prior_reading")
        return self


class WaterBillGenerateRequest(BaseModel):
    fiscal_year: int = Field(..., ge=2000, le=9999)
    period_index: int = Field(..., ge=0, le=11)
    due_date: Optional[date] = None
    readings: dict[str, MeterReadingCreate] = Field(
        ..., min_length=1, description="Meter readings keyed by unit id"
    )


class ChargeGenerateResponse(BaseModel):
    period_key: str
    created: list[ChargeRead]
    skipped_unit_ids: list[Identifier]


class UnpaidPeriodRead(BaseModel):
    period_key: str
    module: BillingModule
    fiscal_year: int
    period_index: int
    due_date: date
    total_due_cents: int
    status: ChargeStatus


class UnpaidSummaryResponse(BaseModel):
    unit_id: Identifier
    credit_balance_cents: int
    total_due_cents: int
    items: list[UnpaidPeriodRead]


class CreditAdjustmentCreate(BaseModel):
    delta_cents: StrictInt = Field(..., description="Signed change applied to the balance")
    note: str = Field(..., min_length=1, max_length=500)
    recorded_by: Optional[str] = Field(default=None, max_length=120)


class CreditHistoryEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Identifier
    unit_id: Identifier
    entry_number: int
    payment_id: Optional[Identifier] = None
    source: CreditSource
    delta_cents: int
    balance_before_cents: int
    balance_after_cents: int
    note: Optional[str] = None
    recorded_by: Optional[str] = None
    created_at: Optional[datetime] = None
