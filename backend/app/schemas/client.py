from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from ..models import AllocationPolicy, BillingFrequency, BillingModule, PenaltyMode
from .common import Identifier, PaginatedResponse


class ClientBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    fiscal_year_start_month: int = Field(
        1, ge=1, le=12, description="Calendar month in which the fiscal year starts"
    )

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be blank")
        return stripped


class ClientCreate(ClientBase):
    """Payload to register a property."""


class ClientRead(ClientBase):
    model_config = ConfigDict(from_attributes=True)

    id: Identifier
    created_at: Optional[datetime] = None


class UnitBase(BaseModel):
    unit_code: str = Field(..., min_length=1, max_length=40)
    owner_name: Optional[str] = Field(default=None, max_length=200)
    periodic_charge_cents: StrictInt = Field(
        0, ge=0, description="Amount billed each period, in cents"
    )


class UnitCreate(UnitBase):
    opening_credit_balance_cents: StrictInt = Field(
        0,
        description="Signed opening balance; negative when the unit already owes money",
    )


class UnitRead(UnitBase):
    model_config = ConfigDict(from_attributes=True)

    id: Identifier
    client_id: Identifier
    credit_balance_cents: int
    version: int


class UnitImportError(BaseModel):
    row_number: int
    message: str
    unit_code: Optional[str] = None


class UnitImportRequest(BaseModel):
    content: str = Field(..., description="CSV content with a header row")


class UnitImportSummary(BaseModel):
    total_rows: int = 0
    created_count: int = 0
    failed_count: int = 0
    errors: list[UnitImportError] = Field(default_factory=list)


class BillingConfigUpdate(BaseModel):
    frequency: BillingFrequency = BillingFrequency.MONTHLY
    due_day: int = Field(1, ge=1, le=28)
    penalty_mode: PenaltyMode = PenaltyMode.COMPOUNDING
    penalty_rate: Decimal = Field(
        Decimal("0"), ge=0, le=1, description="Monthly penalty rate (0.05 = 5%)"
    )
    grace_days: int = Field(10, ge=0, le=365)
    allocation_policy: AllocationPolicy = AllocationPolicy.BASE_FIRST
    rate_per_m3_cents: StrictInt = Field(
        0, ge=0, description="Water only: price of one cubic metre, in cents"
    )
    minimum_charge_cents: StrictInt = Field(
        0, ge=0, description="Water only: floor applied to every metered bill"
    )


class BillingConfigRead(BillingConfigUpdate):
    model_config = ConfigDict(from_attributes=True)

    client_id: Identifier
    module: BillingModule


ClientListResponse = PaginatedResponse[ClientRead]
