from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ChargeViolation(BaseModel):
    charge_id: str
    unit_id: str
    period_key: str
    problem: str = Field(..., description="Which charge invariant does not hold")


class AllocationMismatch(BaseModel):
    payment_id: str
    amount_cents: int = Field(..., description="Amount stored on the payment")
    allocated_cents: int = Field(..., description="Sum of the payment's allocation lines")


class CreditMismatch(BaseModel):
    unit_id: str
    balance_cents: int
    history_balance_cents: Optional[int] = Field(
        None, description="Balance after the unit's latest credit history entry"
    )


class SnapshotDrift(BaseModel):
    client_id: str
    module: str
    fiscal_year: int
    unit_id: str
    period_index: int
    field: str
    snapshot_value: Optional[str] = None
    ledger_value: Optional[str] = None


class LedgerConsistencyReport(BaseModel):
    is_consistent: bool
    charge_violations: list[ChargeViolation]
    allocation_mismatches: list[AllocationMismatch]
    credit_mismatches: list[CreditMismatch]
    snapshot_drift: list[SnapshotDrift]
