"""Utilities to reconcile charges, payments, credit and snapshots."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, fields
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models
from .aggregation import AggregationService

LOGGER = logging.getLogger(__name__)

_COMPARED_FIELDS = (
    "base_amount_cents",
    "penalty_amount_cents",
    "paid_amount_cents",
    "total_due_cents",
    "past_due_carryover_cents",
    "total_to_clear_cents",
    "status",
)


@dataclass(frozen=True)
class ChargeViolation:
    """A charge whose paid components or status contradict its amounts."""

    charge_id: str
    unit_id: str
    period_key: str
    problem: str


@dataclass(frozen=True)
class AllocationMismatch:
    """A payment whose allocation lines do not add up to its amount."""

    payment_id: str
    amount_cents: int
    allocated_cents: int


@dataclass(frozen=True)
class CreditMismatch:
    """A unit whose balance disagrees with its credit history."""

    unit_id: str
    balance_cents: int
    history_balance_cents: Optional[int]


@dataclass(frozen=True)
class SnapshotDrift:
    """A snapshot entry that differs from what the ledger says now."""

    client_id: str
    module: str
    fiscal_year: int
    unit_id: str
    period_index: int
    field: str
    snapshot_value: Optional[str]
    ledger_value: Optional[str]


@dataclass(frozen=True)
class LedgerConsistencySnapshot:
    charge_violations: list[ChargeViolation]
    allocation_mismatches: list[AllocationMismatch]
    credit_mismatches: list[CreditMismatch]
    snapshot_drift: list[SnapshotDrift]

    @property
    def is_consistent(self) -> bool:
        return not any(getattr(self, item.name) for item in fields(self))


class LedgerConsistencyService:
    """Data reconciliation helpers to surface integrity issues."""

    @staticmethod
    def charge_violations(db: Session) -> list[ChargeViolation]:
        violations: list[ChargeViolation] = []
        for charge in db.query(models.Charge).order_by(
            models.Charge.unit_id, models.Charge.fiscal_year, models.Charge.period_index
        ):
            problems = []
            if not 0 <= (charge.base_paid_cents or 0) <= (charge.base_amount_cents or 0):
                problems.append("base paid outside 0..base amount")
            if not 0 <= (charge.penalty_paid_cents or 0) <= (charge.penalty_amount_cents or 0):
                problems.append("penalty paid outside 0..penalty amount")
            expected = models.charge_status_for(
                charge.paid_amount_cents, charge.total_amount_cents
            )
            if models.ChargeStatus(charge.status) != expected:
                problems.append(f"status {charge.status} should be {expected.value}")
            for problem in problems:
                violations.append(
                    ChargeViolation(
                        charge_id=str(charge.id),
                        unit_id=str(charge.unit_id),
                        period_key=charge.period_key,
                        problem=problem,
                    )
                )
        return violations

    @staticmethod
    def allocation_mismatches(db: Session) -> list[AllocationMismatch]:
        rows = (
            db.query(
                models.Payment.id,
                models.Payment.amount_cents,
                func.coalesce(func.sum(models.PaymentAllocation.amount_cents), 0),
            )
            .outerjoin(
                models.PaymentAllocation,
                models.PaymentAllocation.payment_id == models.Payment.id,
            )
            .group_by(models.Payment.id, models.Payment.amount_cents)
            .all()
        )
        return [
            AllocationMismatch(
                payment_id=str(payment_id),
                amount_cents=int(amount),
                allocated_cents=int(allocated),
            )
            for payment_id, amount, allocated in rows
            if int(amount) != int(allocated)
        ]

    @staticmethod
    def credit_mismatches(db: Session) -> list[CreditMismatch]:
        last_numbers = (
            db.query(
                models.CreditBalanceEntry.unit_id.label("unit_id"),
                func.max(models.CreditBalanceEntry.entry_number).label("entry_number"),
            )
            .group_by(models.CreditBalanceEntry.unit_id)
            .subquery()
        )
        history = {
            str(unit_id): int(balance)
            for unit_id, balance in db.query(
                models.CreditBalanceEntry.unit_id,
                models.CreditBalanceEntry.balance_after_cents,
            ).join(
                last_numbers,
                (models.CreditBalanceEntry.unit_id == last_numbers.c.unit_id)
                & (models.CreditBalanceEntry.entry_number == last_numbers.c.entry_number),
            )
        }

        mismatches: list[CreditMismatch] = []
        for unit_id, balance in db.query(models.Unit.id, models.Unit.credit_balance_cents):
            balance = int(balance or 0)
            expected = history.get(str(unit_id))
            if (expected is None and balance != 0) or (
                expected is not None and expected != balance
            ):
                mismatches.append(
                    CreditMismatch(
                        unit_id=str(unit_id),
                        balance_cents=balance,
                        history_balance_cents=expected,
                    )
                )
        return mismatches

    @staticmethod
    def snapshot_drift(db: Session) -> list[SnapshotDrift]:
        """Compare fresh snapshots against a recomputation from the ledger."""

        drift: list[SnapshotDrift] = []
        snapshots = (
            db.query(models.AggregationSnapshot)
            .filter(models.AggregationSnapshot.status == models.SnapshotStatus.FRESH)
            .all()
        )
        for snapshot in snapshots:
            module = models.BillingModule(snapshot.module)
            units = db.query(models.Unit).filter(models.Unit.client_id == snapshot.client_id).all()
            charges: dict[str, list[models.Charge]] = defaultdict(list)
            for charge in db.query(models.Charge).filter(
                models.Charge.unit_id.in_([unit.id for unit in units]),
                models.Charge.module == module,
                models.Charge.fiscal_year == snapshot.fiscal_year,
            ):
                charges[str(charge.unit_id)].append(charge)

            expected = {
                (figures.unit_id, figures.period_index): figures
                for unit in units
                for figures in AggregationService.compute_unit_entries(
                    unit, charges.get(str(unit.id), [])
                )
            }
            stored = {
                (str(entry.unit_id), entry.period_index): entry for entry in snapshot.entries
            }

            def _record(key, name, snapshot_value, ledger_value) -> None:
                drift.append(
                    SnapshotDrift(
                        client_id=str(snapshot.client_id),
                        module=module.value,
                        fiscal_year=snapshot.fiscal_year,
                        unit_id=key[0],
                        period_index=key[1],
                        field=name,
                        snapshot_value=None if snapshot_value is None else str(snapshot_value),
                        ledger_value=None if ledger_value is None else str(ledger_value),
                    )
                )

            for key in sorted(set(expected) | set(stored)):
                figures = expected.get(key)
                entry = stored.get(key)
                if figures is None:
                    _record(key, "entry", "present", None)
                    continue
                if entry is None:
                    _record(key, "entry", None, "present")
                    continue
                for name in _COMPARED_FIELDS:
                    ledger_value = getattr(figures, name)
                    snapshot_value = getattr(entry, name)
                    if name == "status":
                        ledger_value = models.ChargeStatus(ledger_value).value
                        snapshot_value = models.ChargeStatus(snapshot_value).value
                    if ledger_value != snapshot_value:
                        _record(key, name, snapshot_value, ledger_value)
        return drift

    @classmethod
    def ledger_report(cls, db: Session) -> LedgerConsistencySnapshot:
        report = LedgerConsistencySnapshot(
            charge_violations=cls.charge_violations(db),
            allocation_mismatches=cls.allocation_mismatches(db),
            credit_mismatches=cls.credit_mismatches(db),
            snapshot_drift=cls.snapshot_drift(db),
        )
        if not report.is_consistent:
            LOGGER.warning(
                "Ledger inconsistencies detected",
                extra={
                    "charges": len(report.charge_violations),
                    "allocations": len(report.allocation_mismatches),
                    "credit": len(report.credit_mismatches),
                    "snapshots": len(report.snapshot_drift),
                },
            )
        return report
