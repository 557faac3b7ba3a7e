"""Pure calculation of how a payment is distributed over a unit's charges."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .. import models
from ..money import Cents, ensure_cents
from .errors import InvalidAmount, ValidationError

SPLIT_CATEGORY_LABEL = "-Split-"


@dataclass(frozen=True)
class ChargeState:
    """Read-only view of a charge as seen by the allocator."""

    charge_id: Optional[str]
    unit_id: str
    fiscal_year: int
    period_index: int
    period_key: str
    base_amount_cents: int
    penalty_amount_cents: int
    base_paid_cents: int = 0
    penalty_paid_cents: int = 0

    @classmethod
    def from_charge(cls, charge: models.Charge) -> "ChargeState":
        return cls(
            charge_id=str(charge.id) if charge.id is not None else None,
            unit_id=str(charge.unit_id),
            fiscal_year=charge.fiscal_year,
            period_index=charge.period_index,
            period_key=charge.period_key,
            base_amount_cents=charge.base_amount_cents or 0,
            penalty_amount_cents=charge.penalty_amount_cents or 0,
            base_paid_cents=charge.base_paid_cents or 0,
            penalty_paid_cents=charge.penalty_paid_cents or 0,
        )

    @property
    def base_remaining_cents(self) -> int:
        return max(self.base_amount_cents - self.base_paid_cents, 0)

    @property
    def penalty_remaining_cents(self) -> int:
        return max(self.penalty_amount_cents - self.penalty_paid_cents, 0)

    @property
    def remaining_cents(self) -> int:
        return self.base_remaining_cents + self.penalty_remaining_cents


@dataclass(frozen=True)
class AllocationLine:
    sequence: int
    kind: models.AllocationKind
    amount_cents: Cents
    category_name: str
    label: str
    charge_id: Optional[str] = None
    period_key: Optional[str] = None

    @property
    def allocation_code(self) -> str:
        return f"alloc_{self.sequence:03d}"


@dataclass(frozen=True)
class ChangedPeriod:
    unit_id: str
    fiscal_year: int
    period_index: int

    @property
    def period_key(self) -> str:
        return f"{self.fiscal_year:04d}-{self.period_index:02d}"


@dataclass(frozen=True)
class AllocationPlan:
    amount_cents: Cents
    lines: tuple[AllocationLine, ...]
    credit_balance_before_cents: Cents
    credit_balance_after_cents: Cents
    changed_periods: tuple[ChangedPeriod, ...]
    category_label: str

    @property
    def credit_delta_cents(self) -> Cents:
        return Cents(self.credit_balance_after_cents - self.credit_balance_before_cents)


class PaymentAllocator:
    """Split a payment across credit repair, charges and new credit.

    The order is fixed: a negative credit balance is repaired first, then
    outstanding charges are paid oldest first, then whatever is left becomes
    credit. When ``use_credit`` is set, existing positive credit covers what
    the payment alone cannot, after the payment itself is spent.
    """

    @staticmethod
    def split_component(
        charge: ChargeState, pay: int, policy: models.AllocationPolicy
    ) -> tuple[int, int]:
        """Return ``(base, penalty)`` parts of ``pay`` for one charge."""

        base_remaining = charge.base_remaining_cents
        penalty_remaining = charge.penalty_remaining_cents
        if policy == models.AllocationPolicy.PENALTY_FIRST:
            penalty = min(pay, penalty_remaining)
            return pay - penalty, penalty
        if policy == models.AllocationPolicy.PROPORTIONAL:
            total = base_remaining + penalty_remaining
            if total <= 0:
                return 0, 0
            # Integer floor on the base; the remainder cent goes to the penalty.
            base = pay * base_remaining // total
            return base, pay - base
        base = min(pay, base_remaining)
        return base, pay - base

    @classmethod
    def allocate(
        cls,
        amount: int,
        credit_balance: int,
        charges: Sequence[ChargeState],
        *,
        module: models.BillingModule,
        unit_id: str,
        unit_label: Optional[str] = None,
        policy: models.AllocationPolicy = models.AllocationPolicy.BASE_FIRST,
        use_credit: bool = False,
    ) -> AllocationPlan:
        try:
            amount_cents = ensure_cents(amount)
            balance_before = ensure_cents(credit_balance)
        except TypeError as exc:
            raise InvalidAmount(str(exc)) from exc
        if amount_cents <= 0:
            raise InvalidAmount(f"Payment amount must be greater than zero, got {amount_cents}")

        base_category, penalty_category = models.MODULE_CATEGORY_NAMES[module]
        unit_suffix = f" - Unit {unit_label or unit_id}"
        credit_label = f"{models.CREDIT_CATEGORY_NAME}{unit_suffix}"

        lines: list[AllocationLine] = []
        changed: list[ChangedPeriod] = []

        def _emit(kind, cents, category, label, charge: Optional[ChargeState] = None) -> None:
            lines.append(
                AllocationLine(
                    sequence=len(lines) + 1,
                    kind=kind,
                    amount_cents=Cents(cents),
                    category_name=category,
                    label=label,
                    charge_id=charge.charge_id if charge else None,
                    period_key=charge.period_key if charge else None,
                )
            )

        payment_left = int(amount_cents)
        balance = int(balance_before)

        if balance < 0:
            repair = min(payment_left, -balance)
            _emit(models.AllocationKind.CREDIT_REPAIR, repair, models.CREDIT_CATEGORY_NAME, credit_label)
            payment_left -= repair
            balance += repair

        credit_available = balance if use_credit and balance > 0 else 0
        credit_used = 0

        ordered = sorted(charges, key=lambda item: (item.fiscal_year, item.period_index))
        for charge in ordered:
            remaining = charge.remaining_cents
            if remaining <= 0:
                continue
            funds = payment_left + credit_available - credit_used
            if funds <= 0:
                break

            pay = min(remaining, funds)
            from_payment = min(pay, payment_left)
            payment_left -= from_payment
            credit_used += pay - from_payment

            base_part, penalty_part = cls.split_component(charge, pay, policy)
            parts = [
                (models.AllocationKind.BASE_CHARGE, base_part, base_category, f"{charge.period_key}{unit_suffix}"),
                (
                    models.AllocationKind.PENALTY,
                    penalty_part,
                    penalty_category,
                    f"{charge.period_key} Penalties{unit_suffix}",
                ),
            ]
            if policy == models.AllocationPolicy.PENALTY_FIRST:
                parts.reverse()
            for kind, cents, category, label in parts:
                if cents > 0:
                    _emit(kind, cents, category, label, charge)

            changed.append(
                ChangedPeriod(
                    unit_id=charge.unit_id,
                    fiscal_year=charge.fiscal_year,
                    period_index=charge.period_index,
                )
            )
            if pay < remaining:
                break

        if credit_used:
            _emit(models.AllocationKind.CREDIT_APPLIED, -credit_used, models.CREDIT_CATEGORY_NAME, credit_label)
            balance -= credit_used
        if payment_left > 0:
            _emit(models.AllocationKind.CREDIT_CREATED, payment_left, models.CREDIT_CATEGORY_NAME, credit_label)
            balance += payment_left

        plan = AllocationPlan(
            amount_cents=amount_cents,
            lines=tuple(lines),
            credit_balance_before_cents=balance_before,
            credit_balance_after_cents=Cents(balance),
            changed_periods=tuple(changed),
            category_label=cls.category_label(lines),
        )
        cls.validate_allocations(plan.lines, amount_cents)
        return plan

    @staticmethod
    def category_label(lines: Sequence[AllocationLine]) -> str:
        if len(lines) > 1:
            return SPLIT_CATEGORY_LABEL
        if lines:
            return lines[0].category_name
        return models.CREDIT_CATEGORY_NAME

    @staticmethod
    def validate_allocations(lines: Sequence[AllocationLine], amount: int) -> None:
        """Check that lines are well formed and sum exactly to ``amount``."""

        total = 0
        for line in lines:
            if line.amount_cents == 0:
                raise ValidationError(f"Allocation {line.allocation_code} has a zero amount")
            negative_expected = line.kind == models.AllocationKind.CREDIT_APPLIED
            if (line.amount_cents < 0) != negative_expected:
                raise ValidationError(
                    f"Allocation {line.allocation_code} has the wrong sign for {line.kind.value}"
                )
            if line.kind.targets_charge and not line.period_key:
                raise ValidationError(f"Allocation {line.allocation_code} is missing its period")
            total += line.amount_cents
        if total != amount:
            raise ValidationError(
                f"Allocations sum to {total} but the payment amount is {amount}"
            )
