from __future__ import annotations

import pytest

from backend.app import models
from backend.app.services.allocation import (
    SPLIT_CATEGORY_LABEL,
    ChargeState,
    PaymentAllocator,
)
from backend.app.services.errors import InvalidAmount

UNIT_ID = "unit-101"


def _charge(
    period_index: int,
    base: int,
    penalty: int = 0,
    *,
    fiscal_year: int = 2026,
    base_paid: int = 0,
    penalty_paid: int = 0,
) -> ChargeState:
    return ChargeState(
        charge_id=f"charge-{fiscal_year}-{period_index}",
        unit_id=UNIT_ID,
        fiscal_year=fiscal_year,
        period_index=period_index,
        period_key=f"{fiscal_year:04d}-{period_index:02d}",
        base_amount_cents=base,
        penalty_amount_cents=penalty,
        base_paid_cents=base_paid,
        penalty_paid_cents=penalty_paid,
    )


def _allocate(amount, balance, charges, **kwargs):
    kwargs.setdefault("module", models.BillingModule.HOA)
    kwargs.setdefault("unit_id", UNIT_ID)
    kwargs.setdefault("unit_label", "101")
    return PaymentAllocator.allocate(amount, balance, charges, **kwargs)


def _kinds(plan) -> list[str]:
    return [line.kind.value for line in plan.lines]


def test_overpayment_pays_charge_and_creates_credit():
    plan = _allocate(215000, 0, [_charge(0, 200000)])

    assert _kinds(plan) == ["base_charge", "credit_created"]
    assert [line.amount_cents for line in plan.lines] == [200000, 15000]
    assert plan.credit_balance_after_cents == 15000
    assert plan.credit_delta_cents == 15000
    assert plan.category_label == SPLIT_CATEGORY_LABEL
    assert [period.period_key for period in plan.changed_periods] == ["2026-00"]


def test_payment_covers_base_and_penalty_without_touching_credit():
    plan = _allocate(215000, 0, [_charge(0, 200000, 15000)])

    assert _kinds(plan) == ["base_charge", "penalty"]
    assert [line.amount_cents for line in plan.lines] == [200000, 15000]
    assert plan.credit_balance_after_cents == 0
    assert plan.category_label == "-Split-"
    assert plan.lines[1].category_name == "HOA Penalties"
    assert plan.lines[1].label == "2026-00 Penalties - Unit 101"


def test_payment_repairs_negative_credit_first():
    plan = _allocate(5000, -10000, [_charge(0, 200000)])

    assert _kinds(plan) == ["credit_repair"]
    assert plan.lines[0].amount_cents == 5000
    assert plan.credit_balance_after_cents == -5000
    assert plan.changed_periods == ()
    assert plan.category_label == models.CREDIT_CATEGORY_NAME


def test_exact_payment_across_two_charges_has_no_credit_line():
    plan = _allocate(91430, 0, [_charge(1, 65000), _charge(0, 26430)])

    assert _kinds(plan) == ["base_charge", "base_charge"]
    assert [line.period_key for line in plan.lines] == ["2026-00", "2026-01"]
    assert sum(line.amount_cents for line in plan.lines) == 91430
    assert plan.credit_balance_after_cents == 0


def test_partial_payment_stops_at_first_unfinished_charge():
    plan = _allocate(30000, 0, [_charge(0, 20000), _charge(1, 20000), _charge(2, 20000)])

    assert [(line.period_key, line.amount_cents) for line in plan.lines] == [
        ("2026-00", 20000),
        ("2026-01", 10000),
    ]
    assert [period.period_index for period in plan.changed_periods] == [0, 1]


def test_older_fiscal_years_are_paid_first():
    charges = [_charge(0, 10000, fiscal_year=2026), _charge(11, 10000, fiscal_year=2025)]

    plan = _allocate(15000, 0, charges)

    assert [line.period_key for line in plan.lines] == ["2025-11", "2026-00"]
    assert [period.fiscal_year for period in plan.changed_periods] == [2025, 2026]


def test_already_paid_components_are_skipped():
    plan = _allocate(
        10000,
        0,
        [_charge(0, 20000, 5000, base_paid=20000), _charge(1, 20000)],
    )

    assert [(line.kind.value, line.period_key, line.amount_cents) for line in plan.lines] == [
        ("penalty", "2026-00", 5000),
        ("base_charge", "2026-01", 5000),
    ]


def test_penalty_first_policy_orders_penalty_line_first():
    plan = _allocate(
        10000,
        0,
        [_charge(0, 20000, 3000)],
        policy=models.AllocationPolicy.PENALTY_FIRST,
    )

    assert _kinds(plan) == ["penalty", "base_charge"]
    assert [line.amount_cents for line in plan.lines] == [3000, 7000]


def test_proportional_policy_splits_by_remaining_components():
    plan = _allocate(
        1001,
        0,
        [_charge(0, 3000, 1000)],
        policy=models.AllocationPolicy.PROPORTIONAL,
    )

    base_line, penalty_line = plan.lines
    assert base_line.amount_cents == 750
    assert penalty_line.amount_cents == 251


def test_existing_credit_is_used_only_when_requested():
    charges = [_charge(0, 20000)]

    without = _allocate(5000, 30000, charges)
    assert _kinds(without) == ["base_charge"]
    assert without.credit_balance_after_cents == 30000

    with_credit = _allocate(5000, 30000, charges, use_credit=True)
    assert _kinds(with_credit) == ["base_charge", "credit_applied"]
    assert [line.amount_cents for line in with_credit.lines] == [20000, -15000]
    assert with_credit.credit_balance_after_cents == 15000
    assert sum(line.amount_cents for line in with_credit.lines) == 5000


def test_payment_without_charges_becomes_credit():
    plan = _allocate(12345, 0, [])

    assert _kinds(plan) == ["credit_created"]
    assert plan.lines[0].label == "Account Credit - Unit 101"
    assert plan.category_label == "Account Credit"


def test_lines_carry_sequential_codes_and_module_categories():
    plan = _allocate(
        50000,
        -1000,
        [_charge(0, 20000)],
        module=models.BillingModule.WATER,
    )

    assert [line.allocation_code for line in plan.lines] == ["alloc_001", "alloc_002", "alloc_003"]
    assert [line.category_name for line in plan.lines] == [
        "Account Credit",
        "Water Consumption",
        "Account Credit",
    ]
    assert plan.lines[1].label == "2026-00 - Unit 101"


@pytest.mark.parametrize("amount", [0, -500, 10.5, True])
def test_invalid_amounts_are_rejected(amount):
    with pytest.raises(InvalidAmount):
        _allocate(amount, 0, [_charge(0, 20000)])
