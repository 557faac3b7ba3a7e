from __future__ import annotations

from datetime import date

import pytest

from backend.app.models import BillingFrequency
from backend.app.services import FiscalPeriodService


def test_period_key_is_zero_padded():
    assert FiscalPeriodService.period_key(2026, 0) == "2026-00"
    assert FiscalPeriodService.period_key(2026, 11) == "2026-11"


@pytest.mark.parametrize("period_index", [-1, 12])
def test_period_key_rejects_out_of_range_index(period_index):
    with pytest.raises(ValueError):
        FiscalPeriodService.period_key(2026, period_index)


def test_parse_period_key_round_trips_and_validates():
    assert FiscalPeriodService.parse_period_key(" 2025-07 ") == (2025, 7)
    with pytest.raises(ValueError):
        FiscalPeriodService.parse_period_key("2025/07")
    with pytest.raises(ValueError):
        FiscalPeriodService.parse_period_key("2025-13")


def test_fiscal_year_starting_in_july_is_named_after_its_end():
    assert FiscalPeriodService.period_start(2026, 0, start_month=7) == date(2025, 7, 1)
    assert FiscalPeriodService.period_start(2026, 6, start_month=7) == date(2026, 1, 1)
    assert FiscalPeriodService.period_start(2026, 11, start_month=7) == date(2026, 6, 1)
    assert FiscalPeriodService.fiscal_year_for(date(2025, 7, 1), start_month=7) == 2026
    assert FiscalPeriodService.fiscal_year_for(date(2026, 6, 30), start_month=7) == 2026


def test_calendar_fiscal_year():
    assert FiscalPeriodService.period_start(2026, 0) == date(2026, 1, 1)
    assert FiscalPeriodService.fiscal_year_for(date(2026, 12, 31)) == 2026


def test_quarterly_periods():
    assert FiscalPeriodService.periods_per_year(BillingFrequency.QUARTERLY) == 4
    assert FiscalPeriodService.period_start(
        2026, 3, start_month=7, frequency=BillingFrequency.QUARTERLY
    ) == date(2026, 4, 1)
    with pytest.raises(ValueError):
        FiscalPeriodService.period_start(2026, 4, frequency=BillingFrequency.QUARTERLY)


def test_default_due_date_clamps_to_month_end():
    assert FiscalPeriodService.default_due_date(2026, 1, due_day=28) == date(2026, 2, 28)
    assert FiscalPeriodService.default_due_date(2026, 0, start_month=7, due_day=15) == date(
        2025, 7, 15
    )
