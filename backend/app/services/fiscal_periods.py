"""Helpers to map fiscal years and period indexes to calendar dates."""

from __future__ import annotations

import re
from calendar import monthrange
from datetime import date

from ..models import BillingFrequency

VALID_PERIOD_PATTERN = re.compile(r"^\d{4}-\d{2}$")


class FiscalPeriodService:
    """Period keys look like ``2026-00``: fiscal year plus 0-based period index.

    A fiscal year is named after the calendar year it ends in, so with a July
    start FY2026 runs from July 2025 to June 2026.
    """

    @staticmethod
    def periods_per_year(frequency: BillingFrequency = BillingFrequency.MONTHLY) -> int:
        return 4 if frequency == BillingFrequency.QUARTERLY else 12

    @classmethod
    def period_key(cls, fiscal_year: int, period_index: int) -> str:
        if fiscal_year < 1 or fiscal_year > 9999:
            raise ValueError("fiscal_year must be a four digit year")
        if period_index < 0 or period_index > 11:
            raise ValueError("period_index must be between 0 and 11")
        return f"{fiscal_year:04d}-{period_index:02d}"

    @classmethod
    def parse_period_key(cls, period_key: str) -> tuple[int, int]:
        """Return ``(fiscal_year, period_index)`` for a key."""

        if not period_key or not VALID_PERIOD_PATTERN.match(period_key.strip()):
            raise ValueError("Invalid period key format, expected YYYY-NN")
        year_str, index_str = period_key.strip().split("-", maxsplit=1)
        fiscal_year, period_index = int(year_str), int(index_str)
        cls.period_key(fiscal_year, period_index)
        return fiscal_year, period_index

    @classmethod
    def period_start(
        cls,
        fiscal_year: int,
        period_index: int,
        *,
        start_month: int = 1,
        frequency: BillingFrequency = BillingFrequency.MONTHLY,
    ) -> date:
        if not 1 <= start_month <= 12:
            raise ValueError("start_month must be between 1 and 12")
        if period_index < 0 or period_index >= cls.periods_per_year(frequency):
            raise ValueError(
                f"period_index {period_index} out of range for {frequency.value} billing"
            )
        months_in = period_index * (3 if frequency == BillingFrequency.QUARTERLY else 1)
        first_year = fiscal_year if start_month == 1 else fiscal_year - 1
        month_offset = start_month - 1 + months_in
        return date(first_year + month_offset // 12, month_offset % 12 + 1, 1)

    @classmethod
    def default_due_date(
        cls,
        fiscal_year: int,
        period_index: int,
        *,
        start_month: int = 1,
        frequency: BillingFrequency = BillingFrequency.MONTHLY,
        due_day: int = 1,
    ) -> date:
        starts_on = cls.period_start(
            fiscal_year, period_index, start_month=start_month, frequency=frequency
        )
        _, last_day = monthrange(starts_on.year, starts_on.month)
        return starts_on.replace(day=min(max(due_day, 1), last_day))

    @staticmethod
    def fiscal_year_for(day: date, start_month: int = 1) -> int:
        if start_month == 1 or day.month < start_month:
            return day.year
        return day.year + 1
