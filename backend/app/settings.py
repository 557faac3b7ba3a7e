"""Billing defaults read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache

from .database import _read_bool_env, _read_int_env

ROUNDING_TOLERANCE_ENV = "BILLING_ROUNDING_TOLERANCE_CENTS"
DEFAULT_PENALTY_RATE_ENV = "BILLING_DEFAULT_PENALTY_RATE"
DEFAULT_GRACE_DAYS_ENV = "BILLING_DEFAULT_GRACE_DAYS"
DEFAULT_FISCAL_START_MONTH_ENV = "BILLING_DEFAULT_FISCAL_START_MONTH"
AUTO_REBUILD_STALE_ENV = "BILLING_AUTO_REBUILD_STALE"


def _read_decimal_env(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal number") from exc
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return value


@dataclass(frozen=True)
class BillingSettings:
    rounding_tolerance_cents: int = 1
    default_penalty_rate: Decimal = Decimal("0")
    default_grace_days: int = 10
    default_fiscal_start_month: int = 1
    auto_rebuild_stale: bool = True

    @classmethod
    def from_env(cls) -> "BillingSettings":
        start_month = _read_int_env(DEFAULT_FISCAL_START_MONTH_ENV, 1)
        if not 1 <= start_month <= 12:
            raise ValueError(f"{DEFAULT_FISCAL_START_MONTH_ENV} must be between 1 and 12")
        return cls(
            rounding_tolerance_cents=_read_int_env(ROUNDING_TOLERANCE_ENV, 1),
            default_penalty_rate=_read_decimal_env(DEFAULT_PENALTY_RATE_ENV, Decimal("0")),
            default_grace_days=_read_int_env(DEFAULT_GRACE_DAYS_ENV, 10),
            default_fiscal_start_month=start_month,
            auto_rebuild_stale=_read_bool_env(AUTO_REBUILD_STALE_ENV, True),
        )


@lru_cache(maxsize=1)
def get_settings() -> BillingSettings:
    """Return the process-wide billing settings."""

    return BillingSettings.from_env()
