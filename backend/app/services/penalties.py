"""Late penalty rules and their accrual onto ledger charges."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from math import ceil
from typing import Iterable, Optional, Protocol

from sqlalchemy.orm import Session

from .. import models
from .allocation import ChangedPeriod
from .billing_config import BillingConfigService
from .ledger import ChargeLedger

LOGGER = logging.getLogger(__name__)

_WHOLE_CENT = Decimal("1")


def months_overdue(due_date: date, as_of: date, grace_days: int) -> int:
    """Whole penalty months elapsed since the grace period ended.

    The first month counts as soon as the grace period is over.
    """

    grace_end = due_date + timedelta(days=grace_days)
    if as_of <= grace_end:
        return 0
    return max(1, ceil((as_of - grace_end).days / 30))


class PenaltyPolicy(Protocol):
    def penalty_for(self, unpaid_base_cents: int, due_date: date, as_of: date) -> int:
        ...


@dataclass(frozen=True)
class CompoundingPenaltyPolicy:
    """Each overdue month adds ``rate`` times the base plus earlier penalties."""

    rate: Decimal
    grace_days: int = 10

    def penalty_for(self, unpaid_base_cents: int, due_date: date, as_of: date) -> int:
        months = months_overdue(due_date, as_of, self.grace_days)
        if months == 0 or unpaid_base_cents <= 0 or self.rate <= 0:
            return 0
        running = Decimal(unpaid_base_cents)
        total = Decimal("0")
        for _ in range(months):
            monthly = running * self.rate
            total += monthly
            running += monthly
        return int(total.quantize(_WHOLE_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SimplePenaltyPolicy:
    rate: Decimal
    grace_days: int = 10

    def penalty_for(self, unpaid_base_cents: int, due_date: date, as_of: date) -> int:
        months = months_overdue(due_date, as_of, self.grace_days)
        if months == 0 or unpaid_base_cents <= 0 or self.rate <= 0:
            return 0
        total = Decimal(unpaid_base_cents) * self.rate * months
        return int(total.quantize(_WHOLE_CENT, rounding=ROUND_HALF_UP))


class NoPenaltyPolicy:
    def penalty_for(self, unpaid_base_cents: int, due_date: date, as_of: date) -> int:
        return 0


def policy_for_config(config: models.BillingConfig) -> PenaltyPolicy:
    mode = models.PenaltyMode(config.penalty_mode)
    rate = Decimal(str(config.penalty_rate or 0))
    grace_days = int(config.grace_days or 0)
    if mode == models.PenaltyMode.NONE or rate <= 0:
        return NoPenaltyPolicy()
    if mode == models.PenaltyMode.SIMPLE:
        return SimplePenaltyPolicy(rate=rate, grace_days=grace_days)
    return CompoundingPenaltyPolicy(rate=rate, grace_days=grace_days)


class PenaltyService:
    """Applies a penalty policy to charges through the ledger."""

    @staticmethod
    def resolve_policy(
        db: Session, client_id: str, module: models.BillingModule
    ) -> PenaltyPolicy:
        return policy_for_config(BillingConfigService.get_config(db, client_id, module))

    @staticmethod
    def accrue_charges(
        charges: Iterable[models.Charge], policy: PenaltyPolicy, as_of: date
    ) -> list[ChangedPeriod]:
        changed: list[ChangedPeriod] = []
        for charge in charges:
            if charge.status == models.ChargeStatus.PAID:
                continue
            unpaid_base = charge.base_remaining_cents
            penalty = policy.penalty_for(unpaid_base, charge.due_date, as_of)
            if ChargeLedger.accrue_penalty(charge, penalty, as_of):
                changed.append(
                    ChangedPeriod(
                        unit_id=str(charge.unit_id),
                        fiscal_year=charge.fiscal_year,
                        period_index=charge.period_index,
                    )
                )
        if changed:
            LOGGER.debug("Accrued penalties on %s periods as of %s", len(changed), as_of)
        return changed

    @classmethod
    def accrue_for_units(
        cls,
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        unit_ids: Iterable[str],
        as_of: date,
        policy: Optional[PenaltyPolicy] = None,
    ) -> list[ChangedPeriod]:
        """Accrue penalties for the given units only; the caller commits."""

        effective_policy = policy or cls.resolve_policy(db, client_id, module)
        charges = ChargeLedger.charges_for_units(db, unit_ids, module, fiscal_year)
        return cls.accrue_charges(charges, effective_policy, as_of)

    @classmethod
    def accrue_outstanding(
        cls,
        db: Session,
        unit: models.Unit,
        module: models.BillingModule,
        up_to_fiscal_year: int,
        as_of: date,
        policy: Optional[PenaltyPolicy] = None,
    ) -> list[ChangedPeriod]:
        effective_policy = policy or cls.resolve_policy(db, unit.client_id, module)
        charges = ChargeLedger.outstanding_charges(db, unit.id, module, up_to_fiscal_year)
        return cls.accrue_charges(charges, effective_policy, as_of)
