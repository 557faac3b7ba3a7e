"""Charge ledger: scheduled charges, their paid components and unit credit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..money import Cents, ensure_cents
from ..settings import get_settings
from .billing_config import BillingConfigService
from .errors import (
    ConcurrentModification,
    InconsistentState,
    InvalidAmount,
    NotFound,
    TransientStoreError,
    ValidationError,
)
from .fiscal_periods import FiscalPeriodService

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnpaidPeriod:
    period_key: str
    module: models.BillingModule
    fiscal_year: int
    period_index: int
    due_date: date
    total_due_cents: Cents
    status: models.ChargeStatus


@dataclass(frozen=True)
class MeterReading:
    """Water meter readings for one unit, in cubic metres."""

    current_reading: int
    prior_reading: Optional[int] = None


@dataclass(frozen=True)
class _BillingRun:
    config: models.BillingConfig
    units: list[models.Unit]
    billed: set[str]
    due_date: date


class ChargeLedger:
    """Owns charge payment state and unit credit balances.

    Nothing outside this class assigns ``Charge.base_paid_cents``,
    ``Charge.penalty_paid_cents``, ``Charge.penalty_amount_cents`` or
    ``Unit.credit_balance_cents``.
    """

    @staticmethod
    def _positive_amount(amount: object) -> Cents:
        try:
            cents = ensure_cents(amount)
        except TypeError as exc:
            raise InvalidAmount(str(exc)) from exc
        if cents <= 0:
            raise InvalidAmount(f"Amount must be greater than zero, got {cents}")
        return cents

    @staticmethod
    def get_unit(db: Session, unit_id: str, *, for_update: bool = False) -> models.Unit:
        query = db.query(models.Unit).filter(models.Unit.id == unit_id)
        if for_update:
            query = query.with_for_update()
        unit = query.first()
        if unit is None:
            raise NotFound(f"Unit {unit_id} not found")
        return unit

    @staticmethod
    def get_charges(
        db: Session,
        unit_id: str,
        fiscal_year: int,
        module: models.BillingModule,
        *,
        period_index: Optional[int] = None,
    ) -> list[models.Charge]:
        """Return the unit's charges of one fiscal year, ascending by period."""

        query = db.query(models.Charge).filter(
            models.Charge.unit_id == unit_id,
            models.Charge.fiscal_year == fiscal_year,
            models.Charge.module == module,
        )
        if period_index is not None:
            query = query.filter(models.Charge.period_index == period_index)
        return query.order_by(models.Charge.period_index).all()

    @staticmethod
    def charge_period(
        unit: models.Unit, fiscal_year: Optional[int], period_key: Optional[str]
    ) -> tuple[int, Optional[int]]:
        """Resolve the ``(fiscal_year, period_index)`` filter of a charge listing.

        Without either argument the client's current fiscal year is used.
        """

        if period_key is None:
            if fiscal_year is not None:
                return fiscal_year, None
            start_month = unit.client.fiscal_year_start_month if unit.client else 1
            return FiscalPeriodService.fiscal_year_for(date.today(), start_month), None

        try:
            key_year, period_index = FiscalPeriodService.parse_period_key(period_key)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if fiscal_year is not None and fiscal_year != key_year:
            raise ValidationError(f"Period {period_key} is not in fiscal year {fiscal_year}")
        return key_year, period_index

    @staticmethod
    def outstanding_charges(
        db: Session,
        unit_id: str,
        module: models.BillingModule,
        up_to_fiscal_year: int,
    ) -> list[models.Charge]:
        """Unpaid and partial charges up to a fiscal year, oldest first."""

        return (
            db.query(models.Charge)
            .filter(
                models.Charge.unit_id == unit_id,
                models.Charge.module == module,
                models.Charge.fiscal_year <= up_to_fiscal_year,
                models.Charge.status != models.ChargeStatus.PAID,
            )
            .order_by(models.Charge.fiscal_year, models.Charge.period_index)
            .all()
        )

    @staticmethod
    def charges_for_units(
        db: Session,
        unit_ids: Iterable[str],
        module: models.BillingModule,
        fiscal_year: int,
    ) -> list[models.Charge]:
        ids = list(unit_ids)
        if not ids:
            return []
        return (
            db.query(models.Charge)
            .filter(
                models.Charge.unit_id.in_(ids),
                models.Charge.module == module,
                models.Charge.fiscal_year == fiscal_year,
            )
            .order_by(models.Charge.unit_id, models.Charge.period_index)
            .all()
        )

    @staticmethod
    def _component_outstanding(charge: models.Charge, kind: models.AllocationKind) -> int:
        if kind == models.AllocationKind.BASE_CHARGE:
            return charge.base_remaining_cents
        if kind == models.AllocationKind.PENALTY:
            return charge.penalty_remaining_cents
        raise ValidationError(f"{kind.value} lines do not target a charge")

    @staticmethod
    def _component_paid(charge: models.Charge, kind: models.AllocationKind) -> int:
        if kind == models.AllocationKind.BASE_CHARGE:
            return charge.base_paid_cents or 0
        if kind == models.AllocationKind.PENALTY:
            return charge.penalty_paid_cents or 0
        raise ValidationError(f"{kind.value} lines do not target a charge")

    @classmethod
    def apply_payment_to_charge(
        cls,
        charge: models.Charge,
        amount: int,
        kind: models.AllocationKind,
        *,
        tolerance: Optional[int] = None,
    ) -> models.Charge:
        """Pay ``amount`` cents of the base or penalty component of a charge.

        An overflow up to ``tolerance`` (the configured rounding tolerance by
        default) is trimmed; anything larger is rejected before the charge is
        touched. Payment recording passes ``tolerance=0``: a stored allocation
        line always equals the amount applied.
        """

        cents = cls._positive_amount(amount)
        outstanding = cls._component_outstanding(charge, kind)
        if tolerance is None:
            tolerance = get_settings().rounding_tolerance_cents
        if cents > outstanding + tolerance:
            raise InvalidAmount(
                f"Payment of {cents} exceeds the outstanding {kind.value} "
                f"({outstanding}) of period {charge.period_key}"
            )
        if cents > outstanding:
            LOGGER.warning(
                "Trimming %s cent overflow on %s of charge %s",
                cents - outstanding,
                kind.value,
                charge.id,
            )
            cents = Cents(outstanding)

        if kind == models.AllocationKind.BASE_CHARGE:
            charge.base_paid_cents = (charge.base_paid_cents or 0) + cents
        else:
            charge.penalty_paid_cents = (charge.penalty_paid_cents or 0) + cents
        charge.sync_status()
        return charge

    @classmethod
    def check_reversal(
        cls, charge: models.Charge, amount: int, kind: models.AllocationKind
    ) -> Cents:
        cents = cls._positive_amount(amount)
        paid = cls._component_paid(charge, kind)
        if cents > paid:
            raise InconsistentState(
                f"Cannot reverse {cents} of {kind.value} on period {charge.period_key}: "
                f"only {paid} is paid"
            )
        return cents

    @classmethod
    def reverse_allocation(
        cls, charge: models.Charge, amount: int, kind: models.AllocationKind
    ) -> models.Charge:
        """Undo a prior allocation; the accrued penalty itself is kept."""

        cents = cls.check_reversal(charge, amount, kind)
        if kind == models.AllocationKind.BASE_CHARGE:
            charge.base_paid_cents = charge.base_paid_cents - cents
        else:
            charge.penalty_paid_cents = charge.penalty_paid_cents - cents
        charge.sync_status()
        return charge

    @staticmethod
    def change_credit_balance(
        db: Session,
        unit: models.Unit,
        delta: int,
        *,
        source: models.CreditSource,
        payment_id: Optional[str] = None,
        note: Optional[str] = None,
        recorded_by: Optional[str] = None,
    ) -> Optional[models.CreditBalanceEntry]:
        """Move a unit's credit balance and journal the change."""

        try:
            delta_cents = ensure_cents(delta)
        except TypeError as exc:
            raise InvalidAmount(str(exc)) from exc
        if delta_cents == 0:
            return None

        db.flush()
        last_number = (
            db.query(func.max(models.CreditBalanceEntry.entry_number))
            .filter(models.CreditBalanceEntry.unit_id == unit.id)
            .scalar()
        )
        before = unit.credit_balance_cents or 0
        after = before + delta_cents
        unit.credit_balance_cents = after

        entry = models.CreditBalanceEntry(
            unit_id=unit.id,
            entry_number=(last_number or 0) + 1,
            payment_id=payment_id,
            source=source,
            delta_cents=delta_cents,
            balance_before_cents=before,
            balance_after_cents=after,
            note=note,
            recorded_by=recorded_by,
        )
        db.add(entry)
        LOGGER.debug(
            "Credit balance of unit %s moved %s -> %s",
            unit.id,
            before,
            after,
            extra={"source": source.value, "payment_id": payment_id},
        )
        return entry

    @classmethod
    def adjust_credit_balance(
        cls,
        db: Session,
        unit_id: str,
        delta: int,
        *,
        note: str,
        recorded_by: Optional[str] = None,
    ) -> models.CreditBalanceEntry:
        """Apply a manual operator adjustment and commit it."""

        unit = cls.get_unit(db, unit_id, for_update=True)
        entry = cls.change_credit_balance(
            db,
            unit,
            delta,
            source=models.CreditSource.ADJUSTMENT,
            note=note,
            recorded_by=recorded_by,
        )
        if entry is None:
            raise InvalidAmount("Credit adjustments must not be zero")

        try:
            db.commit()
        except StaleDataError as exc:
            db.rollback()
            raise ConcurrentModification(
                f"Unit {unit_id} was modified concurrently; retry the adjustment"
            ) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to adjust credit balance of unit %s", unit_id)
            raise TransientStoreError("Unable to adjust the credit balance at this time.") from exc
        db.refresh(entry)
        return entry

    @staticmethod
    def accrue_penalty(charge: models.Charge, penalty: int, as_of: date) -> bool:
        """Raise a charge's penalty to ``penalty`` cents.

        Paid charges are left alone and an existing penalty is never lowered.
        Returns whether the penalty changed.
        """

        try:
            target = ensure_cents(penalty)
        except TypeError as exc:
            raise InvalidAmount(str(exc)) from exc
        if charge.status == models.ChargeStatus.PAID:
            return False

        current = charge.penalty_amount_cents or 0
        charge.last_penalty_update = as_of
        if target <= current:
            return False
        charge.penalty_amount_cents = target
        charge.sync_status()
        return True

    @staticmethod
    def add_charge(
        db: Session,
        unit: models.Unit,
        module: models.BillingModule,
        fiscal_year: int,
        period_index: int,
        base_amount: int,
        due_date: date,
        *,
        prior_reading: Optional[int] = None,
        current_reading: Optional[int] = None,
    ) -> models.Charge:
        try:
            base_cents = ensure_cents(base_amount)
        except TypeError as exc:
            raise InvalidAmount(str(exc)) from exc
        if base_cents < 0:
            raise InvalidAmount("Charge amounts must be non-negative")

        charge = models.Charge(
            unit_id=unit.id,
            module=module,
            fiscal_year=fiscal_year,
            period_index=period_index,
            period_key=FiscalPeriodService.period_key(fiscal_year, period_index),
            due_date=due_date,
            base_amount_cents=base_cents,
            penalty_amount_cents=0,
            base_paid_cents=0,
            penalty_paid_cents=0,
            prior_reading=prior_reading,
            current_reading=current_reading,
        )
        charge.sync_status()
        db.add(charge)
        return charge

    @staticmethod
    def _billing_run(
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        period_index: int,
        due_date: Optional[date],
        requested_unit_ids: Iterable[str],
    ) -> _BillingRun:
        client = db.get(models.Client, client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found")
        config = BillingConfigService.get_config(db, client_id, module)
        frequency = models.BillingFrequency(config.frequency)
        if period_index >= FiscalPeriodService.periods_per_year(frequency):
            raise ValidationError(
                f"period_index {period_index} is out of range for {frequency.value} billing"
            )

        units = (
            db.query(models.Unit)
            .filter(models.Unit.client_id == client_id)
            .order_by(models.Unit.unit_code)
            .all()
        )
        unit_ids = {str(unit.id) for unit in units}
        unknown = sorted(set(requested_unit_ids) - unit_ids)
        if unknown:
            raise ValidationError(f"Units not found for client: {', '.join(unknown)}")

        billed = {
            str(unit_id)
            for (unit_id,) in db.query(models.Charge.unit_id).filter(
                models.Charge.unit_id.in_(unit_ids),
                models.Charge.module == module,
                models.Charge.fiscal_year == fiscal_year,
                models.Charge.period_index == period_index,
            )
        }
        effective_due = due_date or FiscalPeriodService.default_due_date(
            fiscal_year,
            period_index,
            start_month=client.fiscal_year_start_month,
            frequency=frequency,
            due_day=config.due_day,
        )
        return _BillingRun(config=config, units=units, billed=billed, due_date=effective_due)

    @staticmethod
    def _commit_generated(
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        period_index: int,
        created: list[models.Charge],
        skipped: list[str],
    ) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception(
                "Failed to generate %s charges for client %s period %s-%02d",
                module.value,
                client_id,
                fiscal_year,
                period_index,
            )
            raise TransientStoreError("Unable to generate charges at this time.") from exc

        LOGGER.info(
            "Generated %s charges for client %s (%s skipped)",
            len(created),
            client_id,
            len(skipped),
            extra={"module": module.value, "fiscal_year": fiscal_year, "period_index": period_index},
        )

    @classmethod
    def generate_charges(
        cls,
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        period_index: int,
        *,
        amounts: Optional[Mapping[str, int]] = None,
        due_date: Optional[date] = None,
    ) -> tuple[list[models.Charge], list[str]]:
        """Create one period's charges for every unit of a client.

        Units that already have the period are skipped and reported.
        """

        amounts = amounts or {}
        run = cls._billing_run(
            db, client_id, module, fiscal_year, period_index, due_date, amounts.keys()
        )

        created: list[models.Charge] = []
        skipped: list[str] = []
        for unit in run.units:
            if str(unit.id) in run.billed:
                skipped.append(str(unit.id))
                continue
            amount = amounts.get(str(unit.id), unit.periodic_charge_cents or 0)
            created.append(
                cls.add_charge(db, unit, module, fiscal_year, period_index, amount, run.due_date)
            )

        cls._commit_generated(db, client_id, module, fiscal_year, period_index, created, skipped)
        return created, skipped

    @staticmethod
    def metered_charge_cents(consumption: int, config: models.BillingConfig) -> Cents:
        """Water bill for ``consumption`` cubic metres, floored at the minimum charge."""

        if consumption < 0:
            raise ValidationError("Meter consumption cannot be negative")
        rate = config.rate_per_m3_cents or 0
        minimum = config.minimum_charge_cents or 0
        if consumption == 0 and minimum == 0:
            return Cents(0)
        return Cents(max(consumption * rate, minimum))

    @staticmethod
    def last_meter_reading(
        db: Session, unit_id: str, fiscal_year: int, period_index: int
    ) -> Optional[int]:
        """Current reading of the unit's latest water bill before the given period."""

        row = (
            db.query(models.Charge.current_reading)
            .filter(
                models.Charge.unit_id == unit_id,
                models.Charge.module == models.BillingModule.WATER,
                models.Charge.current_reading.isnot(None),
                or_(
                    models.Charge.fiscal_year < fiscal_year,
                    and_(
                        models.Charge.fiscal_year == fiscal_year,
                        models.Charge.period_index < period_index,
                    ),
                ),
            )
            .order_by(models.Charge.fiscal_year.desc(), models.Charge.period_index.desc())
            .first()
        )
        return row[0] if row else None

    @classmethod
    def generate_water_bills(
        cls,
        db: Session,
        client_id: str,
        fiscal_year: int,
        period_index: int,
        readings: Mapping[str, MeterReading],
        *,
        due_date: Optional[date] = None,
    ) -> tuple[list[models.Charge], list[str]]:
        """Bill metered water consumption for the units with a reading.

        Each bill is ``max(consumption * rate_per_m3, minimum_charge)``. A
        reading without consumption and without a minimum charge produces no
        bill. Units already billed for the period are skipped and reported.
        """

        module = models.BillingModule.WATER
        run = cls._billing_run(
            db, client_id, module, fiscal_year, period_index, due_date, readings.keys()
        )

        bills: list[tuple[models.Unit, int, int, Cents]] = []
        skipped: list[str] = []
        for unit in run.units:
            reading = readings.get(str(unit.id))
            if reading is None:
                continue
            if str(unit.id) in run.billed:
                skipped.append(str(unit.id))
                continue

            prior = reading.prior_reading
            if prior is None:
                prior = cls.last_meter_reading(db, unit.id, fiscal_year, period_index)
            if prior is None:
                raise ValidationError(
                    f"Unit {unit.unit_code} has no previous water bill; a prior_reading is required"
                )
            if reading.current_reading < prior:
                raise ValidationError(
                    f"Unit {unit.unit_code} reading {reading.current_reading} is below the "
                    f"prior reading {prior}"
                )

            amount = cls.metered_charge_cents(reading.current_reading - prior, run.config)
            if amount > 0:
                bills.append((unit, prior, reading.current_reading, amount))

        created = [
            cls.add_charge(
                db,
                unit,
                module,
                fiscal_year,
                period_index,
                amount,
                run.due_date,
                prior_reading=prior,
                current_reading=current,
            )
            for unit, prior, current, amount in bills
        ]

        cls._commit_generated(db, client_id, module, fiscal_year, period_index, created, skipped)
        return created, skipped

    @classmethod
    def unpaid_summary(
        cls,
        db: Session,
        unit_id: str,
        module: Optional[models.BillingModule] = None,
    ) -> list[UnpaidPeriod]:
        """Read-only list of periods with money still due, oldest first."""

        cls.get_unit(db, unit_id)
        query = db.query(models.Charge).filter(
            models.Charge.unit_id == unit_id,
            models.Charge.status != models.ChargeStatus.PAID,
        )
        if module is not None:
            query = query.filter(models.Charge.module == module)
        charges = query.order_by(
            models.Charge.fiscal_year,
            models.Charge.period_index,
            models.Charge.module,
        ).all()
        return [
            UnpaidPeriod(
                period_key=charge.period_key,
                module=models.BillingModule(charge.module),
                fiscal_year=charge.fiscal_year,
                period_index=charge.period_index,
                due_date=charge.due_date,
                total_due_cents=Cents(charge.remaining_cents),
                status=models.ChargeStatus(charge.status),
            )
            for charge in charges
            if charge.remaining_cents > 0
        ]

    @classmethod
    def credit_history(
        cls, db: Session, unit_id: str, *, limit: int = 50
    ) -> list[models.CreditBalanceEntry]:
        """Newest entries first."""

        cls.get_unit(db, unit_id)
        return (
            db.query(models.CreditBalanceEntry)
            .filter(models.CreditBalanceEntry.unit_id == unit_id)
            .order_by(models.CreditBalanceEntry.entry_number.desc())
            .limit(max(limit, 1))
            .all()
        )
