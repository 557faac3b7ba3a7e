"""Maintain the per-fiscal-year aggregation snapshots."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from time import perf_counter
from typing import Iterable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..money import Cents
from ..settings import get_settings
from .allocation import ChangedPeriod
from .errors import BillingError, NotFound, TransientStoreError
from .ledger import ChargeLedger
from .observability import MetricOutcome, ObservabilityService
from .penalties import PenaltyService

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryFigures:
    unit_id: str
    unit_code: str
    period_index: int
    period_key: str
    due_date: date
    base_amount_cents: Cents
    penalty_amount_cents: Cents
    paid_amount_cents: Cents
    total_due_cents: Cents
    past_due_carryover_cents: Cents
    total_to_clear_cents: Cents
    status: models.ChargeStatus
    last_payment_id: Optional[str]


class AggregationService:
    """Single owner of the aggregation snapshots.

    Other services never write snapshot rows; they ask for a ``patch`` with
    the periods they touched, and readers call ``read_snapshot``.
    """

    @staticmethod
    def compute_unit_entries(
        unit: models.Unit, charges: Sequence[models.Charge]
    ) -> list[EntryFigures]:
        """Figures for one unit's charges of a single fiscal year.

        Used by both the full rebuild and the surgical patch so the two can
        never disagree.
        """

        entries: list[EntryFigures] = []
        carryover = 0
        for charge in sorted(charges, key=lambda item: item.period_index):
            total_due = charge.total_amount_cents - charge.paid_amount_cents
            payment_ids = charge.payment_ids
            entries.append(
                EntryFigures(
                    unit_id=str(unit.id),
                    unit_code=unit.unit_code,
                    period_index=charge.period_index,
                    period_key=charge.period_key,
                    due_date=charge.due_date,
                    base_amount_cents=Cents(charge.base_amount_cents or 0),
                    penalty_amount_cents=Cents(charge.penalty_amount_cents or 0),
                    paid_amount_cents=Cents(charge.paid_amount_cents),
                    total_due_cents=Cents(total_due),
                    past_due_carryover_cents=Cents(carryover),
                    total_to_clear_cents=Cents(total_due + carryover),
                    status=models.ChargeStatus(charge.status),
                    last_payment_id=payment_ids[-1] if payment_ids else None,
                )
            )
            carryover += total_due
        return entries

    @staticmethod
    def _get_snapshot(
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        *,
        for_update: bool = False,
    ) -> Optional[models.AggregationSnapshot]:
        query = db.query(models.AggregationSnapshot).filter(
            models.AggregationSnapshot.client_id == client_id,
            models.AggregationSnapshot.module == module,
            models.AggregationSnapshot.fiscal_year == fiscal_year,
        )
        if for_update:
            query = query.with_for_update(of=models.AggregationSnapshot)
        return query.first()

    @staticmethod
    def _entry_model(figures: EntryFigures) -> models.AggregationSnapshotEntry:
        return models.AggregationSnapshotEntry(
            unit_id=figures.unit_id,
            unit_code=figures.unit_code,
            period_index=figures.period_index,
            period_key=figures.period_key,
            due_date=figures.due_date,
            base_amount_cents=figures.base_amount_cents,
            penalty_amount_cents=figures.penalty_amount_cents,
            paid_amount_cents=figures.paid_amount_cents,
            total_due_cents=figures.total_due_cents,
            past_due_carryover_cents=figures.past_due_carryover_cents,
            total_to_clear_cents=figures.total_to_clear_cents,
            status=figures.status,
            last_payment_id=figures.last_payment_id,
        )

    @staticmethod
    def _charges_by_unit(
        db: Session,
        unit_ids: Iterable[str],
        module: models.BillingModule,
        fiscal_year: int,
    ) -> dict[str, list[models.Charge]]:
        grouped: dict[str, list[models.Charge]] = defaultdict(list)
        for charge in ChargeLedger.charges_for_units(db, unit_ids, module, fiscal_year):
            grouped[str(charge.unit_id)].append(charge)
        return grouped

    @classmethod
    def rebuild_all(
        cls,
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        *,
        as_of: Optional[date] = None,
    ) -> models.AggregationSnapshot:
        """Accrue penalties for every unit and recompute the whole snapshot."""

        start = perf_counter()
        if db.get(models.Client, client_id) is None:
            raise NotFound(f"Client {client_id} not found")

        try:
            units = (
                db.query(models.Unit)
                .filter(models.Unit.client_id == client_id)
                .order_by(models.Unit.unit_code)
                .all()
            )
            unit_ids = [str(unit.id) for unit in units]
            PenaltyService.accrue_for_units(
                db, client_id, module, fiscal_year, unit_ids, as_of or date.today()
            )

            snapshot = cls._get_snapshot(db, client_id, module, fiscal_year, for_update=True)
            if snapshot is None:
                snapshot = models.AggregationSnapshot(
                    client_id=client_id, module=module, fiscal_year=fiscal_year
                )
                db.add(snapshot)
            else:
                snapshot.entries.clear()
                # Deletes must reach the database before the replacement rows.
                db.flush()

            charges = cls._charges_by_unit(db, unit_ids, module, fiscal_year)
            for unit in units:
                for figures in cls.compute_unit_entries(unit, charges.get(str(unit.id), [])):
                    snapshot.entries.append(cls._entry_model(figures))

            now = datetime.now(timezone.utc)
            snapshot.status = models.SnapshotStatus.FRESH
            snapshot.stale_reason = None
            snapshot.generated_at = now
            snapshot.updated_at = now
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception(
                "Failed to rebuild snapshot for client %s %s FY%s",
                client_id,
                module.value,
                fiscal_year,
            )
            raise TransientStoreError("Unable to rebuild the aggregation snapshot.") from exc

        db.refresh(snapshot)
        LOGGER.info(
            "Rebuilt %s snapshot FY%s for client %s",
            module.value,
            fiscal_year,
            client_id,
            extra={"units": len(unit_ids)},
        )
        ObservabilityService.record_event(
            db,
            "aggregation.rebuilt",
            MetricOutcome.SUCCESS,
            duration_ms=(perf_counter() - start) * 1000,
            tags={"client_id": str(client_id), "module": module.value, "fiscal_year": fiscal_year},
        )
        return snapshot

    @classmethod
    def patch(
        cls,
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        changed_periods: Iterable[ChangedPeriod],
        *,
        as_of: Optional[date] = None,
    ) -> Optional[models.AggregationSnapshot]:
        """Recompute only the units and periods touched by a ledger change.

        Each changed unit is recomputed from its earliest changed period
        onward. A missing or stale snapshot falls back to ``rebuild_all``. On
        failure the patch's own writes are rolled back and the snapshot is
        flagged stale instead of raising.
        """

        start = perf_counter()
        scoped = [period for period in changed_periods if period.fiscal_year == fiscal_year]
        tags = {"client_id": str(client_id), "module": module.value, "fiscal_year": fiscal_year}

        try:
            snapshot = cls._get_snapshot(db, client_id, module, fiscal_year, for_update=True)
            if snapshot is None or snapshot.status == models.SnapshotStatus.STALE:
                LOGGER.info(
                    "Snapshot FY%s for client %s missing or stale; rebuilding",
                    fiscal_year,
                    client_id,
                )
                db.rollback()
                return cls.rebuild_all(db, client_id, module, fiscal_year, as_of=as_of)
            if not scoped:
                return snapshot

            unit_ids = sorted({period.unit_id for period in scoped})
            accrued = PenaltyService.accrue_for_units(
                db, client_id, module, fiscal_year, unit_ids, as_of or date.today()
            )

            earliest: dict[str, int] = {}
            for period in [*scoped, *accrued]:
                current = earliest.get(period.unit_id)
                if current is None or period.period_index < current:
                    earliest[period.unit_id] = period.period_index

            units = db.query(models.Unit).filter(models.Unit.id.in_(unit_ids)).all()
            charges = cls._charges_by_unit(db, unit_ids, module, fiscal_year)

            for entry in list(snapshot.entries):
                start_index = earliest.get(str(entry.unit_id))
                if start_index is not None and entry.period_index >= start_index:
                    snapshot.entries.remove(entry)
            db.flush()

            for unit in units:
                start_index = earliest[str(unit.id)]
                for figures in cls.compute_unit_entries(unit, charges.get(str(unit.id), [])):
                    if figures.period_index >= start_index:
                        snapshot.entries.append(cls._entry_model(figures))

            snapshot.updated_at = datetime.now(timezone.utc)
            db.commit()
        except NotFound:
            db.rollback()
            raise
        except (SQLAlchemyError, BillingError) as exc:
            db.rollback()
            LOGGER.exception(
                "Snapshot patch failed for client %s %s FY%s; marking stale",
                client_id,
                module.value,
                fiscal_year,
            )
            snapshot = cls.mark_stale(
                db, client_id, module, fiscal_year, reason=f"patch failed: {exc}"
            )
            ObservabilityService.record_event(
                db,
                "aggregation.patch_failed",
                MetricOutcome.ERROR,
                duration_ms=(perf_counter() - start) * 1000,
                tags=tags,
                metadata={"exception": str(exc)},
            )
            return snapshot

        db.refresh(snapshot)
        ObservabilityService.record_event(
            db,
            "aggregation.patched",
            MetricOutcome.SUCCESS,
            duration_ms=(perf_counter() - start) * 1000,
            tags={**tags, "units": len(unit_ids)},
        )
        return snapshot

    @classmethod
    def patch_changed(
        cls,
        db: Session,
        client_id: str,
        module: models.BillingModule,
        changed_periods: Iterable[ChangedPeriod],
        *,
        as_of: Optional[date] = None,
    ) -> Optional[models.AggregationSnapshot]:
        """Patch every fiscal year touched; returns the last patched snapshot."""

        by_year: dict[int, list[ChangedPeriod]] = defaultdict(list)
        for period in changed_periods:
            by_year[period.fiscal_year].append(period)
        snapshot = None
        for fiscal_year in sorted(by_year):
            snapshot = cls.patch(
                db, client_id, module, fiscal_year, by_year[fiscal_year], as_of=as_of
            )
        return snapshot

    @classmethod
    def mark_stale(
        cls,
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        *,
        reason: str,
    ) -> models.AggregationSnapshot:
        try:
            snapshot = cls._get_snapshot(db, client_id, module, fiscal_year, for_update=True)
            if snapshot is None:
                snapshot = models.AggregationSnapshot(
                    client_id=client_id, module=module, fiscal_year=fiscal_year
                )
                db.add(snapshot)
            snapshot.status = models.SnapshotStatus.STALE
            snapshot.stale_reason = reason[:500]
            snapshot.updated_at = datetime.now(timezone.utc)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Unable to flag snapshot FY%s of client %s stale", fiscal_year, client_id)
            raise TransientStoreError("Unable to update the aggregation snapshot.") from exc
        LOGGER.warning(
            "Snapshot FY%s for client %s marked stale: %s", fiscal_year, client_id, reason
        )
        db.refresh(snapshot)
        return snapshot

    @classmethod
    def read_snapshot(
        cls,
        db: Session,
        client_id: str,
        module: models.BillingModule,
        fiscal_year: int,
        *,
        rebuild_if_stale: Optional[bool] = None,
    ) -> models.AggregationSnapshot:
        rebuild = get_settings().auto_rebuild_stale if rebuild_if_stale is None else rebuild_if_stale
        snapshot = cls._get_snapshot(db, client_id, module, fiscal_year)
        if snapshot is not None and snapshot.status == models.SnapshotStatus.FRESH:
            return snapshot
        if rebuild:
            return cls.rebuild_all(db, client_id, module, fiscal_year)
        if snapshot is None:
            raise NotFound(
                f"No {module.value} snapshot for FY{fiscal_year} of client {client_id}"
            )
        return snapshot

    @staticmethod
    def sorted_entries(
        snapshot: models.AggregationSnapshot,
    ) -> list[models.AggregationSnapshotEntry]:
        return sorted(snapshot.entries, key=lambda entry: (entry.unit_code, entry.period_index))
