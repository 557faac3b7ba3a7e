"""Business logic for payment operations."""

from __future__ import annotations

import html as htmllib
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from time import perf_counter
from typing import Iterable, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from .. import models, schemas
from ..money import format_major
from .aggregation import AggregationService
from .allocation import AllocationPlan, ChangedPeriod, ChargeState, PaymentAllocator
from .audit import PaymentAuditService
from .billing_config import BillingConfigService
from .errors import (
    BillingError,
    ConcurrentModification,
    InconsistentState,
    NotFound,
    TransientStoreError,
)
from .ledger import ChargeLedger
from .observability import MetricOutcome, ObservabilityService
from .penalties import PenaltyService, policy_for_config
from .reversal import ReversalResult, ReversalService

LOGGER = logging.getLogger(__name__)


@dataclass
class PaymentRecordResult:
    """Result from recording a payment including its allocation plan."""

    payment: models.Payment
    plan: AllocationPlan
    changed_periods: tuple[ChangedPeriod, ...]
    snapshot: Optional[models.AggregationSnapshot]


@dataclass
class PaymentReversalResult:
    reversal: ReversalResult
    snapshot: Optional[models.AggregationSnapshot]


def _merge_periods(*groups: Iterable[ChangedPeriod]) -> tuple[ChangedPeriod, ...]:
    merged: list[ChangedPeriod] = []
    for group in groups:
        for period in group:
            if period not in merged:
                merged.append(period)
    return tuple(
        sorted(merged, key=lambda item: (item.unit_id, item.fiscal_year, item.period_index))
    )


class PaymentService:
    """Operations for reading, recording and reversing unit payments."""

    @staticmethod
    def list_payments(
        db: Session,
        *,
        unit_id: Optional[str] = None,
        client_id: Optional[str] = None,
        fiscal_year: Optional[int] = None,
        module: Optional[models.BillingModule] = None,
        reference: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[Iterable[models.Payment], int]:
        query = db.query(models.Payment).options(selectinload(models.Payment.allocations))

        if unit_id:
            query = query.filter(models.Payment.unit_id == unit_id)
        if client_id:
            query = query.filter(models.Payment.client_id == client_id)
        if fiscal_year is not None:
            query = query.filter(models.Payment.fiscal_year == fiscal_year)
        if module:
            query = query.filter(models.Payment.module == module)
        if reference:
            query = query.filter(models.Payment.reference == reference.strip())

        total = query.count()
        items = (
            query.order_by(
                models.Payment.paid_on.desc(),
                models.Payment.created_at.desc(),
            )
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @staticmethod
    def get_payment(db: Session, payment_id: str) -> models.Payment:
        payment = (
            db.query(models.Payment)
            .options(selectinload(models.Payment.allocations), selectinload(models.Payment.unit))
            .filter(models.Payment.id == payment_id)
            .first()
        )
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found")
        return payment

    @staticmethod
    def _ensure_no_duplicate_reference(
        db: Session, unit_id: str, reference: Optional[str]
    ) -> None:
        if not reference:
            return
        existing = (
            db.query(models.Payment.id)
            .filter(
                models.Payment.unit_id == unit_id,
                models.Payment.reference == reference,
            )
            .first()
        )
        if existing:
            raise InconsistentState(
                f"A payment with reference {reference!r} already exists for this unit "
                f"({existing[0]})",
                code="duplicate_reference",
            )

    @staticmethod
    def _plan(
        db: Session, unit: models.Unit, data: schemas.PaymentCreate, paid_on: date
    ) -> tuple[AllocationPlan, list[models.Charge], list[ChangedPeriod]]:
        """Accrue penalties up to ``paid_on`` and compute the allocation."""

        config = BillingConfigService.get_config(db, unit.client_id, data.module)
        accrued = PenaltyService.accrue_outstanding(
            db,
            unit,
            data.module,
            data.fiscal_year,
            paid_on,
            policy=policy_for_config(config),
        )
        charges = ChargeLedger.outstanding_charges(db, unit.id, data.module, data.fiscal_year)
        plan = PaymentAllocator.allocate(
            data.amount_cents,
            unit.credit_balance_cents or 0,
            [ChargeState.from_charge(charge) for charge in charges],
            module=data.module,
            unit_id=str(unit.id),
            unit_label=unit.unit_code,
            policy=models.AllocationPolicy(config.allocation_policy),
            use_credit=data.use_credit,
        )
        return plan, charges, accrued

    @classmethod
    def preview_payment(cls, db: Session, data: schemas.PaymentCreate) -> AllocationPlan:
        """Compute the allocation a payment would produce without storing anything."""

        try:
            unit = ChargeLedger.get_unit(db, data.unit_id)
            plan, _, _ = cls._plan(db, unit, data, data.paid_on or date.today())
            return plan
        finally:
            db.rollback()

    @classmethod
    def record_payment(cls, db: Session, data: schemas.PaymentCreate) -> PaymentRecordResult:
        start = perf_counter()
        paid_on = data.paid_on or date.today()
        tags: dict[str, object] = {
            "unit_id": data.unit_id,
            "module": data.module.value,
            "fiscal_year": data.fiscal_year,
            "use_credit": data.use_credit,
            "has_reference": bool(data.reference),
        }
        client_id: Optional[str] = None

        try:
            unit = ChargeLedger.get_unit(db, data.unit_id, for_update=True)
            client_id = str(unit.client_id)
            cls._ensure_no_duplicate_reference(db, unit.id, data.reference)

            plan, charges, accrued = cls._plan(db, unit, data, paid_on)
            charges_by_id = {str(charge.id): charge for charge in charges}

            payment_id = str(uuid.uuid4())
            payment = models.Payment(
                id=payment_id,
                unit_id=unit.id,
                client_id=unit.client_id,
                module=data.module,
                fiscal_year=data.fiscal_year,
                amount_cents=plan.amount_cents,
                paid_on=paid_on,
                method=data.method,
                note=data.note,
                reference=data.reference,
                recorded_by=data.recorded_by,
                category_label=plan.category_label,
                credit_balance_before_cents=plan.credit_balance_before_cents,
                credit_balance_after_cents=plan.credit_balance_after_cents,
            )

            for line in plan.lines:
                if line.kind.targets_charge:
                    ChargeLedger.apply_payment_to_charge(
                        charges_by_id[line.charge_id], line.amount_cents, line.kind, tolerance=0
                    )
                payment.allocations.append(
                    models.PaymentAllocation(
                        sequence=line.sequence,
                        allocation_code=line.allocation_code,
                        charge_id=line.charge_id,
                        period_key=line.period_key,
                        kind=line.kind,
                        amount_cents=line.amount_cents,
                        category_name=line.category_name,
                        label=line.label,
                    )
                )
            db.add(payment)

            ChargeLedger.change_credit_balance(
                db,
                unit,
                plan.credit_delta_cents,
                source=models.CreditSource.PAYMENT,
                payment_id=payment_id,
                note=f"Payment {data.reference or payment_id}",
                recorded_by=data.recorded_by,
            )
            PaymentAuditService.record(
                db, payment, models.PaymentAuditAction.CREATED, performed_by=data.recorded_by
            )
            db.commit()
        except BillingError as exc:
            db.rollback()
            ObservabilityService.record_validation_result(
                db,
                "payments.validation_failed",
                outcome=MetricOutcome.REJECTED,
                reason=str(exc),
                code=exc.code,
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise
        except StaleDataError as exc:
            db.rollback()
            ObservabilityService.record_validation_result(
                db,
                "payments.persistence_failed",
                outcome=MetricOutcome.ERROR,
                reason=str(exc),
                code=ConcurrentModification.code,
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise ConcurrentModification(
                f"Unit {data.unit_id} was modified concurrently; retry the payment"
            ) from exc
        except IntegrityError as exc:
            db.rollback()
            if data.reference:
                raise InconsistentState(
                    f"A payment with reference {data.reference!r} already exists for this unit",
                    code="duplicate_reference",
                ) from exc
            raise TransientStoreError("Unable to record payment at this time.") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to record payment for unit %s", data.unit_id)
            if client_id is not None:
                try:
                    AggregationService.mark_stale(
                        db,
                        client_id,
                        data.module,
                        data.fiscal_year,
                        reason=f"payment failed: {exc}",
                    )
                except TransientStoreError:
                    LOGGER.warning("Snapshot for client %s left unflagged", client_id)
            ObservabilityService.record_validation_result(
                db,
                "payments.persistence_failed",
                outcome=MetricOutcome.ERROR,
                reason=str(exc),
                code=TransientStoreError.code,
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise TransientStoreError("Unable to record payment at this time.") from exc

        ObservabilityService.record_event(
            db,
            "payments.recorded",
            MetricOutcome.SUCCESS,
            duration_ms=(perf_counter() - start) * 1000,
            tags={**tags, "lines": len(plan.lines)},
        )
        changed = _merge_periods(plan.changed_periods, accrued)
        snapshot = AggregationService.patch_changed(
            db, client_id, data.module, changed, as_of=paid_on
        )
        payment = cls.get_payment(db, payment_id)
        LOGGER.info(
            "Recorded payment %s of %s cents for unit %s",
            payment_id,
            plan.amount_cents,
            data.unit_id,
            extra={"category_label": plan.category_label, "lines": len(plan.lines)},
        )
        return PaymentRecordResult(
            payment=payment,
            plan=plan,
            changed_periods=plan.changed_periods,
            snapshot=snapshot,
        )

    @classmethod
    def delete_payment(
        cls, db: Session, payment_id: str, *, performed_by: Optional[str] = None
    ) -> PaymentReversalResult:
        start = perf_counter()
        tags = {"payment_id": payment_id}
        try:
            reversal = ReversalService.reverse_payment(db, payment_id, performed_by=performed_by)
        except BillingError as exc:
            outcome = (
                MetricOutcome.ERROR
                if isinstance(exc, TransientStoreError)
                else MetricOutcome.REJECTED
            )
            ObservabilityService.record_validation_result(
                db,
                "payments.reversal_failed",
                outcome=outcome,
                reason=str(exc),
                code=exc.code,
                tags=tags,
                duration_ms=(perf_counter() - start) * 1000,
            )
            raise

        ObservabilityService.record_event(
            db,
            "payments.reversed",
            MetricOutcome.SUCCESS,
            duration_ms=(perf_counter() - start) * 1000,
            tags={**tags, "periods": len(reversal.changed_periods)},
        )
        snapshot = AggregationService.patch_changed(
            db,
            reversal.client_id,
            reversal.module,
            reversal.changed_periods,
            as_of=reversal.paid_on,
        )
        return PaymentReversalResult(reversal=reversal, snapshot=snapshot)

    @staticmethod
    def build_receipt(payment: models.Payment) -> str:
        """Return an HTML receipt ready for printing."""

        def _esc(value: object, fallback: str = "") -> str:
            return htmllib.escape(str(value if value is not None else fallback))

        unit = payment.unit
        unit_code = getattr(unit, "unit_code", None) or str(payment.unit_id)
        owner_name = getattr(unit, "owner_name", None)
        module = models.BillingModule(payment.module)
        method = models.PaymentMethod(payment.method)

        rows = "\n".join(
            f'      <tr><td>{_esc(line.allocation_code)}</td><td>{_esc(line.label)}</td>'
            f'<td>{_esc(line.category_name)}</td><td class="amount">{_esc(format_major(line.amount_cents))}</td></tr>'
            for line in payment.allocations
        )

        balance_after = payment.credit_balance_after_cents or 0
        balance_label = "Account balance settled"
        if balance_after > 0:
            balance_label = f"Credit on account: {format_major(balance_after)}"
        elif balance_after < 0:
            balance_label = f"Balance owed: {format_major(-balance_after)}"

        note_row = (
            f'<div class="row"><span class="label">Note</span><span class="value">{_esc(payment.note)}</span></div>'
            if payment.note
            else ""
        )

        return f"""
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Payment receipt</title>
  <style>
    body {{ font-family: system-ui, -apple-system, sans-serif; background: #f8fafc; color: #0f172a; }}
    .receipt {{ max-width: 560px; margin: 24px auto; padding: 24px; background: white; border-radius: 12px; }}
    .meta {{ color: #475569; font-size: 13px; }}
    .section {{ margin-top: 16px; padding-top: 12px; border-top: 1px solid #e2e8f0; }}
    .row {{ display: flex; justify-content: space-between; margin: 6px 0; font-size: 14px; }}
    .label {{ color: #475569; }}
    .value {{ font-weight: 600; text-align: right; }}
    table {{ width: 100%; border-collapse: collapse; font-size: 13px; }}
    td {{ padding: 4px 0; }}
    td.amount {{ text-align: right; }}
  </style>
</head>
<body>
  <div class="receipt">
    <div class="row"><strong>Payment receipt</strong><span class="meta">{_esc(payment.paid_on)}</span></div>
    <div class="meta">Transaction ID: {_esc(payment.id)}</div>

    <div class="section">
      <div class="row"><span class="label">Unit</span><span class="value">{_esc(unit_code)}</span></div>
      <div class="row"><span class="label">Owner</span><span class="value">{_esc(owner_name, "-")}</span></div>
      <div class="row"><span class="label">Module</span><span class="value">{_esc(module.value.upper())} FY{_esc(payment.fiscal_year)}</span></div>
      <div class="row"><span class="label">Method</span><span class="value">{_esc(method.value)}</span></div>
      <div class="row"><span class="label">Reference</span><span class="value">{_esc(payment.reference, "-")}</span></div>
    </div>

    <div class="section">
      <div class="row"><span class="label">Amount</span><span class="value">{_esc(format_major(payment.amount_cents))}</span></div>
      <div class="row"><span class="label">Category</span><span class="value">{_esc(payment.category_label)}</span></div>
    </div>

    <div class="section">
      <table>
{rows}
      </table>
    </div>

    <div class="section">
      <div class="row"><span class="label">{_esc(balance_label)}</span><span class="value"></span></div>
      {note_row}
    </div>
  </div>
</body>
</html>
"""
