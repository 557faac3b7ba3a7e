"""Exact reversal of a recorded payment from its allocation lines."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..money import Cents
from .aggregation import AggregationService
from .allocation import ChangedPeriod
from .audit import PaymentAuditService
from .errors import (
    BillingError,
    ConcurrentModification,
    InconsistentState,
    NotFound,
    TransientStoreError,
)
from .ledger import ChargeLedger

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReversalResult:
    payment_id: str
    unit_id: str
    client_id: str
    module: models.BillingModule
    fiscal_year: int
    paid_on: date
    credit_balance_before_cents: Cents
    credit_balance_after_cents: Cents
    changed_periods: tuple[ChangedPeriod, ...]

    @property
    def credit_delta_cents(self) -> Cents:
        return Cents(self.credit_balance_after_cents - self.credit_balance_before_cents)


class ReversalService:
    """Undo a payment using nothing but its stored allocation lines.

    Base and penalty lines un-pay the charge component they paid. Credit lines
    subtract their signed amount from the balance: a repair pushes the balance
    back down, created credit is removed and applied credit is restored.
    """

    @staticmethod
    def _validate(
        payment: models.Payment,
        charges: dict[str, models.Charge],
    ) -> tuple["OrderedDict[tuple[str, models.AllocationKind], int]", int]:
        """Check every line before anything is mutated.

        Returns the per-component amounts to un-pay and the credit delta.
        """

        component_totals: "OrderedDict[tuple[str, models.AllocationKind], int]" = OrderedDict()
        credit_delta = 0
        line_total = 0
        for line in payment.allocations:
            kind = models.AllocationKind(line.kind)
            line_total += line.amount_cents
            if kind.targets_charge:
                if line.charge_id is None or str(line.charge_id) not in charges:
                    raise InconsistentState(
                        f"Allocation {line.allocation_code} references a missing charge"
                    )
                key = (str(line.charge_id), kind)
                component_totals[key] = component_totals.get(key, 0) + line.amount_cents
            else:
                credit_delta -= line.amount_cents

        if line_total != payment.amount_cents:
            raise InconsistentState(
                f"Allocations of payment {payment.id} sum to {line_total}, "
                f"expected {payment.amount_cents}"
            )
        for (charge_id, kind), amount in component_totals.items():
            ChargeLedger.check_reversal(charges[charge_id], amount, kind)
        return component_totals, credit_delta

    @classmethod
    def reverse_payment(
        cls,
        db: Session,
        payment_id: str,
        *,
        performed_by: Optional[str] = None,
    ) -> ReversalResult:
        """Reverse and delete a payment in a single transaction."""

        payment = db.query(models.Payment).filter(models.Payment.id == payment_id).first()
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found")

        client_id = str(payment.client_id)
        module = models.BillingModule(payment.module)
        fiscal_year = payment.fiscal_year

        try:
            unit = ChargeLedger.get_unit(db, payment.unit_id, for_update=True)
            charge_ids = {str(line.charge_id) for line in payment.allocations if line.charge_id}
            charges: dict[str, models.Charge] = {}
            if charge_ids:
                locked = (
                    db.query(models.Charge)
                    .filter(models.Charge.id.in_(charge_ids))
                    .with_for_update()
                    .all()
                )
                charges = {str(charge.id): charge for charge in locked}

            component_totals, credit_delta = cls._validate(payment, charges)

            balance_before = unit.credit_balance_cents or 0
            changed: list[ChangedPeriod] = []
            for (charge_id, kind), amount in component_totals.items():
                charge = ChargeLedger.reverse_allocation(charges[charge_id], amount, kind)
                period = ChangedPeriod(
                    unit_id=str(charge.unit_id),
                    fiscal_year=charge.fiscal_year,
                    period_index=charge.period_index,
                )
                if period not in changed:
                    changed.append(period)

            ChargeLedger.change_credit_balance(
                db,
                unit,
                credit_delta,
                source=models.CreditSource.REVERSAL,
                payment_id=str(payment.id),
                note=f"Reversal of payment {payment.reference or payment.id}",
                recorded_by=performed_by,
            )
            PaymentAuditService.record(
                db, payment, models.PaymentAuditAction.DELETED, performed_by=performed_by
            )
            result = ReversalResult(
                payment_id=str(payment.id),
                unit_id=str(unit.id),
                client_id=client_id,
                module=module,
                fiscal_year=fiscal_year,
                paid_on=payment.paid_on,
                credit_balance_before_cents=Cents(balance_before),
                credit_balance_after_cents=Cents(unit.credit_balance_cents),
                changed_periods=tuple(changed),
            )
            db.delete(payment)
            db.commit()
        except BillingError:
            db.rollback()
            raise
        except StaleDataError as exc:
            db.rollback()
            raise ConcurrentModification(
                f"Unit of payment {payment_id} was modified concurrently; retry the deletion"
            ) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to reverse payment %s", payment_id)
            try:
                AggregationService.mark_stale(
                    db, client_id, module, fiscal_year, reason=f"reversal failed: {exc}"
                )
            except TransientStoreError:
                LOGGER.warning("Snapshot FY%s of client %s left unflagged", fiscal_year, client_id)
            raise TransientStoreError("Unable to delete payment at this time.") from exc

        LOGGER.info(
            "Reversed payment %s",
            result.payment_id,
            extra={"credit_delta": result.credit_delta_cents, "periods": len(result.changed_periods)},
        )
        return result
