"""Payment audit trail entries."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from .. import models


class PaymentAuditService:
    @staticmethod
    def payment_snapshot(payment: models.Payment) -> dict[str, Any]:
        """JSON-safe copy of a payment and its allocation lines."""

        return {
            "payment_id": str(payment.id),
            "unit_id": str(payment.unit_id),
            "client_id": str(payment.client_id),
            "module": models.BillingModule(payment.module).value,
            "fiscal_year": payment.fiscal_year,
            "amount_cents": payment.amount_cents,
            "paid_on": payment.paid_on.isoformat() if payment.paid_on else None,
            "method": models.PaymentMethod(payment.method).value,
            "reference": payment.reference,
            "recorded_by": payment.recorded_by,
            "note": payment.note,
            "category_label": payment.category_label,
            "credit_balance_before_cents": payment.credit_balance_before_cents,
            "credit_balance_after_cents": payment.credit_balance_after_cents,
            "allocations": [
                {
                    "allocation_code": line.allocation_code,
                    "kind": models.AllocationKind(line.kind).value,
                    "amount_cents": line.amount_cents,
                    "charge_id": str(line.charge_id) if line.charge_id else None,
                    "period_key": line.period_key,
                    "category_name": line.category_name,
                    "label": line.label,
                }
                for line in payment.allocations
            ],
        }

    @classmethod
    def record(
        cls,
        db: Session,
        payment: models.Payment,
        action: models.PaymentAuditAction,
        *,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> models.PaymentAuditLog:
        entry = models.PaymentAuditLog(
            payment_id=payment.id,
            action=action,
            performed_by=performed_by,
            notes=notes,
            snapshot=cls.payment_snapshot(payment),
        )
        db.add(entry)
        return entry

    @staticmethod
    def trail(db: Session, payment_id: str) -> list[models.PaymentAuditLog]:
        return (
            db.query(models.PaymentAuditLog)
            .filter(models.PaymentAuditLog.payment_id == payment_id)
            .order_by(models.PaymentAuditLog.performed_at)
            .all()
        )
