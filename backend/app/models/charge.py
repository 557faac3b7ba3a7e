"""Models for per-period scheduled charges."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, CentsType
from .billing_config import BILLING_MODULE_ENUM


class ChargeStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


CHARGE_STATUS_ENUM = SAEnum(
    ChargeStatus,
    name="charge_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


def charge_status_for(paid_cents: int, total_cents: int) -> ChargeStatus:
    """Derive a charge status from its paid and total amounts."""

    if paid_cents >= total_cents:
        return ChargeStatus.PAID
    if paid_cents <= 0:
        return ChargeStatus.UNPAID
    return ChargeStatus.PARTIAL


class Charge(Base):
    """One billing period of one module for one unit.

    Charges are never deleted; payments and reversals only move the paid
    components and penalty accrual only raises ``penalty_amount_cents``.
    """

    __tablename__ = "charges"
    __table_args__ = (
        UniqueConstraint(
            "unit_id",
            "module",
            "fiscal_year",
            "period_index",
            name="charges_unique_unit_module_period",
        ),
        CheckConstraint("base_amount_cents >= 0", name="ck_charges_base_non_negative"),
        CheckConstraint("penalty_amount_cents >= 0", name="ck_charges_penalty_non_negative"),
        CheckConstraint(
            "base_paid_cents >= 0 AND base_paid_cents <= base_amount_cents",
            name="ck_charges_base_paid_range",
        ),
        CheckConstraint(
            "penalty_paid_cents >= 0 AND penalty_paid_cents <= penalty_amount_cents",
            name="ck_charges_penalty_paid_range",
        ),
        CheckConstraint(
            "current_reading IS NULL OR prior_reading IS NULL OR current_reading >= prior_reading",
            name="ck_charges_reading_order",
        ),
    )

    id = Column("charge_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    module = Column(BILLING_MODULE_ENUM, nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    period_index = Column(Integer, nullable=False)
    period_key = Column(String(7), nullable=False)
    due_date = Column(Date, nullable=False)
    base_amount_cents = Column(CentsType(), nullable=False, default=0)
    penalty_amount_cents = Column(CentsType(), nullable=False, default=0)
    base_paid_cents = Column(CentsType(), nullable=False, default=0)
    penalty_paid_cents = Column(CentsType(), nullable=False, default=0)
    status = Column(CHARGE_STATUS_ENUM, nullable=False, default=ChargeStatus.UNPAID)
    last_penalty_update = Column(Date, nullable=True)
    # Meter readings in cubic metres; set on metered water bills only.
    prior_reading = Column(Integer, nullable=True)
    current_reading = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    unit = relationship("Unit", back_populates="charges")
    allocations = relationship(
        "PaymentAllocation",
        viewonly=True,
        order_by="PaymentAllocation.sequence",
    )

    @property
    def consumption(self) -> int | None:
        if self.prior_reading is None or self.current_reading is None:
            return None
        return self.current_reading - self.prior_reading

    @property
    def paid_amount_cents(self) -> int:
        return (self.base_paid_cents or 0) + (self.penalty_paid_cents or 0)

    @property
    def total_amount_cents(self) -> int:
        return (self.base_amount_cents or 0) + (self.penalty_amount_cents or 0)

    @property
    def remaining_cents(self) -> int:
        return max(self.total_amount_cents - self.paid_amount_cents, 0)

    @property
    def base_remaining_cents(self) -> int:
        return max((self.base_amount_cents or 0) - (self.base_paid_cents or 0), 0)

    @property
    def penalty_remaining_cents(self) -> int:
        return max((self.penalty_amount_cents or 0) - (self.penalty_paid_cents or 0), 0)

    @property
    def payment_ids(self) -> list[str]:
        """Identifiers of the payments that paid this charge, oldest first."""

        seen: list[str] = []
        ordered = sorted(
            self.allocations,
            key=lambda item: (item.payment.paid_on, item.payment.created_at, item.sequence),
        )
        for allocation in ordered:
            if allocation.payment_id not in seen:
                seen.append(allocation.payment_id)
        return seen

    def sync_status(self) -> ChargeStatus:
        self.status = charge_status_for(self.paid_amount_cents, self.total_amount_cents)
        return self.status
