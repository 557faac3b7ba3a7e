"""SQLAlchemy model definitions for unit payments and their allocations."""

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
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, CentsType
from .billing_config import BILLING_MODULE_ENUM


class PaymentMethod(str, enum.Enum):
    """Supported payment methods."""

    CASH = "cash"
    TRANSFER = "transfer"
    CHECK = "check"
    CARD = "card"
    OTHER = "other"


class AllocationKind(str, enum.Enum):
    """Target of a single allocation line."""

    BASE_CHARGE = "base_charge"
    PENALTY = "penalty"
    CREDIT_REPAIR = "credit_repair"
    CREDIT_APPLIED = "credit_applied"
    CREDIT_CREATED = "credit_created"

    @property
    def targets_charge(self) -> bool:
        return self in (AllocationKind.BASE_CHARGE, AllocationKind.PENALTY)


PAYMENT_METHOD_ENUM = SAEnum(
    PaymentMethod,
    name="payment_method_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)

ALLOCATION_KIND_ENUM = SAEnum(
    AllocationKind,
    name="allocation_kind_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Payment(Base):
    """Immutable record of money received for a unit."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        UniqueConstraint("unit_id", "reference", name="payments_unique_unit_reference"),
    )

    id = Column("payment_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    module = Column(BILLING_MODULE_ENUM, nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    amount_cents = Column(CentsType(), nullable=False)
    paid_on = Column(Date, nullable=False)
    method = Column(PAYMENT_METHOD_ENUM, nullable=False, default=PaymentMethod.CASH)
    note = Column(Text, nullable=True)
    reference = Column(String(120), nullable=True)
    recorded_by = Column(String(120), nullable=True)
    category_label = Column(String(120), nullable=False)
    credit_balance_before_cents = Column(CentsType(), nullable=False)
    credit_balance_after_cents = Column(CentsType(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    unit = relationship("Unit")
    client = relationship("Client")
    allocations = relationship(
        "PaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.sequence",
    )


class PaymentAllocation(Base):
    """One line of a payment's distribution.

    ``credit_applied`` lines are negative; every other kind is positive. The
    lines of a payment always sum to the payment amount.
    """

    __tablename__ = "payment_allocations"
    __table_args__ = (
        UniqueConstraint("payment_id", "sequence", name="payment_allocations_unique_sequence"),
        CheckConstraint("amount_cents <> 0", name="ck_payment_allocations_amount_non_zero"),
    )

    id = Column("allocation_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = Column(
        GUID(),
        ForeignKey("payments.payment_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False)
    allocation_code = Column(String(16), nullable=False)
    charge_id = Column(
        GUID(),
        ForeignKey("charges.charge_id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    period_key = Column(String(7), nullable=True)
    kind = Column(ALLOCATION_KIND_ENUM, nullable=False)
    amount_cents = Column(CentsType(), nullable=False)
    category_name = Column(String(120), nullable=False)
    label = Column(String(200), nullable=False)

    payment = relationship("Payment", back_populates="allocations")
    charge = relationship("Charge")
