"""Journal of unit credit balance changes."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    Column,
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


class CreditSource(str, enum.Enum):
    PAYMENT = "payment"
    REVERSAL = "reversal"
    ADJUSTMENT = "adjustment"


CREDIT_SOURCE_ENUM = SAEnum(
    CreditSource,
    name="credit_source_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class CreditBalanceEntry(Base):
    """One change of a unit's credit balance."""

    __tablename__ = "credit_balance_entries"
    __table_args__ = (
        UniqueConstraint("unit_id", "entry_number", name="credit_balance_entries_unique_number"),
    )

    id = Column("entry_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entry_number = Column(Integer, nullable=False)
    # Plain identifier: the entry outlives a reversed payment.
    payment_id = Column(GUID(), nullable=True, index=True)
    source = Column(CREDIT_SOURCE_ENUM, nullable=False)
    delta_cents = Column(CentsType(), nullable=False)
    balance_before_cents = Column(CentsType(), nullable=False)
    balance_after_cents = Column(CentsType(), nullable=False)
    note = Column(Text, nullable=True)
    recorded_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    unit = relationship("Unit", back_populates="credit_entries")
