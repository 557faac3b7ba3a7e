"""SQLAlchemy model for billable units."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, CentsType


class Unit(Base):
    """A billable unit (apartment, lot) inside a client property.

    ``credit_balance_cents`` is signed: negative means the unit owes money
    beyond its scheduled charges. Only the charge ledger writes it.
    """

    __tablename__ = "units"
    __table_args__ = (
        UniqueConstraint("client_id", "unit_code", name="units_unique_client_code"),
        CheckConstraint("periodic_charge_cents >= 0", name="ck_units_periodic_charge"),
    )

    id = Column("unit_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_code = Column(String(40), nullable=False)
    owner_name = Column(String(200), nullable=True)
    periodic_charge_cents = Column(CentsType(), nullable=False, default=0)
    credit_balance_cents = Column(CentsType(), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    client = relationship("Client", back_populates="units")
    charges = relationship("Charge", back_populates="unit")
    credit_entries = relationship(
        "CreditBalanceEntry",
        back_populates="unit",
        order_by="CreditBalanceEntry.entry_number",
    )

    __mapper_args__ = {"version_id_col": version}
