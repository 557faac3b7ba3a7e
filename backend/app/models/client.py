"""SQLAlchemy model definitions for property-management clients."""

from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID


class Client(Base):
    """A property or condominium whose units are billed."""

    __tablename__ = "clients"
    __table_args__ = (
        CheckConstraint(
            "fiscal_year_start_month BETWEEN 1 AND 12",
            name="ck_clients_fiscal_year_start_month",
        ),
    )

    id = Column("client_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    fiscal_year_start_month = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    units = relationship(
        "Unit",
        back_populates="client",
        cascade="all, delete-orphan",
        order_by="Unit.unit_code",
    )
    billing_configs = relationship(
        "BillingConfig",
        back_populates="client",
        cascade="all, delete-orphan",
    )
