"""Denormalized per-fiscal-year billing snapshots."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
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
from .charge import CHARGE_STATUS_ENUM


class SnapshotStatus(str, enum.Enum):
    FRESH = "fresh"
    STALE = "stale"


SNAPSHOT_STATUS_ENUM = SAEnum(
    SnapshotStatus,
    name="snapshot_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class AggregationSnapshot(Base):
    """Header of the cached per-unit, per-period view of one fiscal year."""

    __tablename__ = "aggregation_snapshots"
    __table_args__ = (
        UniqueConstraint(
            "client_id",
            "module",
            "fiscal_year",
            name="aggregation_snapshots_unique_scope",
        ),
    )

    id = Column("snapshot_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    module = Column(BILLING_MODULE_ENUM, nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    status = Column(SNAPSHOT_STATUS_ENUM, nullable=False, default=SnapshotStatus.FRESH)
    stale_reason = Column(Text, nullable=True)
    generated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    entries = relationship(
        "AggregationSnapshotEntry",
        back_populates="snapshot",
        cascade="all, delete-orphan",
    )


class AggregationSnapshotEntry(Base):
    """Cached figures for one unit and one period."""

    __tablename__ = "aggregation_snapshot_entries"
    __table_args__ = (
        UniqueConstraint(
            "snapshot_id",
            "unit_id",
            "period_index",
            name="aggregation_snapshot_entries_unique_unit_period",
        ),
    )

    id = Column("entry_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    snapshot_id = Column(
        GUID(),
        ForeignKey("aggregation_snapshots.snapshot_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_id = Column(
        GUID(),
        ForeignKey("units.unit_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_code = Column(String(40), nullable=False)
    period_index = Column(Integer, nullable=False)
    period_key = Column(String(7), nullable=False)
    due_date = Column(Date, nullable=False)
    base_amount_cents = Column(CentsType(), nullable=False, default=0)
    penalty_amount_cents = Column(CentsType(), nullable=False, default=0)
    paid_amount_cents = Column(CentsType(), nullable=False, default=0)
    total_due_cents = Column(CentsType(), nullable=False, default=0)
    past_due_carryover_cents = Column(CentsType(), nullable=False, default=0)
    total_to_clear_cents = Column(CentsType(), nullable=False, default=0)
    status = Column(CHARGE_STATUS_ENUM, nullable=False)
    last_payment_id = Column(GUID(), nullable=True)

    snapshot = relationship("AggregationSnapshot", back_populates="entries")
