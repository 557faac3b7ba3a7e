"""Per-module billing configuration for a client."""

from __future__ import annotations

import enum
import uuid
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, CentsType


class BillingModule(str, enum.Enum):
    """Billing modules sharing the ledger engine."""

    HOA = "hoa"
    WATER = "water"


class BillingFrequency(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class PenaltyMode(str, enum.Enum):
    """How late penalties grow once the grace period has elapsed."""

    COMPOUNDING = "compounding"
    SIMPLE = "simple"
    NONE = "none"


class AllocationPolicy(str, enum.Enum):
    """How a payment is split between base and penalty inside one charge."""

    BASE_FIRST = "base_first"
    PENALTY_FIRST = "penalty_first"
    PROPORTIONAL = "proportional"


CREDIT_CATEGORY_NAME = "Account Credit"

MODULE_CATEGORY_NAMES: dict[BillingModule, tuple[str, str]] = {
    BillingModule.HOA: ("HOA Dues", "HOA Penalties"),
    BillingModule.WATER: ("Water Consumption", "Water Penalties"),
}


def _enum_type(enum_cls: type[enum.Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        validate_strings=True,
    )


BILLING_MODULE_ENUM = _enum_type(BillingModule, "billing_module_enum")
BILLING_FREQUENCY_ENUM = _enum_type(BillingFrequency, "billing_frequency_enum")
PENALTY_MODE_ENUM = _enum_type(PenaltyMode, "penalty_mode_enum")
ALLOCATION_POLICY_ENUM = _enum_type(AllocationPolicy, "allocation_policy_enum")


class BillingConfig(Base):
    """Billing rules for one module of one client."""

    __tablename__ = "billing_configs"
    __table_args__ = (
        UniqueConstraint("client_id", "module", name="billing_configs_unique_client_module"),
        CheckConstraint("due_day BETWEEN 1 AND 28", name="ck_billing_configs_due_day"),
        CheckConstraint("penalty_rate >= 0", name="ck_billing_configs_penalty_rate"),
        CheckConstraint("grace_days >= 0", name="ck_billing_configs_grace_days"),
        CheckConstraint("rate_per_m3_cents >= 0", name="ck_billing_configs_rate_per_m3"),
        CheckConstraint("minimum_charge_cents >= 0", name="ck_billing_configs_minimum_charge"),
    )

    id = Column("billing_config_id", GUID(), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    module = Column(BILLING_MODULE_ENUM, nullable=False)
    frequency = Column(BILLING_FREQUENCY_ENUM, nullable=False, default=BillingFrequency.MONTHLY)
    due_day = Column(Integer, nullable=False, default=1)
    penalty_mode = Column(PENALTY_MODE_ENUM, nullable=False, default=PenaltyMode.COMPOUNDING)
    penalty_rate = Column(Numeric(8, 6), nullable=False, default=Decimal("0"))
    grace_days = Column(Integer, nullable=False, default=10)
    allocation_policy = Column(
        ALLOCATION_POLICY_ENUM, nullable=False, default=AllocationPolicy.BASE_FIRST
    )
    # Water only: price per cubic metre and the floor of a metered bill.
    rate_per_m3_cents = Column(CentsType(), nullable=False, default=0)
    minimum_charge_cents = Column(CentsType(), nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    client = relationship("Client", back_populates="billing_configs")
