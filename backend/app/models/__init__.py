"""Expose SQLAlchemy models for convenient imports."""

from .aggregation import AggregationSnapshot, AggregationSnapshotEntry, SnapshotStatus
from .audit import PaymentAuditAction, PaymentAuditLog
from .billing_config import (
    CREDIT_CATEGORY_NAME,
    MODULE_CATEGORY_NAMES,
    AllocationPolicy,
    BillingConfig,
    BillingFrequency,
    BillingModule,
    PenaltyMode,
)
from .charge import Charge, ChargeStatus, charge_status_for
from .client import Client
from .credit_history import CreditBalanceEntry, CreditSource
from .operational_metric import OperationalMetricEvent
from .payment import AllocationKind, Payment, PaymentAllocation, PaymentMethod
from .unit import Unit

__all__ = [
    "AggregationSnapshot",
    "AggregationSnapshotEntry",
    "SnapshotStatus",
    "PaymentAuditAction",
    "PaymentAuditLog",
    "CREDIT_CATEGORY_NAME",
    "MODULE_CATEGORY_NAMES",
    "AllocationPolicy",
    "BillingConfig",
    "BillingFrequency",
    "BillingModule",
    "PenaltyMode",
    "Charge",
    "ChargeStatus",
    "charge_status_for",
    "Client",
    "CreditBalanceEntry",
    "CreditSource",
    "OperationalMetricEvent",
    "AllocationKind",
    "Payment",
    "PaymentAllocation",
    "PaymentMethod",
    "Unit",
]
