"""Service layer encapsulating business logic for API routers."""

from .aggregation import AggregationService
from .allocation import AllocationPlan, ChangedPeriod, PaymentAllocator
from .audit import PaymentAuditService
from .billing_config import BillingConfigService
from .clients import ClientService
from .data_consistency import LedgerConsistencyService
from .errors import (
    BillingError,
    ConcurrentModification,
    InconsistentState,
    InvalidAmount,
    NotFound,
    TransientStoreError,
    ValidationError,
)
from .fiscal_periods import FiscalPeriodService
from .ledger import ChargeLedger
from .observability import ObservabilityService
from .payments import PaymentService
from .penalties import PenaltyService
from .reversal import ReversalService

__all__ = [
    "AggregationService",
    "AllocationPlan",
    "ChangedPeriod",
    "PaymentAllocator",
    "PaymentAuditService",
    "BillingConfigService",
    "ClientService",
    "LedgerConsistencyService",
    "BillingError",
    "ConcurrentModification",
    "InconsistentState",
    "InvalidAmount",
    "NotFound",
    "TransientStoreError",
    "ValidationError",
    "FiscalPeriodService",
    "ChargeLedger",
    "ObservabilityService",
    "PaymentService",
    "PenaltyService",
    "ReversalService",
]
