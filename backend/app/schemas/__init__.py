"""Expose Pydantic schemas for convenient imports."""

from .aggregation import SnapshotEntryRead, SnapshotRead
from .client import (
    BillingConfigRead,
    BillingConfigUpdate,
    ClientBase,
    ClientCreate,
    ClientListResponse,
    ClientRead,
    UnitBase,
    UnitCreate,
    UnitImportError,
    UnitImportRequest,
    UnitImportSummary,
    UnitRead,
)
from .common import ErrorDetail, Identifier, PaginatedResponse
from .consistency import (
    AllocationMismatch,
    ChargeViolation,
    CreditMismatch,
    LedgerConsistencyReport,
    SnapshotDrift,
)
from .ledger import (
    ChargeGenerateRequest,
    ChargeGenerateResponse,
    ChargeRead,
    CreditAdjustmentCreate,
    CreditHistoryEntryRead,
    MeterReadingCreate,
    UnpaidPeriodRead,
    UnpaidSummaryResponse,
    WaterBillGenerateRequest,
)
from .payment import (
    AllocationRead,
    ChangedPeriodRead,
    PaymentCreate,
    PaymentListResponse,
    PaymentPreviewResponse,
    PaymentRead,
    PaymentRecordResponse,
    PaymentReversalResponse,
)

__all__ = [
    "SnapshotEntryRead",
    "SnapshotRead",
    "BillingConfigRead",
    "BillingConfigUpdate",
    "ClientBase",
    "ClientCreate",
    "ClientListResponse",
    "ClientRead",
    "UnitBase",
    "UnitCreate",
    "UnitImportError",
    "UnitImportRequest",
    "UnitImportSummary",
    "UnitRead",
    "ErrorDetail",
    "Identifier",
    "PaginatedResponse",
    "AllocationMismatch",
    "ChargeViolation",
    "CreditMismatch",
    "LedgerConsistencyReport",
    "SnapshotDrift",
    "ChargeGenerateRequest",
    "ChargeGenerateResponse",
    "ChargeRead",
    "CreditAdjustmentCreate",
    "CreditHistoryEntryRead",
    "MeterReadingCreate",
    "UnpaidPeriodRead",
    "UnpaidSummaryResponse",
    "WaterBillGenerateRequest",
    "AllocationRead",
    "ChangedPeriodRead",
    "PaymentCreate",
    "PaymentListResponse",
    "PaymentPreviewResponse",
    "PaymentRead",
    "PaymentRecordResponse",
    "PaymentReversalResponse",
]
