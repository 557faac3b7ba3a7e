"""Error taxonomy shared by the billing services."""

from __future__ import annotations


class BillingError(RuntimeError):
    """Base class for billing failures.

    ``code`` is a stable machine-readable identifier returned to API callers
    next to the human readable message.
    """

    code = "billing_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(BillingError):
    """Input rejected before any state was touched."""

    code = "validation_error"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class NotFound(BillingError):
    code = "not_found"


class InconsistentState(BillingError):
    """Stored state contradicts the operation (duplicates, broken invariants)."""

    code = "inconsistent_state"


class TransientStoreError(BillingError):
    """The store failed; the operation was rolled back and may be retried."""

    code = "store_unavailable"


class ConcurrentModification(TransientStoreError):
    code = "concurrent_modification"
