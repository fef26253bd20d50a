"""Error kinds raised by the billing ledger."""
from __future__ import annotations


class BillingError(Exception):
    """Base class for all ledger errors."""


class ValidationError(BillingError):
    """Malformed or out-of-range input (bad amount, tax split, overclaim)."""


class InvalidStateError(BillingError):
    """The document's current status forbids the requested mutation."""


class InvalidTransitionError(BillingError):
    """A claim action is not defined for the claim's current state."""

    def __init__(self, status: str, action: str) -> None:
        super().__init__(f"Action '{action}' is not allowed for a claim in status {status}")
        self.status = status
        self.action = action


class NotFoundError(BillingError):
    """A referenced invoice, credit note or claim does not exist."""


class ConcurrencyConflictError(BillingError):
    """A write was based on a stale version of the invoice."""

    def __init__(self, invoice_number: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Invoice '{invoice_number}' changed concurrently: "
            f"expected version {expected}, found {actual}"
        )
        self.invoice_number = invoice_number
        self.expected = expected
        self.actual = actual


class LedgerIntegrityError(BillingError):
    """Cached invoice amounts diverge from the payment/credit note history."""


__all__ = [
    "BillingError",
    "ValidationError",
    "InvalidStateError",
    "InvalidTransitionError",
    "NotFoundError",
    "ConcurrencyConflictError",
    "LedgerIntegrityError",
]
