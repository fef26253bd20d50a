"""Billing ledger and claims lifecycle for the hospital front office."""

from .engine import BillingEngine
from .models import (
    Balance,
    CreditNote,
    CreditNoteItem,
    InsuranceClaim,
    Invoice,
    LineItem,
    Payment,
    PaymentRequest,
    PaymentResult,
)
from .money import MonetaryBreakdown, compute_breakdown, quantize
from .store import InvoiceAccount, LedgerStore

__all__ = [
    "Balance",
    "BillingEngine",
    "CreditNote",
    "CreditNoteItem",
    "InsuranceClaim",
    "Invoice",
    "InvoiceAccount",
    "LedgerStore",
    "LineItem",
    "MonetaryBreakdown",
    "Payment",
    "PaymentRequest",
    "PaymentResult",
    "compute_breakdown",
    "quantize",
]
