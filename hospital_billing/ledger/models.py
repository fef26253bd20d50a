"""Ledger documents: invoices, payments, credit notes and insurance claims."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional, Tuple

from hospital_billing.ledger.money import ZERO, MonetaryBreakdown, quantize, sum_breakdowns

AdministrativeStatus = Literal["DRAFT", "CANCELLED"]
DerivedStatus = Literal["PENDING", "PARTIALLY_PAID", "PAID", "OVERDUE"]
InvoiceStatus = Literal["DRAFT", "PENDING", "PARTIALLY_PAID", "PAID", "OVERDUE", "CANCELLED"]

PaymentMethod = Literal["cash", "card", "transfer", "wallet", "cheque", "insurance", "other"]
RefundMethod = Literal[
    "cash", "card", "transfer", "wallet", "cheque", "insurance", "adjust_future_invoice"
]
CreditNoteStatus = Literal["ISSUED", "ADJUSTED", "REFUNDED", "REVERSED"]

ClaimStatus = Literal["SUBMITTED", "SUBMITTED_TO_TPA", "INFO_REQUESTED", "APPROVED", "REJECTED"]
ClaimAction = Literal["SUBMIT_TO_TPA", "APPROVE", "REJECT", "REQUEST_INFO"]

PAYMENT_METHODS: Tuple[str, ...] = ("cash", "card", "transfer", "wallet", "cheque", "insurance", "other")
REFUND_METHODS: Tuple[str, ...] = (
    "cash", "card", "transfer", "wallet", "cheque", "insurance", "adjust_future_invoice"
)
CLAIM_ACTIONS: Tuple[str, ...] = ("SUBMIT_TO_TPA", "APPROVE", "REJECT", "REQUEST_INFO")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LineItem:
    """A priced service on an invoice."""

    line_no: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    breakdown: MonetaryBreakdown
    hsn_sac_code: str = ""
    gst_rate: Decimal = ZERO
    service_code: Optional[str] = None

    def violations(self) -> List[str]:
        problems = self.breakdown.violations()
        if self.quantity <= 0:
            problems.append("quantity must be positive")
        expected = quantize(Decimal(str(self.quantity)) * quantize(self.unit_price))
        if self.breakdown.subtotal != expected:
            problems.append(
                f"subtotal {self.breakdown.subtotal} != quantity {self.quantity} "
                f"x unit price {self.unit_price}"
            )
        return problems


@dataclass
class Invoice:
    """A patient invoice.

    Status is a tagged value: ``administrative_status`` holds DRAFT or
    CANCELLED when one of those was set by an explicit action, and
    ``derived_status`` holds the status computed from the balance. The
    public ``status`` reads the administrative branch first.
    """

    invoice_number: str
    patient_ref: str
    due_date: date
    line_items: List[LineItem] = field(default_factory=list)
    issue_date: Optional[date] = None
    inter_state: bool = False
    place_of_supply: Optional[str] = None
    notes: Optional[str] = None
    administrative_status: Optional[AdministrativeStatus] = "DRAFT"
    derived_status: DerivedStatus = "PENDING"
    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    credited_amount: Decimal = ZERO
    balance_amount: Decimal = ZERO
    created_at: datetime = field(default_factory=utcnow)
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    @property
    def status(self) -> InvoiceStatus:
        if self.administrative_status is not None:
            return self.administrative_status
        return self.derived_status

    @property
    def breakdown(self) -> MonetaryBreakdown:
        return sum_breakdowns(line.breakdown for line in self.line_items)

    @property
    def is_draft(self) -> bool:
        return self.administrative_status == "DRAFT"

    @property
    def is_cancelled(self) -> bool:
        return self.administrative_status == "CANCELLED"


@dataclass(frozen=True)
class Payment:
    """An immutable payment applied against an invoice."""

    receipt_number: str
    invoice_ref: str
    amount: Decimal
    method: PaymentMethod
    received_at: datetime
    transaction_id: Optional[str] = None
    claim_ref: Optional[str] = None
    cheque_number: Optional[str] = None
    bank_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PaymentRequest:
    amount: Decimal
    method: PaymentMethod
    transaction_id: Optional[str] = None
    claim_ref: Optional[str] = None
    cheque_number: Optional[str] = None
    bank_name: Optional[str] = None
    notes: Optional[str] = None
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class CreditNoteItem:
    """Portion of an invoice line reversed by a credit note."""

    line_no: int
    quantity: Decimal
    breakdown: MonetaryBreakdown
    description: str = ""


@dataclass
class CreditNote:
    credit_note_number: str
    invoice_ref: str
    reason: str
    breakdown: MonetaryBreakdown
    items: List[CreditNoteItem] = field(default_factory=list)
    status: CreditNoteStatus = "ISSUED"
    issued_at: datetime = field(default_factory=utcnow)
    settled_at: Optional[datetime] = None
    refund_method: Optional[RefundMethod] = None
    refund_transaction_id: Optional[str] = None
    reversal_reason: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return self.breakdown.total

    @property
    def is_terminal(self) -> bool:
        return self.status != "ISSUED"


@dataclass(frozen=True)
class ClaimEvent:
    """One entry of a claim's append-only status history."""

    action: str
    from_status: Optional[ClaimStatus]
    to_status: ClaimStatus
    at: datetime
    remarks: Optional[str] = None


@dataclass
class InsuranceClaim:
    claim_number: str
    invoice_ref: str
    patient_ref: str
    insurance_provider_ref: str
    policy_number: str
    claim_amount: Decimal
    coverage_percentage: Decimal
    invoice_total: Decimal
    submission_date: datetime
    status: ClaimStatus = "SUBMITTED"
    approved_amount: Optional[Decimal] = None
    tpa_submission_date: Optional[datetime] = None
    tpa_approval_date: Optional[datetime] = None
    tpa_rejection_date: Optional[datetime] = None
    documents: List[str] = field(default_factory=list)
    remarks: Optional[str] = None
    history: List[ClaimEvent] = field(default_factory=list)

    @property
    def patient_responsibility(self) -> Optional[Decimal]:
        """Amount left for the patient once the payer has approved."""
        if self.status != "APPROVED" or self.approved_amount is None:
            return None
        return quantize(self.invoice_total - self.approved_amount)


@dataclass(frozen=True)
class Balance:
    total_amount: Decimal
    paid_amount: Decimal
    credited_amount: Decimal
    balance_amount: Decimal


@dataclass(frozen=True)
class PaymentResult:
    invoice: Invoice
    payment: Payment

    @property
    def receipt_number(self) -> str:
        return self.payment.receipt_number


__all__ = [
    "AdministrativeStatus",
    "Balance",
    "CLAIM_ACTIONS",
    "ClaimAction",
    "ClaimEvent",
    "ClaimStatus",
    "CreditNote",
    "CreditNoteItem",
    "CreditNoteStatus",
    "DerivedStatus",
    "InsuranceClaim",
    "Invoice",
    "InvoiceStatus",
    "LineItem",
    "PAYMENT_METHODS",
    "Payment",
    "PaymentMethod",
    "PaymentRequest",
    "PaymentResult",
    "REFUND_METHODS",
    "RefundMethod",
    "utcnow",
]
