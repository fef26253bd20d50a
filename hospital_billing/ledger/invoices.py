"""Invoice ledger: line items, issuance, balance projection and status."""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from hospital_billing.errors import InvalidStateError, LedgerIntegrityError, ValidationError
from hospital_billing.ledger.models import (
    Balance,
    CreditNote,
    DerivedStatus,
    Invoice,
    LineItem,
    Payment,
)
from hospital_billing.ledger.money import (
    ZERO,
    MonetaryBreakdown,
    compute_breakdown,
    quantize,
    to_decimal,
)

LOGGER = logging.getLogger(__name__)


def new_invoice(
    invoice_number: str,
    patient_ref: str,
    due_date: date,
    *,
    inter_state: bool = False,
    place_of_supply: Optional[str] = None,
    notes: Optional[str] = None,
) -> Invoice:
    if not patient_ref:
        raise ValidationError("Invoice requires a patient reference")
    return Invoice(
        invoice_number=invoice_number,
        patient_ref=patient_ref,
        due_date=due_date,
        inter_state=inter_state,
        place_of_supply=place_of_supply,
        notes=notes,
    )


# ----------------------------------------------------------------------
# Draft editing
# ----------------------------------------------------------------------
def _require_draft(invoice: Invoice) -> None:
    if not invoice.is_draft:
        raise InvalidStateError(
            f"Line items of invoice '{invoice.invoice_number}' are frozen "
            f"(status {invoice.status})"
        )


def add_line_item(
    invoice: Invoice,
    *,
    description: str,
    quantity: Decimal | int | str,
    unit_price: Decimal | float | int | str,
    gst_rate: Decimal | int | str = ZERO,
    discount: Decimal | float | int | str = ZERO,
    hsn_sac_code: str = "",
    service_code: Optional[str] = None,
    breakdown: Optional[MonetaryBreakdown] = None,
) -> LineItem:
    """Append a line to a draft invoice.

    When ``breakdown`` is omitted it is priced from quantity, unit price and
    the supplied GST rate. A caller-supplied breakdown is kept as given and
    checked when the invoice is issued.
    """
    _require_draft(invoice)
    if breakdown is None:
        breakdown = compute_breakdown(
            quantity,
            unit_price,
            gst_rate=gst_rate,
            discount=discount,
            inter_state=invoice.inter_state,
        )
    next_no = max((line.line_no for line in invoice.line_items), default=0) + 1
    line = LineItem(
        line_no=next_no,
        description=description,
        quantity=to_decimal(quantity, label="quantity"),
        unit_price=quantize(unit_price),
        breakdown=breakdown,
        hsn_sac_code=hsn_sac_code,
        gst_rate=to_decimal(gst_rate, label="GST rate"),
        service_code=service_code,
    )
    invoice.line_items.append(line)
    _refresh_draft_totals(invoice)
    return line


def remove_line_item(invoice: Invoice, line_no: int) -> LineItem:
    _require_draft(invoice)
    for index, line in enumerate(invoice.line_items):
        if line.line_no == line_no:
            removed = invoice.line_items.pop(index)
            _refresh_draft_totals(invoice)
            return removed
    raise ValidationError(f"Invoice '{invoice.invoice_number}' has no line {line_no}")


def _refresh_draft_totals(invoice: Invoice) -> None:
    invoice.total_amount = invoice.breakdown.total
    invoice.balance_amount = invoice.total_amount


# ----------------------------------------------------------------------
# Issuance and cancellation
# ----------------------------------------------------------------------
def issue(invoice: Invoice, *, as_of: date) -> Invoice:
    """Validate a draft invoice and freeze its line items."""
    _require_draft(invoice)
    if not invoice.line_items:
        raise ValidationError(f"Invoice '{invoice.invoice_number}' has no line items")
    problems: List[str] = []
    for line in invoice.line_items:
        problems.extend(f"line {line.line_no}: {problem}" for problem in line.violations())
    if problems:
        raise ValidationError(
            f"Invoice '{invoice.invoice_number}' cannot be issued: " + "; ".join(problems)
        )
    invoice.issue_date = as_of
    invoice.administrative_status = None
    refresh(invoice, [], [], as_of=as_of)
    LOGGER.info("Issued invoice %s total=%s", invoice.invoice_number, invoice.total_amount)
    return invoice


def cancel(
    invoice: Invoice,
    payments: Sequence[Payment],
    credit_notes: Sequence[CreditNote],
    *,
    reason: str,
    at: datetime,
) -> Invoice:
    if invoice.is_cancelled:
        raise InvalidStateError(f"Invoice '{invoice.invoice_number}' is already cancelled")
    if not reason:
        raise ValidationError("A cancellation reason is required")
    if payments or any(note.status == "ADJUSTED" for note in credit_notes):
        raise InvalidStateError(
            f"Invoice '{invoice.invoice_number}' has settlements; "
            "issue a credit note instead of cancelling"
        )
    if any(note.status == "ISSUED" for note in credit_notes):
        raise InvalidStateError(
            f"Invoice '{invoice.invoice_number}' has open credit notes; "
            "reverse them before cancelling"
        )
    invoice.administrative_status = "CANCELLED"
    invoice.cancelled_at = at
    invoice.cancellation_reason = reason
    return invoice


# ----------------------------------------------------------------------
# Balance projection
# ----------------------------------------------------------------------
def recompute_balance(
    invoice: Invoice,
    payments: Iterable[Payment],
    credit_notes: Iterable[CreditNote],
) -> Balance:
    """Derive paid, credited and outstanding amounts from the document history."""
    total = invoice.breakdown.total
    paid = sum((payment.amount for payment in payments), ZERO)
    credited = sum(
        (note.amount for note in credit_notes if note.status == "ADJUSTED"),
        ZERO,
    )
    return Balance(
        total_amount=quantize(total),
        paid_amount=quantize(paid),
        credited_amount=quantize(credited),
        balance_amount=quantize(total - paid - credited),
    )


def derive_status(balance: Balance, *, due_date: date, as_of: date) -> DerivedStatus:
    settled = balance.paid_amount + balance.credited_amount
    if balance.balance_amount <= ZERO:
        return "PAID"
    if ZERO < settled < balance.total_amount:
        return "PARTIALLY_PAID"
    if settled == ZERO and as_of > due_date:
        return "OVERDUE"
    return "PENDING"


def refresh(
    invoice: Invoice,
    payments: Sequence[Payment],
    credit_notes: Sequence[CreditNote],
    *,
    as_of: date,
) -> Invoice:
    """Rewrite the cached amounts and derived status from the history."""
    balance = recompute_balance(invoice, payments, credit_notes)
    invoice.total_amount = balance.total_amount
    invoice.paid_amount = balance.paid_amount
    invoice.credited_amount = balance.credited_amount
    invoice.balance_amount = balance.balance_amount
    if not invoice.is_draft:
        invoice.derived_status = derive_status(balance, due_date=invoice.due_date, as_of=as_of)
    return invoice


def verify(
    invoice: Invoice,
    payments: Sequence[Payment],
    credit_notes: Sequence[CreditNote],
) -> Balance:
    balance = recompute_balance(invoice, payments, credit_notes)
    cached = Balance(
        total_amount=invoice.total_amount,
        paid_amount=invoice.paid_amount,
        credited_amount=invoice.credited_amount,
        balance_amount=invoice.balance_amount,
    )
    if cached != balance:
        raise LedgerIntegrityError(
            f"Invoice '{invoice.invoice_number}' cache {cached} diverges from history {balance}"
        )
    return balance


__all__ = [
    "add_line_item",
    "cancel",
    "derive_status",
    "issue",
    "new_invoice",
    "recompute_balance",
    "refresh",
    "remove_line_item",
    "verify",
]
