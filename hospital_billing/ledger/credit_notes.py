"""Credit notes: reversing documents issued against an invoice."""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from hospital_billing.errors import InvalidStateError, NotFoundError, ValidationError
from hospital_billing.ledger import invoices as ledger
from hospital_billing.ledger.models import (
    REFUND_METHODS,
    CreditNote,
    CreditNoteItem,
    Invoice,
    Payment,
    RefundMethod,
)
from hospital_billing.ledger.money import (
    ZERO,
    MonetaryBreakdown,
    quantize,
    sum_breakdowns,
    validate_breakdown,
)

LOGGER = logging.getLogger(__name__)

# Refunds that move no money through an external rail carry no transaction id.
_REFUNDS_WITHOUT_TRANSACTION = {"cash", "adjust_future_invoice"}


def find(credit_notes: Sequence[CreditNote], credit_note_number: str) -> CreditNote:
    for note in credit_notes:
        if note.credit_note_number == credit_note_number:
            return note
    raise NotFoundError(f"Unknown credit note '{credit_note_number}'")


def creditable_amount(invoice: Invoice, credit_notes: Sequence[CreditNote]) -> Decimal:
    """Return the balance still open to crediting.

    ADJUSTED notes are already netted into the balance; ISSUED notes are
    pending claims on it. REFUNDED and REVERSED notes no longer count.
    """
    pending = sum((note.amount for note in credit_notes if note.status == "ISSUED"), ZERO)
    return quantize(invoice.balance_amount - pending)


def _validate_items(
    invoice: Invoice,
    credit_notes: Sequence[CreditNote],
    items: Sequence[CreditNoteItem],
    breakdown: MonetaryBreakdown,
) -> None:
    lines = {line.line_no: line for line in invoice.line_items}
    credited: Dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
    for note in credit_notes:
        if note.status == "REVERSED":
            continue
        for item in note.items:
            credited[item.line_no] += item.quantity
    for item in items:
        line = lines.get(item.line_no)
        if line is None:
            raise ValidationError(
                f"Invoice '{invoice.invoice_number}' has no line {item.line_no} to credit"
            )
        if item.quantity <= 0:
            raise ValidationError(f"Credited quantity for line {item.line_no} must be positive")
        if credited[item.line_no] + item.quantity > line.quantity:
            raise ValidationError(
                f"Credited quantity {credited[item.line_no] + item.quantity} exceeds "
                f"invoiced quantity {line.quantity} on line {item.line_no}"
            )
        credited[item.line_no] += item.quantity
        validate_breakdown(item.breakdown, label=f"credit item for line {item.line_no}")
    if sum_breakdowns(item.breakdown for item in items) != breakdown:
        raise ValidationError("Credit note breakdown must equal the sum of its items")


def issue(
    invoice: Invoice,
    credit_notes: List[CreditNote],
    *,
    next_number: Callable[[], str],
    reason: str,
    breakdown: MonetaryBreakdown,
    items: Optional[Sequence[CreditNoteItem]] = None,
    at: datetime,
) -> CreditNote:
    if invoice.is_draft or invoice.is_cancelled:
        raise InvalidStateError(
            f"Cannot credit invoice '{invoice.invoice_number}' in status {invoice.status}"
        )
    if not reason:
        raise ValidationError("A credit note requires a reason")
    validate_breakdown(breakdown, label="credit note breakdown")
    if breakdown.total <= ZERO:
        raise ValidationError("Credit note total must be positive")
    if items:
        _validate_items(invoice, credit_notes, items, breakdown)
    available = creditable_amount(invoice, credit_notes)
    if breakdown.total > available:
        raise ValidationError(
            f"Credit note total {breakdown.total} exceeds the creditable amount "
            f"{available} of invoice '{invoice.invoice_number}'"
        )
    note = CreditNote(
        credit_note_number=next_number(),
        invoice_ref=invoice.invoice_number,
        reason=reason,
        breakdown=breakdown,
        items=list(items or []),
        issued_at=at,
    )
    credit_notes.append(note)
    LOGGER.info(
        "Issued credit note %s for %s against invoice %s",
        note.credit_note_number,
        note.amount,
        invoice.invoice_number,
    )
    return note


def _require_issued(note: CreditNote, action: str) -> None:
    if note.status != "ISSUED":
        raise InvalidStateError(
            f"Cannot {action} credit note '{note.credit_note_number}' in status {note.status}"
        )


def adjust(
    invoice: Invoice,
    payments: Sequence[Payment],
    credit_notes: Sequence[CreditNote],
    note: CreditNote,
    *,
    as_of: date,
    at: datetime,
) -> CreditNote:
    """Net the credit note against the invoice balance."""
    _require_issued(note, "adjust")
    if invoice.is_cancelled:
        raise InvalidStateError(f"Invoice '{invoice.invoice_number}' is cancelled")
    if note.amount > invoice.balance_amount:
        raise ValidationError(
            f"Credit note {note.credit_note_number} ({note.amount}) exceeds the balance "
            f"{invoice.balance_amount}; refund it instead"
        )
    note.status = "ADJUSTED"
    note.settled_at = at
    ledger.refresh(invoice, payments, credit_notes, as_of=as_of)
    LOGGER.info(
        "Adjusted credit note %s; invoice %s balance=%s",
        note.credit_note_number,
        invoice.invoice_number,
        invoice.balance_amount,
    )
    return note


def refund(
    note: CreditNote,
    *,
    method: RefundMethod,
    transaction_id: Optional[str],
    at: datetime,
) -> CreditNote:
    """Record an out-of-band refund; the invoice balance is left as billed."""
    _require_issued(note, "refund")
    if method not in REFUND_METHODS:
        raise ValidationError(f"Unknown refund method '{method}'")
    if method not in _REFUNDS_WITHOUT_TRANSACTION and not transaction_id:
        raise ValidationError(f"A transaction id is required for {method} refunds")
    note.status = "REFUNDED"
    note.refund_method = method
    note.refund_transaction_id = transaction_id
    note.settled_at = at
    LOGGER.info("Refunded credit note %s via %s", note.credit_note_number, method)
    return note


def reverse(note: CreditNote, *, reason: str, at: datetime) -> CreditNote:
    _require_issued(note, "reverse")
    if not reason:
        raise ValidationError("A reversal reason is required")
    note.status = "REVERSED"
    note.reversal_reason = reason
    note.settled_at = at
    return note


__all__ = ["adjust", "creditable_amount", "find", "issue", "refund", "reverse"]
