"""Payment application against issued invoices."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, List, Sequence

from hospital_billing.errors import InvalidStateError, NotFoundError, ValidationError
from hospital_billing.ledger import invoices as ledger
from hospital_billing.ledger.models import (
    PAYMENT_METHODS,
    CreditNote,
    InsuranceClaim,
    Invoice,
    Payment,
    PaymentRequest,
)
from hospital_billing.ledger.money import ZERO, quantize

LOGGER = logging.getLogger(__name__)


def validate_request(invoice: Invoice, request: PaymentRequest) -> None:
    if invoice.is_draft:
        raise InvalidStateError(
            f"Invoice '{invoice.invoice_number}' must be issued before it can be paid"
        )
    if invoice.status in {"CANCELLED", "PAID"}:
        raise ValidationError(
            f"Invoice '{invoice.invoice_number}' is {invoice.status} and accepts no payments"
        )
    amount = quantize(request.amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be positive")
    if request.method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method '{request.method}'")
    if request.method != "cash" and not request.transaction_id:
        raise ValidationError(f"A transaction id is required for {request.method} payments")
    if amount > invoice.balance_amount:
        raise ValidationError(
            f"Payment {amount} exceeds the balance {invoice.balance_amount} "
            f"of invoice '{invoice.invoice_number}'"
        )


def _validate_claim_settlement(
    request: PaymentRequest,
    payments: Sequence[Payment],
    claims: Sequence[InsuranceClaim],
) -> None:
    claim = next((c for c in claims if c.claim_number == request.claim_ref), None)
    if claim is None:
        raise NotFoundError(f"Claim '{request.claim_ref}' does not belong to this invoice")
    if request.method != "insurance":
        raise ValidationError("Payments against a claim must use the insurance method")
    if claim.status != "APPROVED" or claim.approved_amount is None:
        raise InvalidStateError(
            f"Claim '{claim.claim_number}' is {claim.status}; only approved claims can be settled"
        )
    already_settled = sum(
        (p.amount for p in payments if p.claim_ref == claim.claim_number), ZERO
    )
    if already_settled + quantize(request.amount) > claim.approved_amount:
        raise ValidationError(
            f"Insurer payments for claim '{claim.claim_number}' would exceed "
            f"the approved amount {claim.approved_amount}"
        )


def apply_payment(
    invoice: Invoice,
    payments: List[Payment],
    credit_notes: Sequence[CreditNote],
    claims: Sequence[InsuranceClaim],
    request: PaymentRequest,
    *,
    next_number: Callable[[], str],
    as_of: date,
    at: datetime,
) -> Payment:
    """Record a payment and refresh the invoice balance and status.

    ``payments`` is extended in place; callers work on a copy of the invoice
    account so a failed validation leaves the stored documents untouched.
    """
    validate_request(invoice, request)
    if request.claim_ref:
        _validate_claim_settlement(request, payments, claims)
    payment = Payment(
        receipt_number=next_number(),
        invoice_ref=invoice.invoice_number,
        amount=quantize(request.amount),
        method=request.method,
        received_at=request.received_at or at,
        transaction_id=request.transaction_id,
        claim_ref=request.claim_ref,
        cheque_number=request.cheque_number,
        bank_name=request.bank_name,
        notes=request.notes,
    )
    payments.append(payment)
    ledger.refresh(invoice, payments, credit_notes, as_of=as_of)
    LOGGER.info(
        "Applied payment %s of %s to invoice %s; balance=%s status=%s",
        payment.receipt_number,
        payment.amount,
        invoice.invoice_number,
        invoice.balance_amount,
        invoice.status,
    )
    return payment


__all__ = ["apply_payment", "validate_request"]
