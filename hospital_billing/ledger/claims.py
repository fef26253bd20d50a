"""Insurance claim workflow.

A claim starts SUBMITTED, goes to the third-party administrator (TPA) and
ends APPROVED or REJECTED. The TPA may ask for more information, in which
case the claim is resubmitted with new documents. Approval only records the
payer's committed amount; settling the invoice is a separate payment.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from hospital_billing.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from hospital_billing.ledger.models import (
    ClaimAction,
    ClaimEvent,
    ClaimStatus,
    InsuranceClaim,
    Invoice,
)
from hospital_billing.ledger.money import ZERO, quantize, to_decimal

LOGGER = logging.getLogger(__name__)

TRANSITIONS: Dict[Tuple[ClaimStatus, ClaimAction], ClaimStatus] = {
    ("SUBMITTED", "SUBMIT_TO_TPA"): "SUBMITTED_TO_TPA",
    ("SUBMITTED_TO_TPA", "APPROVE"): "APPROVED",
    ("SUBMITTED_TO_TPA", "REJECT"): "REJECTED",
    ("SUBMITTED_TO_TPA", "REQUEST_INFO"): "INFO_REQUESTED",
    ("INFO_REQUESTED", "SUBMIT_TO_TPA"): "SUBMITTED_TO_TPA",
}

TERMINAL_STATUSES = frozenset({"APPROVED", "REJECTED"})


def allowed_actions(status: ClaimStatus) -> List[ClaimAction]:
    return [action for (source, action) in TRANSITIONS if source == status]


def find(claims: Sequence[InsuranceClaim], claim_number: str) -> InsuranceClaim:
    for claim in claims:
        if claim.claim_number == claim_number:
            return claim
    raise NotFoundError(f"Unknown claim '{claim_number}'")


def submit(
    invoice: Invoice,
    claims: List[InsuranceClaim],
    *,
    next_number: Callable[[], str],
    insurance_provider_ref: str,
    policy_number: str,
    claim_amount: Decimal | float | int | str,
    coverage_percentage: Decimal | float | int | str,
    documents: Optional[Sequence[str]] = None,
    at: datetime,
) -> InsuranceClaim:
    """Open a claim against an issued invoice.

    The claim amount is checked against the invoice total once, here; issued
    invoices are frozen so the bound cannot drift afterwards.
    """
    if invoice.is_draft or invoice.is_cancelled:
        raise InvalidStateError(
            f"Cannot claim against invoice '{invoice.invoice_number}' in status {invoice.status}"
        )
    if not insurance_provider_ref or not policy_number:
        raise ValidationError("A claim requires an insurance provider and a policy number")
    amount = quantize(claim_amount)
    if amount <= ZERO:
        raise ValidationError("Claim amount must be positive")
    if amount > invoice.total_amount:
        raise ValidationError(
            f"Claim amount {amount} exceeds invoice total {invoice.total_amount}"
        )
    coverage = to_decimal(coverage_percentage, label="coverage percentage")
    if coverage < 0 or coverage > 100:
        raise ValidationError(f"Coverage percentage {coverage} must be between 0 and 100")
    claim = InsuranceClaim(
        claim_number=next_number(),
        invoice_ref=invoice.invoice_number,
        patient_ref=invoice.patient_ref,
        insurance_provider_ref=insurance_provider_ref,
        policy_number=policy_number,
        claim_amount=amount,
        coverage_percentage=coverage,
        invoice_total=invoice.total_amount,
        submission_date=at,
        documents=[ref for ref in (documents or []) if ref],
    )
    claim.history.append(ClaimEvent(action="SUBMIT", from_status=None, to_status="SUBMITTED", at=at))
    claims.append(claim)
    LOGGER.info("Submitted claim %s for invoice %s", claim.claim_number, invoice.invoice_number)
    return claim


def _check_preconditions(
    claim: InsuranceClaim,
    action: ClaimAction,
    new_documents: List[str],
    approved_amount: Optional[Decimal],
) -> None:
    if action == "SUBMIT_TO_TPA":
        if claim.status == "SUBMITTED" and not (claim.documents or new_documents):
            raise ValidationError(
                f"Claim '{claim.claim_number}' needs a supporting document before TPA submission"
            )
        if claim.status == "INFO_REQUESTED" and not new_documents:
            raise ValidationError(
                f"Claim '{claim.claim_number}' must be resubmitted with new documents"
            )
    elif action == "APPROVE":
        if approved_amount is None:
            raise ValidationError("Approval requires an approved amount")
        if approved_amount <= ZERO or approved_amount > claim.claim_amount:
            raise ValidationError(
                f"Approved amount {approved_amount} must be positive and "
                f"at most the claim amount {claim.claim_amount}"
            )


def transition(
    claim: InsuranceClaim,
    action: ClaimAction,
    *,
    at: datetime,
    documents: Optional[Sequence[str]] = None,
    approved_amount: Decimal | float | int | str | None = None,
    remarks: Optional[str] = None,
) -> InsuranceClaim:
    target = TRANSITIONS.get((claim.status, action))
    if target is None:
        raise InvalidTransitionError(claim.status, action)
    new_documents: List[str] = []
    for ref in documents or []:
        if ref and ref not in claim.documents and ref not in new_documents:
            new_documents.append(ref)
    amount = quantize(approved_amount) if approved_amount is not None else None
    _check_preconditions(claim, action, new_documents, amount)

    source = claim.status
    claim.documents.extend(new_documents)
    if action == "SUBMIT_TO_TPA":
        claim.tpa_submission_date = at
    elif action == "APPROVE":
        claim.approved_amount = amount
        claim.tpa_approval_date = at
    elif action == "REJECT":
        claim.tpa_rejection_date = at
    if remarks:
        claim.remarks = remarks
    claim.status = target
    claim.history.append(
        ClaimEvent(action=action, from_status=source, to_status=target, at=at, remarks=remarks)
    )
    LOGGER.info("Claim %s moved %s -> %s", claim.claim_number, source, target)
    return claim


__all__ = ["TERMINAL_STATUSES", "TRANSITIONS", "allowed_actions", "find", "submit", "transition"]
