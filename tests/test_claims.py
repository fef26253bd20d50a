from decimal import Decimal

import pytest

from hospital_billing.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from hospital_billing.ledger import BillingEngine, Invoice, PaymentRequest
from hospital_billing.ledger.claims import allowed_actions


@pytest.fixture()
def procedure_invoice(engine: BillingEngine) -> Invoice:
    invoice = engine.create_invoice("PAT-1002")
    engine.add_line_item(invoice.invoice_number, description="Procedure", quantity=1, unit_price="5000", gst_rate="12")
    engine.add_line_item(invoice.invoice_number, description="Dressing", quantity=4, unit_price="125", gst_rate="5")
    return engine.issue_invoice(invoice.invoice_number)


def submit(engine: BillingEngine, invoice: Invoice, **overrides):
    params = {
        "insurance_provider_ref": "TPA-MEDASSIST",
        "policy_number": "POL-55-2041",
        "claim_amount": "5000",
        "coverage_percentage": "80",
    }
    params.update(overrides)
    return engine.submit_claim(invoice.invoice_number, **params)


def approved_claim(engine: BillingEngine, invoice: Invoice, amount: str = "4000"):
    claim = submit(engine, invoice)
    engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-DISCHARGE-SUMMARY"])
    return engine.transition_claim(claim.claim_number, "APPROVE", approved_amount=amount)


def test_claim_approval_computes_patient_responsibility(engine: BillingEngine, procedure_invoice: Invoice) -> None:
    claim = submit(engine, procedure_invoice)
    assert claim.claim_number == "CLM-202610-0001"
    assert claim.status == "SUBMITTED"
    assert claim.patient_responsibility is None

    claim = engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-DISCHARGE-SUMMARY"])
    assert claim.status == "SUBMITTED_TO_TPA"
    assert claim.tpa_submission_date is not None

    claim = engine.transition_claim(claim.claim_number, "APPROVE", approved_amount="4000")
    assert claim.status == "APPROVED"
    assert claim.approved_amount == Decimal("4000.00")
    assert claim.patient_responsibility == Decimal("2125.00")
    assert [event.to_status for event in claim.history] == ["SUBMITTED", "SUBMITTED_TO_TPA", "APPROVED"]


def test_approval_does_not_touch_invoice_balance(engine: BillingEngine, procedure_invoice: Invoice) -> None:
    approved_claim(engine, procedure_invoice)
    assert engine.get_balance(procedure_invoice.invoice_number).balance_amount == Decimal("6125.00")


def test_undefined_transitions_are_rejected(engine: BillingEngine, procedure_invoice: Invoice) -> None:
    claim = submit(engine, procedure_invoice)
    with pytest.raises(InvalidTransitionError):
        engine.transition_claim(claim.claim_number, "APPROVE", approved_amount="100")
    claim = engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-DISCHARGE-SUMMARY"])
    claim = engine.transition_claim(claim.claim_number, "REJECT", remarks="Policy lapsed")
    assert claim.status == "REJECTED"
    assert claim.remarks == "Policy lapsed"
    assert allowed_actions(claim.status) == []
    with pytest.raises(InvalidTransitionError):
        engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-DISCHARGE-SUMMARY"])


def test_tpa_submission_needs_documents(engine: BillingEngine, procedure_invoice: Invoice) -> None:
    claim = submit(engine, procedure_invoice)
    with pytest.raises(ValidationError):
        engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA")
    with pytest.raises(ValidationError, match="Unknown claim documents"):
        engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-MISSING"])
    assert engine.get_claim(claim.claim_number).status == "SUBMITTED"


def test_info_request_requires_new_documents(
    engine: BillingEngine, procedure_invoice: Invoice, collaborators: dict
) -> None:
    collaborators["documents"].add("DOC-LAB-REPORT", "lab.pdf")
    claim = submit(engine, procedure_invoice, documents=["DOC-DISCHARGE-SUMMARY"])
    engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA")
    claim = engine.transition_claim(claim.claim_number, "REQUEST_INFO", remarks="Need lab report")
    assert claim.status == "INFO_REQUESTED"
    assert allowed_actions(claim.status) == ["SUBMIT_TO_TPA"]
    with pytest.raises(ValidationError):
        engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA")
    claim = engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-LAB-REPORT"])
    assert claim.status == "SUBMITTED_TO_TPA"
    assert claim.documents == ["DOC-DISCHARGE-SUMMARY", "DOC-LAB-REPORT"]


def test_approved_amount_bounded_by_claim_amount(engine: BillingEngine, procedure_invoice: Invoice) -> None:
    claim = submit(engine, procedure_invoice)
    engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-DISCHARGE-SUMMARY"])
    with pytest.raises(ValidationError):
        engine.transition_claim(claim.claim_number, "APPROVE", approved_amount="5000.01")
    with pytest.raises(ValidationError):
        engine.transition_claim(claim.claim_number, "APPROVE")
    assert engine.get_claim(claim.claim_number).status == "SUBMITTED_TO_TPA"


@pytest.mark.parametrize(
    "overrides",
    [
        {"claim_amount": "0"},
        {"claim_amount": "6125.01"},
        {"coverage_percentage": "101"},
        {"policy_number": ""},
    ],
)
def test_invalid_claim_submissions(engine: BillingEngine, procedure_invoice: Invoice, overrides: dict) -> None:
    with pytest.raises(ValidationError):
        submit(engine, procedure_invoice, **overrides)


def test_claims_need_an_issued_invoice(engine: BillingEngine) -> None:
    draft = engine.create_invoice("PAT-1002")
    with pytest.raises(InvalidStateError):
        submit(engine, draft)


def test_insurer_payment_settles_against_approved_claim(engine: BillingEngine, procedure_invoice: Invoice) -> None:
    claim = approved_claim(engine, procedure_invoice)
    number = procedure_invoice.invoice_number
    result = engine.apply_payment(
        number,
        PaymentRequest(amount=Decimal("4000"), method="insurance", transaction_id="TPA-UTR-1", claim_ref=claim.claim_number),
    )
    assert result.invoice.balance_amount == Decimal("2125.00")
    with pytest.raises(ValidationError, match="approved amount"):
        engine.apply_payment(
            number,
            PaymentRequest(amount=Decimal("1"), method="insurance", transaction_id="TPA-UTR-2", claim_ref=claim.claim_number),
        )


def test_insurer_payment_requires_approved_claim(engine: BillingEngine, procedure_invoice: Invoice) -> None:
    claim = submit(engine, procedure_invoice)
    number = procedure_invoice.invoice_number
    with pytest.raises(InvalidStateError):
        engine.apply_payment(
            number,
            PaymentRequest(amount=Decimal("100"), method="insurance", transaction_id="UTR", claim_ref=claim.claim_number),
        )
    with pytest.raises(NotFoundError):
        engine.apply_payment(
            number,
            PaymentRequest(amount=Decimal("100"), method="insurance", transaction_id="UTR", claim_ref="CLM-202610-0042"),
        )


def test_claim_notifications_and_listing(
    engine: BillingEngine, procedure_invoice: Invoice, collaborators: dict
) -> None:
    claim = approved_claim(engine, procedure_invoice)
    kind, recipient, payload = collaborators["notifier"].sent[-1]
    assert kind == "claim_correspondence"
    assert recipient == "PAT-1002"
    assert payload["status"] == "APPROVED"
    assert [c.claim_number for c in engine.list_claims(status="APPROVED")] == [claim.claim_number]
    assert engine.list_claims(invoice_number=procedure_invoice.invoice_number)[0].claim_number == claim.claim_number
    with pytest.raises(NotFoundError):
        engine.get_claim("CLM-202610-0099")


@pytest.mark.parametrize(
    "overrides",
    [
        {"claim_amount": "abc"},
        {"claim_amount": "NaN"},
        {"coverage_percentage": "eighty"},
        {"coverage_percentage": "Infinity"},
    ],
)
def test_non_numeric_claim_input_is_rejected(engine: BillingEngine, procedure_invoice: Invoice, overrides: dict) -> None:
    with pytest.raises(ValidationError):
        submit(engine, procedure_invoice, **overrides)
    assert engine.list_claims() == []


def test_resubmission_needs_documents_not_already_attached(
    engine: BillingEngine, procedure_invoice: Invoice
) -> None:
    claim = submit(engine, procedure_invoice, documents=["DOC-DISCHARGE-SUMMARY"])
    engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA")
    engine.transition_claim(claim.claim_number, "REQUEST_INFO")
    with pytest.raises(ValidationError, match="new documents"):
        engine.transition_claim(claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-DISCHARGE-SUMMARY"])
    assert engine.get_claim(claim.claim_number).status == "INFO_REQUESTED"
