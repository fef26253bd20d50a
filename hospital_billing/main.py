"""FastAPI application exposing the hospital billing ledger."""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import HTMLResponse

from hospital_billing.collaborators import demo_collaborators
from hospital_billing.config import BillingSettings, get_settings
from hospital_billing.errors import (
    BillingError,
    ConcurrencyConflictError,
    InvalidStateError,
    InvalidTransitionError,
    LedgerIntegrityError,
    NotFoundError,
    ValidationError,
)
from hospital_billing.ledger import BillingEngine, CreditNoteItem, PaymentRequest
from hospital_billing.ledger.claims import allowed_actions
from hospital_billing.ledger.models import InsuranceClaim
from hospital_billing.rendering.documents import render_invoice, render_receipt
from hospital_billing.schemas import (
    BalanceResponse,
    CatalogItemCreate,
    ClaimCreate,
    ClaimResponse,
    ClaimTransitionRequest,
    CreditNoteCreate,
    CreditNoteResponse,
    GstSummaryResponse,
    InvoiceCreate,
    InvoiceResponse,
    LineItemCreate,
    LineItemResponse,
    OutstandingInvoiceModel,
    PaymentCollectionResponse,
    PaymentCreate,
    PaymentResponse,
    PaymentResultResponse,
    ReasonRequest,
    RefundRequest,
    RevenueSummaryResponse,
)

LOGGER = logging.getLogger(__name__)

_settings = get_settings()

app = FastAPI(title=_settings.app_name, version="0.1.0")

_STATUS_CODES = {
    ValidationError: 422,
    InvalidStateError: 409,
    InvalidTransitionError: 409,
    NotFoundError: 404,
    ConcurrencyConflictError: 409,
    LedgerIntegrityError: 500,
}


def _http_error(exc: BillingError) -> HTTPException:
    status_code = next(
        (code for kind, code in _STATUS_CODES.items() if isinstance(exc, kind)), 400
    )
    if status_code >= 500:
        LOGGER.error("Ledger integrity failure: %s", exc)
    return HTTPException(status_code=status_code, detail=str(exc))


def get_engine(settings: BillingSettings = Depends(get_settings)) -> BillingEngine:
    engine = getattr(app.state, "engine", None)
    if engine is None:
        collaborators = demo_collaborators(
            match_threshold=settings.catalog_match_threshold,
            redact_phi=settings.redact_phi,
        )
        engine = BillingEngine(
            conflict_retries=settings.conflict_retries,
            default_due_days=settings.default_due_days,
            hospital_state=settings.hospital_state,
            seed_demo_data=settings.seed_demo_data,
            **collaborators,
        )
        app.state.engine = engine
    return engine


def _claim_response(claim: InsuranceClaim) -> ClaimResponse:
    response = ClaimResponse.model_validate(claim)
    response.allowed_actions = allowed_actions(claim.status)
    return response


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------
@app.get("/api/invoices", response_model=List[InvoiceResponse])
def list_invoices(
    patient_ref: Optional[str] = None,
    status: Optional[str] = None,
    engine: BillingEngine = Depends(get_engine),
    settings: BillingSettings = Depends(get_settings),
) -> List[InvoiceResponse]:
    invoices = engine.list_invoices(
        patient_ref=patient_ref, status=status, limit=settings.max_entries_returned
    )
    return [InvoiceResponse.model_validate(invoice) for invoice in invoices]


@app.post("/api/invoices", response_model=InvoiceResponse, status_code=201)
def create_invoice(
    payload: InvoiceCreate,
    engine: BillingEngine = Depends(get_engine),
) -> InvoiceResponse:
    try:
        invoice = engine.create_invoice(
            payload.patient_ref,
            due_date=payload.due_date,
            inter_state=payload.inter_state,
            place_of_supply=payload.place_of_supply,
            notes=payload.notes,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return InvoiceResponse.model_validate(invoice)


@app.get("/api/invoices/{invoice_number}", response_model=InvoiceResponse)
def get_invoice(invoice_number: str, engine: BillingEngine = Depends(get_engine)) -> InvoiceResponse:
    try:
        return InvoiceResponse.model_validate(engine.get_invoice(invoice_number))
    except BillingError as exc:
        raise _http_error(exc) from exc


@app.post(
    "/api/invoices/{invoice_number}/lines", response_model=LineItemResponse, status_code=201
)
def add_line_item(
    invoice_number: str,
    payload: LineItemCreate,
    engine: BillingEngine = Depends(get_engine),
) -> LineItemResponse:
    try:
        line = engine.add_line_item(
            invoice_number,
            description=payload.description,
            quantity=payload.quantity,
            unit_price=payload.unit_price,
            gst_rate=payload.gst_rate,
            discount=payload.discount,
            hsn_sac_code=payload.hsn_sac_code,
            service_code=payload.service_code,
            breakdown=payload.breakdown.to_breakdown() if payload.breakdown else None,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return LineItemResponse.model_validate(line)


@app.post(
    "/api/invoices/{invoice_number}/catalog-lines",
    response_model=LineItemResponse,
    status_code=201,
)
def add_catalog_item(
    invoice_number: str,
    payload: CatalogItemCreate,
    engine: BillingEngine = Depends(get_engine),
) -> LineItemResponse:
    try:
        line = engine.add_catalog_item(
            invoice_number,
            payload.service_code,
            service_name=payload.service_name,
            quantity=payload.quantity,
            discount=payload.discount,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return LineItemResponse.model_validate(line)


@app.delete("/api/invoices/{invoice_number}/lines/{line_no}", response_model=LineItemResponse)
def remove_line_item(
    invoice_number: str,
    line_no: int,
    engine: BillingEngine = Depends(get_engine),
) -> LineItemResponse:
    try:
        return LineItemResponse.model_validate(engine.remove_line_item(invoice_number, line_no))
    except BillingError as exc:
        raise _http_error(exc) from exc


@app.post("/api/invoices/{invoice_number}/issue", response_model=InvoiceResponse)
def issue_invoice(invoice_number: str, engine: BillingEngine = Depends(get_engine)) -> InvoiceResponse:
    try:
        return InvoiceResponse.model_validate(engine.issue_invoice(invoice_number))
    except BillingError as exc:
        raise _http_error(exc) from exc


@app.post("/api/invoices/{invoice_number}/cancel", response_model=InvoiceResponse)
def cancel_invoice(
    invoice_number: str,
    payload: ReasonRequest,
    engine: BillingEngine = Depends(get_engine),
) -> InvoiceResponse:
    try:
        invoice = engine.cancel_invoice(invoice_number, reason=payload.reason)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return InvoiceResponse.model_validate(invoice)


@app.get("/api/invoices/{invoice_number}/balance", response_model=BalanceResponse)
def get_balance(invoice_number: str, engine: BillingEngine = Depends(get_engine)) -> BalanceResponse:
    try:
        return BalanceResponse.model_validate(engine.get_balance(invoice_number))
    except BillingError as exc:
        raise _http_error(exc) from exc


@app.get("/api/invoices/{invoice_number}/print", response_class=HTMLResponse)
def print_invoice(
    invoice_number: str,
    engine: BillingEngine = Depends(get_engine),
    settings: BillingSettings = Depends(get_settings),
) -> str:
    try:
        invoice = engine.get_invoice(invoice_number)
        payments = engine.list_payments(invoice_number)
        credit_notes = engine.list_credit_notes(invoice_number)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return render_invoice(invoice, payments, credit_notes, settings=settings)


# ----------------------------------------------------------------------
# Payments
# ----------------------------------------------------------------------
@app.get("/api/invoices/{invoice_number}/payments", response_model=List[PaymentResponse])
def list_payments(
    invoice_number: str, engine: BillingEngine = Depends(get_engine)
) -> List[PaymentResponse]:
    try:
        payments = engine.list_payments(invoice_number)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return [PaymentResponse.model_validate(payment) for payment in payments]


@app.post(
    "/api/invoices/{invoice_number}/payments",
    response_model=PaymentResultResponse,
    status_code=201,
)
def apply_payment(
    invoice_number: str,
    payload: PaymentCreate,
    engine: BillingEngine = Depends(get_engine),
) -> PaymentResultResponse:
    request = PaymentRequest(**payload.model_dump())
    try:
        result = engine.apply_payment(invoice_number, request)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return PaymentResultResponse(
        receipt_number=result.receipt_number,
        payment=PaymentResponse.model_validate(result.payment),
        invoice=InvoiceResponse.model_validate(result.invoice),
    )


@app.get("/api/receipts/{receipt_number}", response_class=HTMLResponse)
def print_receipt(
    receipt_number: str,
    engine: BillingEngine = Depends(get_engine),
    settings: BillingSettings = Depends(get_settings),
) -> str:
    try:
        payment = engine.get_payment(receipt_number)
        invoice = engine.get_invoice(payment.invoice_ref)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return render_receipt(invoice, payment, settings=settings)


# ----------------------------------------------------------------------
# Credit notes
# ----------------------------------------------------------------------
@app.get(
    "/api/invoices/{invoice_number}/credit-notes", response_model=List[CreditNoteResponse]
)
def list_credit_notes(
    invoice_number: str, engine: BillingEngine = Depends(get_engine)
) -> List[CreditNoteResponse]:
    try:
        notes = engine.list_credit_notes(invoice_number)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return [CreditNoteResponse.model_validate(note) for note in notes]


@app.post(
    "/api/invoices/{invoice_number}/credit-notes",
    response_model=CreditNoteResponse,
    status_code=201,
)
def issue_credit_note(
    invoice_number: str,
    payload: CreditNoteCreate,
    engine: BillingEngine = Depends(get_engine),
) -> CreditNoteResponse:
    items = [
        CreditNoteItem(
            line_no=item.line_no,
            quantity=item.quantity,
            description=item.description,
            breakdown=item.breakdown.to_breakdown(),
        )
        for item in payload.items
    ]
    try:
        note = engine.issue_credit_note(
            invoice_number,
            reason=payload.reason,
            breakdown=payload.breakdown.to_breakdown(),
            items=items,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return CreditNoteResponse.model_validate(note)


@app.get("/api/credit-notes/{credit_note_number}", response_model=CreditNoteResponse)
def get_credit_note(
    credit_note_number: str, engine: BillingEngine = Depends(get_engine)
) -> CreditNoteResponse:
    try:
        return CreditNoteResponse.model_validate(engine.get_credit_note(credit_note_number))
    except BillingError as exc:
        raise _http_error(exc) from exc


@app.post("/api/credit-notes/{credit_note_number}/adjust", response_model=CreditNoteResponse)
def adjust_credit_note(
    credit_note_number: str, engine: BillingEngine = Depends(get_engine)
) -> CreditNoteResponse:
    try:
        return CreditNoteResponse.model_validate(engine.adjust_credit_note(credit_note_number))
    except BillingError as exc:
        raise _http_error(exc) from exc


@app.post("/api/credit-notes/{credit_note_number}/refund", response_model=CreditNoteResponse)
def refund_credit_note(
    credit_note_number: str,
    payload: RefundRequest,
    engine: BillingEngine = Depends(get_engine),
) -> CreditNoteResponse:
    try:
        note = engine.refund_credit_note(
            credit_note_number, method=payload.method, transaction_id=payload.transaction_id
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return CreditNoteResponse.model_validate(note)


@app.post("/api/credit-notes/{credit_note_number}/reverse", response_model=CreditNoteResponse)
def reverse_credit_note(
    credit_note_number: str,
    payload: ReasonRequest,
    engine: BillingEngine = Depends(get_engine),
) -> CreditNoteResponse:
    try:
        note = engine.reverse_credit_note(credit_note_number, reason=payload.reason)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return CreditNoteResponse.model_validate(note)


# ----------------------------------------------------------------------
# Insurance claims
# ----------------------------------------------------------------------
@app.get("/api/claims", response_model=List[ClaimResponse])
def list_claims(
    invoice_number: Optional[str] = None,
    status: Optional[str] = None,
    engine: BillingEngine = Depends(get_engine),
) -> List[ClaimResponse]:
    try:
        claims = engine.list_claims(invoice_number=invoice_number, status=status)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return [_claim_response(claim) for claim in claims]


@app.post("/api/claims", response_model=ClaimResponse, status_code=201)
def submit_claim(payload: ClaimCreate, engine: BillingEngine = Depends(get_engine)) -> ClaimResponse:
    try:
        claim = engine.submit_claim(
            payload.invoice_number,
            insurance_provider_ref=payload.insurance_provider_ref,
            policy_number=payload.policy_number,
            claim_amount=payload.claim_amount,
            coverage_percentage=payload.coverage_percentage,
            documents=payload.documents,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return _claim_response(claim)


@app.get("/api/claims/{claim_number}", response_model=ClaimResponse)
def get_claim(claim_number: str, engine: BillingEngine = Depends(get_engine)) -> ClaimResponse:
    try:
        return _claim_response(engine.get_claim(claim_number))
    except BillingError as exc:
        raise _http_error(exc) from exc


@app.post("/api/claims/{claim_number}/transitions", response_model=ClaimResponse)
def transition_claim(
    claim_number: str,
    payload: ClaimTransitionRequest,
    engine: BillingEngine = Depends(get_engine),
) -> ClaimResponse:
    try:
        claim = engine.transition_claim(
            claim_number,
            payload.action,
            documents=payload.documents,
            approved_amount=payload.approved_amount,
            remarks=payload.remarks,
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return _claim_response(claim)


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------
@app.get("/api/reports/revenue-summary", response_model=RevenueSummaryResponse)
def revenue_summary(
    start: Optional[date] = None,
    end: Optional[date] = None,
    engine: BillingEngine = Depends(get_engine),
) -> RevenueSummaryResponse:
    return RevenueSummaryResponse(**engine.revenue_summary(start=start, end=end))


@app.get("/api/reports/gst-summary", response_model=GstSummaryResponse)
def gst_summary(
    start: Optional[date] = None,
    end: Optional[date] = None,
    engine: BillingEngine = Depends(get_engine),
) -> GstSummaryResponse:
    return GstSummaryResponse(**engine.gst_summary(start=start, end=end))


@app.get("/api/reports/outstanding", response_model=List[OutstandingInvoiceModel])
def outstanding_invoices(
    as_of: Optional[date] = None,
    engine: BillingEngine = Depends(get_engine),
) -> List[OutstandingInvoiceModel]:
    return [OutstandingInvoiceModel(**row) for row in engine.outstanding_invoices(as_of=as_of)]


@app.get("/api/reports/payment-collection", response_model=PaymentCollectionResponse)
def payment_collection(
    start: Optional[date] = None,
    end: Optional[date] = None,
    engine: BillingEngine = Depends(get_engine),
) -> PaymentCollectionResponse:
    return PaymentCollectionResponse(**engine.payment_collection(start=start, end=end))


__all__ = ["app", "get_engine"]
