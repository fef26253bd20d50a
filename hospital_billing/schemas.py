"""Pydantic schemas for the billing ledger API."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hospital_billing.ledger.models import PaymentMethod, RefundMethod
from hospital_billing.ledger.money import MonetaryBreakdown


def _to_decimal(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value))


class BreakdownModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subtotal: Decimal
    discount: Decimal = Decimal("0")
    taxable_amount: Decimal
    cgst: Decimal = Decimal("0")
    sgst: Decimal = Decimal("0")
    igst: Decimal = Decimal("0")
    total: Decimal

    @field_validator("subtotal", "discount", "taxable_amount", "cgst", "sgst", "igst", "total", mode="before")
    @classmethod
    def _normalize_amount(cls, value: Decimal | float | int | str) -> Decimal:
        return _to_decimal(value)

    def to_breakdown(self) -> MonetaryBreakdown:
        return MonetaryBreakdown(**self.model_dump())


class LineItemCreate(BaseModel):
    description: str
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    gst_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    hsn_sac_code: str = ""
    service_code: Optional[str] = None
    breakdown: Optional[BreakdownModel] = None


class CatalogItemCreate(BaseModel):
    service_code: Optional[str] = None
    service_name: Optional[str] = None
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)


class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_no: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    gst_rate: Decimal
    hsn_sac_code: str
    service_code: Optional[str] = None
    breakdown: BreakdownModel


class InvoiceCreate(BaseModel):
    patient_ref: str
    due_date: Optional[date] = None
    inter_state: Optional[bool] = None
    place_of_supply: Optional[str] = None
    notes: Optional[str] = None


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_number: str
    patient_ref: str
    status: str
    issue_date: Optional[date] = None
    due_date: date
    inter_state: bool
    place_of_supply: Optional[str] = None
    notes: Optional[str] = None
    line_items: List[LineItemResponse]
    breakdown: BreakdownModel
    total_amount: Decimal
    paid_amount: Decimal
    credited_amount: Decimal
    balance_amount: Decimal
    cancellation_reason: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class BalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_amount: Decimal
    paid_amount: Decimal
    credited_amount: Decimal
    balance_amount: Decimal


class PaymentCreate(BaseModel):
    amount: Decimal
    method: PaymentMethod
    transaction_id: Optional[str] = None
    claim_ref: Optional[str] = None
    cheque_number: Optional[str] = None
    bank_name: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _normalize_amount(cls, value: Decimal | float | int | str) -> Decimal:
        return _to_decimal(value)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    receipt_number: str
    invoice_ref: str
    amount: Decimal
    method: str
    received_at: datetime
    transaction_id: Optional[str] = None
    claim_ref: Optional[str] = None
    cheque_number: Optional[str] = None
    bank_name: Optional[str] = None
    notes: Optional[str] = None


class PaymentResultResponse(BaseModel):
    receipt_number: str
    payment: PaymentResponse
    invoice: InvoiceResponse


class CreditNoteItemModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_no: int
    quantity: Decimal = Field(..., gt=0)
    description: str = ""
    breakdown: BreakdownModel


class CreditNoteCreate(BaseModel):
    reason: str
    breakdown: BreakdownModel
    items: List[CreditNoteItemModel] = Field(default_factory=list)


class RefundRequest(BaseModel):
    method: RefundMethod
    transaction_id: Optional[str] = None


class CreditNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    credit_note_number: str
    invoice_ref: str
    reason: str
    status: str
    breakdown: BreakdownModel
    items: List[CreditNoteItemModel]
    issued_at: datetime
    settled_at: Optional[datetime] = None
    refund_method: Optional[str] = None
    refund_transaction_id: Optional[str] = None
    reversal_reason: Optional[str] = None


class ClaimCreate(BaseModel):
    invoice_number: str
    insurance_provider_ref: str
    policy_number: str
    claim_amount: Decimal
    coverage_percentage: Decimal = Field(..., ge=0, le=100)
    documents: List[str] = Field(default_factory=list)


class ClaimTransitionRequest(BaseModel):
    action: str
    documents: List[str] = Field(default_factory=list)
    approved_amount: Optional[Decimal] = None
    remarks: Optional[str] = None


class ClaimEventModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: str
    from_status: Optional[str] = None
    to_status: str
    at: datetime
    remarks: Optional[str] = None


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    claim_number: str
    invoice_ref: str
    patient_ref: str
    insurance_provider_ref: str
    policy_number: str
    claim_amount: Decimal
    coverage_percentage: Decimal
    approved_amount: Optional[Decimal] = None
    patient_responsibility: Optional[Decimal] = None
    status: str
    submission_date: datetime
    tpa_submission_date: Optional[datetime] = None
    tpa_approval_date: Optional[datetime] = None
    tpa_rejection_date: Optional[datetime] = None
    documents: List[str]
    remarks: Optional[str] = None
    history: List[ClaimEventModel]
    allowed_actions: List[str] = Field(default_factory=list)


class OutstandingInvoiceModel(BaseModel):
    invoice_number: str
    patient_ref: str
    due_date: date
    status: str
    total_amount: Decimal
    balance_amount: Decimal
    days_overdue: int


class CountAmountModel(BaseModel):
    count: int
    amount: Decimal


class RevenueSummaryResponse(BaseModel):
    total_invoiced: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    total_discounts: Decimal
    total_taxes: Decimal
    total_credited: Decimal
    collection_rate: Decimal
    payments_by_method: Dict[str, Decimal]
    invoices_by_status: Dict[str, CountAmountModel]
    invoices_by_month: Dict[str, CountAmountModel]


class TaxRowModel(BaseModel):
    taxable_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_tax: Decimal


class GstSummaryResponse(BaseModel):
    totals: TaxRowModel
    by_rate: Dict[str, TaxRowModel]
    by_hsn_sac: Dict[str, TaxRowModel]


class PaymentCollectionResponse(BaseModel):
    total_collected: Decimal
    payment_count: int
    by_method: Dict[str, CountAmountModel]
    by_day: Dict[str, Decimal]
