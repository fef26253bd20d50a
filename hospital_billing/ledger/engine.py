"""Billing engine exposing the ledger operations to calling surfaces."""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from hospital_billing.collaborators import (
    DocumentStore,
    Notifier,
    PatientDirectory,
    ServiceCatalog,
    notify,
)
from hospital_billing.errors import ConcurrencyConflictError, NotFoundError, ValidationError
from hospital_billing.ledger import claims as claim_workflow
from hospital_billing.ledger import credit_notes as credit_engine
from hospital_billing.ledger import invoices as ledger
from hospital_billing.ledger import payments as payment_application
from hospital_billing.ledger import reports
from hospital_billing.ledger.models import (
    Balance,
    ClaimAction,
    CreditNote,
    CreditNoteItem,
    InsuranceClaim,
    Invoice,
    LineItem,
    Payment,
    PaymentRequest,
    PaymentResult,
    RefundMethod,
    utcnow,
)
from hospital_billing.ledger.money import MonetaryBreakdown, ZERO
from hospital_billing.ledger.store import InvoiceAccount, LedgerStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class BillingEngine:
    """In-memory billing ledger used by the API and the CLI.

    Every mutating operation reads one invoice account, applies the change
    to a private copy and commits it with a version check while holding that
    invoice's lock. Operations on different invoices never wait on each other.
    """

    def __init__(
        self,
        *,
        store: Optional[LedgerStore] = None,
        patients: Optional[PatientDirectory] = None,
        catalog: Optional[ServiceCatalog] = None,
        documents: Optional[DocumentStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
        conflict_retries: int = 3,
        default_due_days: int = 15,
        hospital_state: Optional[str] = None,
        seed_demo_data: bool = False,
    ) -> None:
        self._store = store or LedgerStore()
        self._patients = patients
        self._catalog = catalog
        self._documents = documents
        self._notifier = notifier
        self._clock = clock
        self._conflict_retries = conflict_retries
        self._default_due_days = default_due_days
        self._hospital_state = hospital_state
        if seed_demo_data:
            self._seed_demo_ledger()

    @property
    def store(self) -> LedgerStore:
        return self._store

    def _today(self) -> date:
        return self._clock().date()

    def _mutate(self, invoice_number: str, change: Callable[[InvoiceAccount], T]) -> T:
        """Run ``change`` against a fresh copy of the account and commit it."""
        attempt = 0
        while True:
            with self._store.lock(invoice_number):
                account = self._store.load(invoice_number)
                result = change(account)
                try:
                    self._store.commit(account)
                    return result
                except ConcurrencyConflictError as exc:
                    attempt += 1
                    if attempt > self._conflict_retries:
                        raise
                    LOGGER.warning("Retrying write to %s (attempt %s): %s", invoice_number, attempt, exc)

    def _number(self, prefix: str) -> Callable[[], str]:
        return lambda: self._store.next_number(prefix, self._today())

    # ------------------------------------------------------------------
    # Invoice management
    # ------------------------------------------------------------------
    def create_invoice(
        self,
        patient_ref: str,
        *,
        due_date: Optional[date] = None,
        inter_state: Optional[bool] = None,
        place_of_supply: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        if self._patients is not None and self._patients.resolve(patient_ref) is None:
            raise NotFoundError(f"Unknown patient '{patient_ref}'")
        if inter_state is None:
            inter_state = bool(
                place_of_supply
                and self._hospital_state
                and place_of_supply.strip().lower() != self._hospital_state.strip().lower()
            )
        invoice = ledger.new_invoice(
            self._store.next_number("INV", self._today()),
            patient_ref,
            due_date or self._today() + timedelta(days=self._default_due_days),
            inter_state=inter_state,
            place_of_supply=place_of_supply,
            notes=notes,
        )
        self._store.create(InvoiceAccount(invoice=invoice))
        LOGGER.info("Created draft invoice %s", invoice.invoice_number)
        return self.get_invoice(invoice.invoice_number)

    def add_line_item(
        self,
        invoice_number: str,
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
        return self._mutate(
            invoice_number,
            lambda account: ledger.add_line_item(
                account.invoice,
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                gst_rate=gst_rate,
                discount=discount,
                hsn_sac_code=hsn_sac_code,
                service_code=service_code,
                breakdown=breakdown,
            ),
        )

    def add_catalog_item(
        self,
        invoice_number: str,
        service_code: Optional[str] = None,
        *,
        service_name: Optional[str] = None,
        quantity: Decimal | int | str = 1,
        discount: Decimal | float | int | str = ZERO,
    ) -> LineItem:
        """Add a line priced from the service catalog, by code or by name."""
        if self._catalog is None:
            raise NotFoundError("No service catalog is configured")
        service = None
        if service_code:
            service = self._catalog.get(service_code)
        elif service_name:
            service = self._catalog.search(service_name)
        if service is None:
            raise NotFoundError(f"No catalog service matches '{service_code or service_name}'")
        return self.add_line_item(
            invoice_number,
            description=service.name,
            quantity=quantity,
            unit_price=service.unit_price,
            gst_rate=service.gst_rate,
            discount=discount,
            hsn_sac_code=service.hsn_sac_code,
            service_code=service.service_code,
        )

    def remove_line_item(self, invoice_number: str, line_no: int) -> LineItem:
        return self._mutate(
            invoice_number, lambda account: ledger.remove_line_item(account.invoice, line_no)
        )

    def issue_invoice(self, invoice_number: str) -> Invoice:
        return self._mutate(
            invoice_number, lambda account: ledger.issue(account.invoice, as_of=self._today())
        )

    def cancel_invoice(self, invoice_number: str, *, reason: str) -> Invoice:
        def change(account: InvoiceAccount) -> Invoice:
            invoice = ledger.cancel(
                account.invoice,
                account.payments,
                account.credit_notes,
                reason=reason,
                at=self._clock(),
            )
            LOGGER.info("Cancelled invoice %s", invoice.invoice_number)
            return invoice

        return self._mutate(invoice_number, change)

    def get_invoice(self, invoice_number: str) -> Invoice:
        """Return the invoice with its status evaluated for today."""
        account = self._store.load(invoice_number)
        return ledger.refresh(
            account.invoice, account.payments, account.credit_notes, as_of=self._today()
        )

    def list_invoices(
        self,
        *,
        patient_ref: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Invoice]:
        today = self._today()
        invoices = []
        for account in self._store.accounts():
            invoice = ledger.refresh(
                account.invoice, account.payments, account.credit_notes, as_of=today
            )
            if patient_ref and invoice.patient_ref != patient_ref:
                continue
            if status and invoice.status != status:
                continue
            invoices.append(invoice)
        invoices.sort(key=lambda invoice: invoice.invoice_number)
        return invoices[:limit] if limit is not None else invoices

    def get_balance(self, invoice_number: str) -> Balance:
        account = self._store.load(invoice_number)
        return ledger.recompute_balance(account.invoice, account.payments, account.credit_notes)

    def verify_integrity(self, invoice_number: str) -> Balance:
        account = self._store.load(invoice_number)
        return ledger.verify(account.invoice, account.payments, account.credit_notes)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def apply_payment(self, invoice_number: str, request: PaymentRequest) -> PaymentResult:
        def change(account: InvoiceAccount) -> PaymentResult:
            payment = payment_application.apply_payment(
                account.invoice,
                account.payments,
                account.credit_notes,
                account.claims,
                request,
                next_number=self._number("RCPT"),
                as_of=self._today(),
                at=self._clock(),
            )
            return PaymentResult(invoice=account.invoice, payment=payment)

        result = self._mutate(invoice_number, change)
        notify(
            self._notifier,
            "payment_receipt",
            result.invoice.patient_ref,
            {
                "receipt_number": result.receipt_number,
                "invoice_number": invoice_number,
                "amount": str(result.payment.amount),
                "balance": str(result.invoice.balance_amount),
            },
        )
        return result

    def list_payments(self, invoice_number: str) -> List[Payment]:
        return self._store.load(invoice_number).payments

    def get_payment(self, receipt_number: str) -> Payment:
        account = self._store.load(self._store.invoice_for_receipt(receipt_number))
        for payment in account.payments:
            if payment.receipt_number == receipt_number:
                return payment
        raise NotFoundError(f"Unknown receipt '{receipt_number}'")

    # ------------------------------------------------------------------
    # Credit notes
    # ------------------------------------------------------------------
    def issue_credit_note(
        self,
        invoice_number: str,
        *,
        reason: str,
        breakdown: MonetaryBreakdown,
        items: Optional[Sequence[CreditNoteItem]] = None,
    ) -> CreditNote:
        return self._mutate(
            invoice_number,
            lambda account: credit_engine.issue(
                account.invoice,
                account.credit_notes,
                next_number=self._number("CN"),
                reason=reason,
                breakdown=breakdown,
                items=items,
                at=self._clock(),
            ),
        )

    def _mutate_credit_note(
        self, credit_note_number: str, change: Callable[[InvoiceAccount, CreditNote], CreditNote]
    ) -> CreditNote:
        invoice_number = self._store.invoice_for_credit_note(credit_note_number)
        return self._mutate(
            invoice_number,
            lambda account: change(
                account, credit_engine.find(account.credit_notes, credit_note_number)
            ),
        )

    def adjust_credit_note(self, credit_note_number: str) -> CreditNote:
        return self._mutate_credit_note(
            credit_note_number,
            lambda account, note: credit_engine.adjust(
                account.invoice,
                account.payments,
                account.credit_notes,
                note,
                as_of=self._today(),
                at=self._clock(),
            ),
        )

    def refund_credit_note(
        self,
        credit_note_number: str,
        *,
        method: RefundMethod,
        transaction_id: Optional[str] = None,
    ) -> CreditNote:
        note = self._mutate_credit_note(
            credit_note_number,
            lambda account, note: credit_engine.refund(
                note, method=method, transaction_id=transaction_id, at=self._clock()
            ),
        )
        invoice = self._store.load(note.invoice_ref).invoice
        notify(
            self._notifier,
            "credit_note_refund",
            invoice.patient_ref,
            {"credit_note_number": note.credit_note_number, "amount": str(note.amount), "method": method},
        )
        return note

    def reverse_credit_note(self, credit_note_number: str, *, reason: str) -> CreditNote:
        return self._mutate_credit_note(
            credit_note_number,
            lambda account, note: credit_engine.reverse(note, reason=reason, at=self._clock()),
        )

    def get_credit_note(self, credit_note_number: str) -> CreditNote:
        account = self._store.load(self._store.invoice_for_credit_note(credit_note_number))
        return credit_engine.find(account.credit_notes, credit_note_number)

    def list_credit_notes(self, invoice_number: str) -> List[CreditNote]:
        return self._store.load(invoice_number).credit_notes

    # ------------------------------------------------------------------
    # Insurance claims
    # ------------------------------------------------------------------
    def _check_documents(self, documents: Optional[Sequence[str]]) -> None:
        if self._documents is None:
            return
        missing = [ref for ref in documents or [] if ref and not self._documents.exists(ref)]
        if missing:
            raise ValidationError(f"Unknown claim documents: {', '.join(missing)}")

    def submit_claim(
        self,
        invoice_number: str,
        *,
        insurance_provider_ref: str,
        policy_number: str,
        claim_amount: Decimal | float | int | str,
        coverage_percentage: Decimal | float | int | str,
        documents: Optional[Sequence[str]] = None,
    ) -> InsuranceClaim:
        self._check_documents(documents)
        return self._mutate(
            invoice_number,
            lambda account: claim_workflow.submit(
                account.invoice,
                account.claims,
                next_number=self._number("CLM"),
                insurance_provider_ref=insurance_provider_ref,
                policy_number=policy_number,
                claim_amount=claim_amount,
                coverage_percentage=coverage_percentage,
                documents=documents,
                at=self._clock(),
            ),
        )

    def transition_claim(
        self,
        claim_number: str,
        action: ClaimAction,
        *,
        documents: Optional[Sequence[str]] = None,
        approved_amount: Decimal | float | int | str | None = None,
        remarks: Optional[str] = None,
    ) -> InsuranceClaim:
        self._check_documents(documents)
        invoice_number = self._store.invoice_for_claim(claim_number)
        claim = self._mutate(
            invoice_number,
            lambda account: claim_workflow.transition(
                claim_workflow.find(account.claims, claim_number),
                action,
                at=self._clock(),
                documents=documents,
                approved_amount=approved_amount,
                remarks=remarks,
            ),
        )
        notify(
            self._notifier,
            "claim_correspondence",
            claim.patient_ref,
            {"claim_number": claim.claim_number, "status": claim.status, "remarks": remarks},
        )
        return claim

    def get_claim(self, claim_number: str) -> InsuranceClaim:
        account = self._store.load(self._store.invoice_for_claim(claim_number))
        return claim_workflow.find(account.claims, claim_number)

    def list_claims(
        self, *, invoice_number: Optional[str] = None, status: Optional[str] = None
    ) -> List[InsuranceClaim]:
        if invoice_number:
            accounts = [self._store.load(invoice_number)]
        else:
            accounts = self._store.accounts()
        return [
            claim
            for account in accounts
            for claim in account.claims
            if status is None or claim.status == status
        ]

    # ------------------------------------------------------------------
    # Reporting helpers
    # ------------------------------------------------------------------
    def _current_accounts(self) -> List[InvoiceAccount]:
        today = self._today()
        accounts = self._store.accounts()
        for account in accounts:
            ledger.refresh(account.invoice, account.payments, account.credit_notes, as_of=today)
        return accounts

    def revenue_summary(
        self, *, start: Optional[date] = None, end: Optional[date] = None
    ) -> Dict[str, Any]:
        return reports.revenue_summary(self._current_accounts(), start=start, end=end)

    def gst_summary(
        self, *, start: Optional[date] = None, end: Optional[date] = None
    ) -> Dict[str, Any]:
        return reports.gst_summary(self._current_accounts(), start=start, end=end)

    def outstanding_invoices(self, *, as_of: Optional[date] = None) -> List[Dict[str, Any]]:
        return reports.outstanding_invoices(self._current_accounts(), as_of=as_of or self._today())

    def payment_collection(
        self, *, start: Optional[date] = None, end: Optional[date] = None
    ) -> Dict[str, Any]:
        return reports.payment_collection(self._current_accounts(), start=start, end=end)

    # ------------------------------------------------------------------
    # Demo data
    # ------------------------------------------------------------------
    def _seed_demo_ledger(self) -> None:
        """Populate the ledger with sample invoices for the demo API."""

        consult = self.create_invoice("PAT-1001", notes="Outpatient consultation")
        self.add_line_item(
            consult.invoice_number,
            description="Specialist consultation",
            quantity=1,
            unit_price="1000",
            gst_rate="18",
            hsn_sac_code="999312",
        )
        self.issue_invoice(consult.invoice_number)
        self.apply_payment(
            consult.invoice_number,
            PaymentRequest(amount=Decimal("500"), method="cash"),
        )

        surgery = self.create_invoice("PAT-1002", notes="Day-care procedure")
        self.add_line_item(
            surgery.invoice_number,
            description="Minor procedure package",
            quantity=1,
            unit_price="5000",
            gst_rate="12",
            hsn_sac_code="999311",
        )
        self.add_line_item(
            surgery.invoice_number,
            description="Dressing materials",
            quantity=4,
            unit_price="125",
            gst_rate="5",
            hsn_sac_code="3005",
        )
        self.issue_invoice(surgery.invoice_number)
        claim = self.submit_claim(
            surgery.invoice_number,
            insurance_provider_ref="TPA-MEDASSIST",
            policy_number="POL-55-2041",
            claim_amount="5000",
            coverage_percentage="80",
        )
        self.transition_claim(
            claim.claim_number, "SUBMIT_TO_TPA", documents=["DOC-DISCHARGE-SUMMARY"]
        )

        pharmacy = self.create_invoice("PAT-1003", notes="Pharmacy counter")
        self.add_line_item(
            pharmacy.invoice_number,
            description="Antibiotic course",
            quantity=2,
            unit_price="250",
            gst_rate="12",
            hsn_sac_code="3004",
        )
        self.issue_invoice(pharmacy.invoice_number)
        self.apply_payment(
            pharmacy.invoice_number,
            PaymentRequest(amount=Decimal("560"), method="card", transaction_id="POS-778812"),
        )


__all__ = ["BillingEngine"]
