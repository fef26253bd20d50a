from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from hospital_billing.errors import ConcurrencyConflictError, LedgerIntegrityError, ValidationError
from hospital_billing.ledger import BillingEngine, Invoice, LedgerStore, PaymentRequest


def test_demo_ledger_is_consistent(clock, collaborators: dict) -> None:
    engine = BillingEngine(clock=clock, seed_demo_data=True, **collaborators)
    invoices = engine.list_invoices()
    assert [invoice.status for invoice in invoices] == ["PARTIALLY_PAID", "PENDING", "PAID"]
    assert [invoice.total_amount for invoice in invoices] == [
        Decimal("1180.00"),
        Decimal("6125.00"),
        Decimal("560.00"),
    ]
    for invoice in invoices:
        engine.verify_integrity(invoice.invoice_number)
    assert engine.list_claims()[0].status == "SUBMITTED_TO_TPA"


def test_concurrent_payments_never_overdraw(engine: BillingEngine, issued_invoice: Invoice) -> None:
    number = issued_invoice.invoice_number

    def pay(_: int) -> bool:
        try:
            engine.apply_payment(number, PaymentRequest(amount=Decimal("100"), method="cash"))
        except ValidationError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(pay, range(20)))

    assert outcomes.count(True) == 11
    balance = engine.verify_integrity(number)
    assert balance.paid_amount == Decimal("1100.00")
    assert balance.balance_amount == Decimal("80.00")
    receipts = [payment.receipt_number for payment in engine.list_payments(number)]
    assert len(set(receipts)) == 11


def test_write_is_retried_after_version_conflict(
    engine: BillingEngine, issued_invoice: Invoice, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = engine.store
    real_commit = store.commit
    calls = []

    def flaky_commit(account):
        calls.append(account.version)
        if len(calls) == 1:
            raise ConcurrencyConflictError(account.invoice.invoice_number, account.version, account.version + 1)
        return real_commit(account)

    monkeypatch.setattr(store, "commit", flaky_commit)
    result = engine.apply_payment(
        issued_invoice.invoice_number, PaymentRequest(amount=Decimal("180"), method="cash")
    )
    assert len(calls) == 2
    assert result.invoice.balance_amount == Decimal("1000.00")
    assert len(engine.list_payments(issued_invoice.invoice_number)) == 1


def test_conflict_surfaces_when_retries_are_exhausted(clock, collaborators: dict, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = BillingEngine(clock=clock, conflict_retries=0, **collaborators)
    invoice = engine.create_invoice("PAT-1001")
    engine.add_line_item(invoice.invoice_number, description="Consult", quantity=1, unit_price="100")
    engine.issue_invoice(invoice.invoice_number)

    def always_stale(account):
        raise ConcurrencyConflictError(account.invoice.invoice_number, account.version, account.version + 1)

    monkeypatch.setattr(engine.store, "commit", always_stale)
    with pytest.raises(ConcurrencyConflictError):
        engine.apply_payment(invoice.invoice_number, PaymentRequest(amount=Decimal("10"), method="cash"))
    assert engine.get_balance(invoice.invoice_number).paid_amount == Decimal("0.00")


def test_store_refuses_stale_commit(engine: BillingEngine, issued_invoice: Invoice) -> None:
    store: LedgerStore = engine.store
    first = store.load(issued_invoice.invoice_number)
    second = store.load(issued_invoice.invoice_number)
    first.invoice.notes = "Updated by desk A"
    store.commit(first)
    second.invoice.notes = "Updated by desk B"
    with pytest.raises(ConcurrencyConflictError):
        store.commit(second)
    assert store.load(issued_invoice.invoice_number).invoice.notes == "Updated by desk A"


def test_store_keeps_payments_append_only(engine: BillingEngine, issued_invoice: Invoice) -> None:
    engine.apply_payment(issued_invoice.invoice_number, PaymentRequest(amount=Decimal("100"), method="cash"))
    account = engine.store.load(issued_invoice.invoice_number)
    account.payments.clear()
    with pytest.raises(LedgerIntegrityError):
        engine.store.commit(account)


def test_loaded_accounts_are_private_copies(engine: BillingEngine, issued_invoice: Invoice) -> None:
    account = engine.store.load(issued_invoice.invoice_number)
    account.invoice.balance_amount = Decimal("0")
    assert engine.get_balance(issued_invoice.invoice_number).balance_amount == Decimal("1180.00")
    assert engine.get_invoice(issued_invoice.invoice_number).balance_amount == Decimal("1180.00")


def test_numbering_restarts_each_month(engine: BillingEngine, clock) -> None:
    assert engine.create_invoice("PAT-1001").invoice_number == "INV-202610-0001"
    clock.advance(20)
    assert engine.create_invoice("PAT-1001").invoice_number == "INV-202611-0001"
