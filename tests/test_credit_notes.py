from decimal import Decimal

import pytest

from hospital_billing.errors import InvalidStateError, NotFoundError, ValidationError
from hospital_billing.ledger import BillingEngine, CreditNoteItem, Invoice, MonetaryBreakdown, PaymentRequest


def half_consultation() -> MonetaryBreakdown:
    return MonetaryBreakdown(
        subtotal=Decimal("500"),
        taxable_amount=Decimal("500"),
        cgst=Decimal("45"),
        sgst=Decimal("45"),
        total=Decimal("590"),
    )


def test_adjusting_credit_note_reduces_balance(engine: BillingEngine, issued_invoice: Invoice) -> None:
    note = engine.issue_credit_note(
        issued_invoice.invoice_number, reason="Consultation billed twice", breakdown=half_consultation()
    )
    assert note.credit_note_number == "CN-202610-0001"
    assert note.status == "ISSUED"
    assert engine.get_balance(issued_invoice.invoice_number).balance_amount == Decimal("1180.00")

    adjusted = engine.adjust_credit_note(note.credit_note_number)
    assert adjusted.status == "ADJUSTED"
    invoice = engine.get_invoice(issued_invoice.invoice_number)
    assert invoice.balance_amount == Decimal("590.00")
    assert invoice.credited_amount == Decimal("590.00")
    assert invoice.status == "PARTIALLY_PAID"

    with pytest.raises(InvalidStateError):
        engine.adjust_credit_note(note.credit_note_number)
    assert engine.get_balance(issued_invoice.invoice_number).balance_amount == Decimal("590.00")


def test_adjustment_plus_payment_settles_invoice(engine: BillingEngine, issued_invoice: Invoice) -> None:
    note = engine.issue_credit_note(issued_invoice.invoice_number, reason="Discount", breakdown=half_consultation())
    engine.adjust_credit_note(note.credit_note_number)
    result = engine.apply_payment(issued_invoice.invoice_number, PaymentRequest(amount=Decimal("590"), method="cash"))
    assert result.invoice.status == "PAID"
    assert engine.verify_integrity(issued_invoice.invoice_number).balance_amount == Decimal("0.00")


def test_refund_leaves_invoice_balance_unchanged(engine: BillingEngine, issued_invoice: Invoice) -> None:
    number = issued_invoice.invoice_number
    note = engine.issue_credit_note(number, reason="Service not rendered", breakdown=half_consultation())
    engine.apply_payment(number, PaymentRequest(amount=Decimal("1180"), method="cash"))

    with pytest.raises(ValidationError):
        engine.adjust_credit_note(note.credit_note_number)
    with pytest.raises(ValidationError):
        engine.refund_credit_note(note.credit_note_number, method="transfer")

    refunded = engine.refund_credit_note(note.credit_note_number, method="transfer", transaction_id="NEFT-42")
    assert refunded.status == "REFUNDED"
    assert refunded.refund_transaction_id == "NEFT-42"
    invoice = engine.get_invoice(number)
    assert invoice.status == "PAID"
    assert invoice.balance_amount == Decimal("0.00")
    with pytest.raises(InvalidStateError):
        engine.reverse_credit_note(note.credit_note_number, reason="Too late")


def test_credit_note_cannot_exceed_remaining_balance(engine: BillingEngine, issued_invoice: Invoice) -> None:
    number = issued_invoice.invoice_number
    engine.apply_payment(number, PaymentRequest(amount=Decimal("1000"), method="cash"))
    with pytest.raises(ValidationError, match="creditable"):
        engine.issue_credit_note(number, reason="Billed twice", breakdown=half_consultation())
    assert engine.list_credit_notes(number) == []


def test_paid_invoice_cannot_be_credited(engine: BillingEngine, issued_invoice: Invoice) -> None:
    number = issued_invoice.invoice_number
    engine.apply_payment(number, PaymentRequest(amount=Decimal("1180"), method="cash"))
    with pytest.raises(ValidationError):
        engine.issue_credit_note(number, reason="After settlement", breakdown=half_consultation())


def test_cash_refund_needs_no_transaction(engine: BillingEngine, issued_invoice: Invoice) -> None:
    note = engine.issue_credit_note(issued_invoice.invoice_number, reason="Goodwill", breakdown=half_consultation())
    assert engine.refund_credit_note(note.credit_note_number, method="cash").status == "REFUNDED"


def test_pending_credit_notes_share_the_balance(engine: BillingEngine, issued_invoice: Invoice) -> None:
    number = issued_invoice.invoice_number
    first = engine.issue_credit_note(number, reason="Part one", breakdown=half_consultation())
    engine.issue_credit_note(number, reason="Part two", breakdown=half_consultation())
    with pytest.raises(ValidationError, match="creditable"):
        engine.issue_credit_note(number, reason="Too much", breakdown=half_consultation())

    reversed_note = engine.reverse_credit_note(first.credit_note_number, reason="Raised in error")
    assert reversed_note.status == "REVERSED"
    assert reversed_note.reversal_reason == "Raised in error"
    assert engine.issue_credit_note(number, reason="Replacement", breakdown=half_consultation()).status == "ISSUED"


def test_credit_note_requires_valid_breakdown(engine: BillingEngine, issued_invoice: Invoice) -> None:
    broken = MonetaryBreakdown(
        subtotal=Decimal("500"), taxable_amount=Decimal("500"), cgst=Decimal("45"), total=Decimal("545")
    )
    with pytest.raises(ValidationError):
        engine.issue_credit_note(issued_invoice.invoice_number, reason="Bad split", breakdown=broken)
    with pytest.raises(ValidationError):
        engine.issue_credit_note(issued_invoice.invoice_number, reason="", breakdown=half_consultation())
    with pytest.raises(ValidationError):
        engine.issue_credit_note(
            issued_invoice.invoice_number, reason="Nothing", breakdown=MonetaryBreakdown.zero()
        )


def test_credit_note_items_respect_invoiced_quantity(engine: BillingEngine) -> None:
    invoice = engine.create_invoice("PAT-1002")
    engine.add_line_item(invoice.invoice_number, description="Dressing", quantity=4, unit_price="125", gst_rate="5")
    engine.issue_invoice(invoice.invoice_number)
    one_pack = MonetaryBreakdown(
        subtotal=Decimal("125"),
        taxable_amount=Decimal("125"),
        cgst=Decimal("3.13"),
        sgst=Decimal("3.12"),
        total=Decimal("131.25"),
    )
    three_packs = one_pack + one_pack + one_pack
    note = engine.issue_credit_note(
        invoice.invoice_number,
        reason="Unused dressings",
        breakdown=three_packs,
        items=[CreditNoteItem(line_no=1, quantity=Decimal("3"), breakdown=three_packs)],
    )
    assert note.items[0].quantity == Decimal("3")
    with pytest.raises(ValidationError, match="exceeds invoiced quantity"):
        engine.issue_credit_note(
            invoice.invoice_number,
            reason="Over-credit",
            breakdown=one_pack + one_pack,
            items=[CreditNoteItem(line_no=1, quantity=Decimal("2"), breakdown=one_pack + one_pack)],
        )
    with pytest.raises(ValidationError, match="no line"):
        engine.issue_credit_note(
            invoice.invoice_number,
            reason="Wrong line",
            breakdown=one_pack,
            items=[CreditNoteItem(line_no=9, quantity=Decimal("1"), breakdown=one_pack)],
        )
    with pytest.raises(ValidationError, match="sum of its items"):
        engine.issue_credit_note(
            invoice.invoice_number,
            reason="Mismatch",
            breakdown=one_pack + one_pack,
            items=[CreditNoteItem(line_no=1, quantity=Decimal("1"), breakdown=one_pack)],
        )


def test_draft_and_cancelled_invoices_cannot_be_credited(engine: BillingEngine, issued_invoice: Invoice) -> None:
    draft = engine.create_invoice("PAT-1003")
    with pytest.raises(InvalidStateError):
        engine.issue_credit_note(draft.invoice_number, reason="Draft", breakdown=half_consultation())
    engine.cancel_invoice(issued_invoice.invoice_number, reason="Duplicate")
    with pytest.raises(InvalidStateError):
        engine.issue_credit_note(issued_invoice.invoice_number, reason="Cancelled", breakdown=half_consultation())


def test_adjusted_credit_note_blocks_cancellation(engine: BillingEngine, issued_invoice: Invoice) -> None:
    note = engine.issue_credit_note(issued_invoice.invoice_number, reason="Discount", breakdown=half_consultation())
    engine.adjust_credit_note(note.credit_note_number)
    with pytest.raises(InvalidStateError):
        engine.cancel_invoice(issued_invoice.invoice_number, reason="Change of plan")


def test_lookup_credit_notes(engine: BillingEngine, issued_invoice: Invoice) -> None:
    note = engine.issue_credit_note(issued_invoice.invoice_number, reason="Discount", breakdown=half_consultation())
    assert engine.get_credit_note(note.credit_note_number).reason == "Discount"
    assert [n.credit_note_number for n in engine.list_credit_notes(issued_invoice.invoice_number)] == [
        note.credit_note_number
    ]
    with pytest.raises(NotFoundError):
        engine.get_credit_note("CN-202610-0099")


def test_open_credit_note_blocks_cancellation(engine: BillingEngine, issued_invoice: Invoice) -> None:
    number = issued_invoice.invoice_number
    note = engine.issue_credit_note(number, reason="Discount", breakdown=half_consultation())
    with pytest.raises(InvalidStateError, match="open credit notes"):
        engine.cancel_invoice(number, reason="Raised in error")
    engine.reverse_credit_note(note.credit_note_number, reason="Cancelling instead")
    assert engine.cancel_invoice(number, reason="Raised in error").status == "CANCELLED"
