from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hospital_billing.collaborators import demo_collaborators
from hospital_billing.ledger import BillingEngine, Invoice


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int) -> None:
        self.now = self.now + timedelta(days=days)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def collaborators() -> dict:
    return demo_collaborators()


@pytest.fixture()
def engine(clock: FakeClock, collaborators: dict) -> BillingEngine:
    return BillingEngine(clock=clock, hospital_state="Karnataka", **collaborators)


@pytest.fixture()
def issued_invoice(engine: BillingEngine) -> Invoice:
    """A ₹1,180 invoice: ₹1,000 taxable with ₹90 CGST and ₹90 SGST."""
    invoice = engine.create_invoice("PAT-1001")
    engine.add_line_item(
        invoice.invoice_number,
        description="Specialist consultation",
        quantity=1,
        unit_price=Decimal("1000"),
        gst_rate=Decimal("18"),
        hsn_sac_code="999312",
    )
    return engine.issue_invoice(invoice.invoice_number)
