"""HTML rendering for invoices and payment receipts."""
from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from hospital_billing.config import BillingSettings, get_settings
from hospital_billing.ledger.models import CreditNote, Invoice, Payment


def _format_amount(value: Decimal, currency: str = "INR") -> str:
    symbol = "₹" if currency == "INR" else f"{currency} "
    return f"{symbol}{value:,.2f}"


def _build_environment(settings: BillingSettings) -> Environment:
    loader = FileSystemLoader(str(settings.template_dir))
    env = Environment(loader=loader, autoescape=select_autoescape(["html", "xml", "j2"]))
    env.filters["money"] = lambda value: _format_amount(value, settings.currency)
    return env


def render_invoice(
    invoice: Invoice,
    payments: Sequence[Payment] = (),
    credit_notes: Sequence[CreditNote] = (),
    settings: BillingSettings | None = None,
) -> str:
    settings = settings or get_settings()
    template = _build_environment(settings).get_template("invoice.html.j2")
    return template.render(
        invoice=invoice,
        payments=payments,
        credit_notes=credit_notes,
        settings=settings,
    )


def render_receipt(
    invoice: Invoice,
    payment: Payment,
    settings: BillingSettings | None = None,
) -> str:
    settings = settings or get_settings()
    template = _build_environment(settings).get_template("receipt.html.j2")
    return template.render(invoice=invoice, payment=payment, settings=settings)


def write_html(content: str, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(content, encoding="utf-8")
    return output_path


__all__ = ["render_invoice", "render_receipt", "write_html"]
