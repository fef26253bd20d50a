"""Command line interface for the hospital billing ledger."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from hospital_billing.collaborators import demo_collaborators
from hospital_billing.config import get_settings
from hospital_billing.errors import BillingError
from hospital_billing.ledger import BillingEngine
from hospital_billing.rendering.documents import render_invoice, write_html

LOGGER = logging.getLogger(__name__)

REPORTS = ("revenue-summary", "gst-summary", "outstanding", "payment-collection")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hospital billing ledger reports")
    parser.add_argument("--report", choices=REPORTS, action="append", help="Report to export")
    parser.add_argument("--invoice", action="append", default=[], help="Invoice number to render as HTML")
    parser.add_argument("-o", "--output", type=Path, default=Path("out"), help="Output directory")
    parser.add_argument("--config", type=Path, help="Optional settings override JSON")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def build_engine() -> BillingEngine:
    settings = get_settings()
    return BillingEngine(
        conflict_retries=settings.conflict_retries,
        default_due_days=settings.default_due_days,
        hospital_state=settings.hospital_state,
        seed_demo_data=settings.seed_demo_data,
        **demo_collaborators(
            match_threshold=settings.catalog_match_threshold,
            redact_phi=settings.redact_phi,
        ),
    )


def run_report(engine: BillingEngine, name: str):
    if name == "revenue-summary":
        return engine.revenue_summary()
    if name == "gst-summary":
        return engine.gst_summary()
    if name == "outstanding":
        return engine.outstanding_invoices()
    return engine.payment_collection()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    settings = get_settings()
    if args.config:
        overrides = json.loads(args.config.read_text(encoding="utf-8"))
        for key, value in overrides.items():
            setattr(settings, key, value)
    engine = build_engine()
    output_dir = args.output
    output_dir.mkdir(parents=True, exist_ok=True)
    for name in args.report or REPORTS:
        report_path = output_dir / f"{name}.json"
        report_path.write_text(json.dumps(run_report(engine, name), indent=2, default=str), encoding="utf-8")
    for invoice_number in args.invoice:
        try:
            invoice = engine.get_invoice(invoice_number)
        except BillingError as exc:
            LOGGER.warning("Skipping invoice %s: %s", invoice_number, exc)
            continue
        html_content = render_invoice(
            invoice,
            engine.list_payments(invoice_number),
            engine.list_credit_notes(invoice_number),
            settings=settings,
        )
        write_html(html_content, output_dir / f"{invoice_number}.html")
    LOGGER.info("Artifacts written to %s", output_dir)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
