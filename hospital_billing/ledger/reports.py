"""Billing reports computed from invoice accounts."""
from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from hospital_billing.ledger.money import ZERO, quantize
from hospital_billing.ledger.store import InvoiceAccount


def _in_period(day: Optional[date], start: Optional[date], end: Optional[date]) -> bool:
    if day is None:
        return False
    if start and day < start:
        return False
    if end and day > end:
        return False
    return True


def _billed(accounts: Iterable[InvoiceAccount]) -> List[InvoiceAccount]:
    return [a for a in accounts if not a.invoice.is_draft and not a.invoice.is_cancelled]


def revenue_summary(
    accounts: Iterable[InvoiceAccount],
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Any]:
    accounts = list(accounts)
    invoiced = [
        a for a in _billed(accounts) if _in_period(a.invoice.issue_date, start, end)
    ]
    payments = [
        p
        for a in accounts
        for p in a.payments
        if _in_period(p.received_at.date(), start, end)
    ]
    total_invoiced = sum((a.invoice.total_amount for a in invoiced), ZERO)
    total_collected = sum((p.amount for p in payments), ZERO)
    by_method: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for payment in payments:
        by_method[payment.method] += payment.amount
    by_status: Dict[str, Dict[str, Any]] = {}
    by_month: Dict[str, Dict[str, Any]] = {}
    for account in invoiced:
        invoice = account.invoice
        month = invoice.issue_date.strftime("%Y-%m")
        for bucket, key in ((by_status, invoice.status), (by_month, month)):
            entry = bucket.setdefault(key, {"count": 0, "amount": ZERO})
            entry["count"] += 1
            entry["amount"] += invoice.total_amount
    collection_rate = (
        quantize(total_collected / total_invoiced * 100) if total_invoiced > ZERO else ZERO
    )
    return {
        "total_invoiced": total_invoiced,
        "total_collected": total_collected,
        "total_outstanding": sum((a.invoice.balance_amount for a in invoiced), ZERO),
        "total_discounts": sum((a.invoice.breakdown.discount for a in invoiced), ZERO),
        "total_taxes": sum((a.invoice.breakdown.tax_total for a in invoiced), ZERO),
        "total_credited": sum((a.invoice.credited_amount for a in invoiced), ZERO),
        "collection_rate": collection_rate,
        "payments_by_method": dict(by_method),
        "invoices_by_status": by_status,
        "invoices_by_month": by_month,
    }


def gst_summary(
    accounts: Iterable[InvoiceAccount],
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Any]:
    by_rate: Dict[str, Dict[str, Decimal]] = {}
    by_code: Dict[str, Dict[str, Decimal]] = {}
    totals = {"taxable_amount": ZERO, "cgst": ZERO, "sgst": ZERO, "igst": ZERO, "total_tax": ZERO}
    for account in _billed(accounts):
        if not _in_period(account.invoice.issue_date, start, end):
            continue
        for line in account.invoice.line_items:
            amounts = line.breakdown
            row = {
                "taxable_amount": amounts.taxable_amount,
                "cgst": amounts.cgst,
                "sgst": amounts.sgst,
                "igst": amounts.igst,
                "total_tax": amounts.tax_total,
            }
            rate_key = f"{line.gst_rate.normalize():f}%"
            for bucket, key in ((by_rate, rate_key), (by_code, line.hsn_sac_code or "UNCLASSIFIED")):
                entry = bucket.setdefault(key, {name: ZERO for name in row})
                for name, value in row.items():
                    entry[name] += value
            for name, value in row.items():
                totals[name] += value
    return {"totals": totals, "by_rate": by_rate, "by_hsn_sac": by_code}


def outstanding_invoices(accounts: Iterable[InvoiceAccount], *, as_of: date) -> List[Dict[str, Any]]:
    rows = []
    for account in _billed(accounts):
        invoice = account.invoice
        if invoice.balance_amount <= ZERO:
            continue
        rows.append(
            {
                "invoice_number": invoice.invoice_number,
                "patient_ref": invoice.patient_ref,
                "due_date": invoice.due_date,
                "status": invoice.status,
                "total_amount": invoice.total_amount,
                "balance_amount": invoice.balance_amount,
                "days_overdue": max((as_of - invoice.due_date).days, 0),
            }
        )
    rows.sort(key=lambda row: (-row["days_overdue"], row["invoice_number"]))
    return rows


def payment_collection(
    accounts: Iterable[InvoiceAccount],
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Any]:
    by_day: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_method: Dict[str, Dict[str, Any]] = {}
    total = ZERO
    count = 0
    for account in accounts:
        for payment in account.payments:
            day = payment.received_at.date()
            if not _in_period(day, start, end):
                continue
            by_day[day.isoformat()] += payment.amount
            entry = by_method.setdefault(payment.method, {"count": 0, "amount": ZERO})
            entry["count"] += 1
            entry["amount"] += payment.amount
            total += payment.amount
            count += 1
    return {
        "total_collected": total,
        "payment_count": count,
        "by_method": by_method,
        "by_day": dict(sorted(by_day.items())),
    }


__all__ = ["gst_summary", "outstanding_invoices", "payment_collection", "revenue_summary"]
