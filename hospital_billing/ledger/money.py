"""Monetary breakdown shared by invoices, line items and credit notes."""
from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Literal, Optional

from hospital_billing.errors import ValidationError

TaxSplit = Literal["intra", "inter", "exempt"]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Decimal | float | int | str, *, label: str = "amount") -> Decimal:
    """Convert a numeric input, raising ValidationError for anything non-finite."""
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid {label} {value!r}") from exc
    if not number.is_finite():
        raise ValidationError(f"Invalid {label} {value!r}")
    return number


def quantize(value: Decimal | float | int | str) -> Decimal:
    """Round an amount to two fractional digits."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class MonetaryBreakdown:
    """Subtotal, discount, per-component GST and total of a billed amount."""

    subtotal: Decimal
    taxable_amount: Decimal
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO
    total: Decimal = ZERO
    discount: Decimal = ZERO

    def __post_init__(self) -> None:
        for item in fields(self):
            object.__setattr__(self, item.name, quantize(getattr(self, item.name)))

    @classmethod
    def zero(cls) -> "MonetaryBreakdown":
        return cls(subtotal=ZERO, taxable_amount=ZERO)

    @property
    def tax_total(self) -> Decimal:
        return self.cgst + self.sgst + self.igst

    @property
    def tax_split(self) -> Optional[TaxSplit]:
        """Return the GST split of the breakdown, or None for a mixed split."""
        if self.cgst == ZERO and self.sgst == ZERO and self.igst == ZERO:
            return "exempt"
        if self.cgst > ZERO and self.sgst > ZERO and self.igst == ZERO:
            return "intra"
        if self.igst > ZERO and self.cgst == ZERO and self.sgst == ZERO:
            return "inter"
        return None

    def __add__(self, other: "MonetaryBreakdown") -> "MonetaryBreakdown":
        if not isinstance(other, MonetaryBreakdown):
            return NotImplemented
        return MonetaryBreakdown(
            subtotal=self.subtotal + other.subtotal,
            taxable_amount=self.taxable_amount + other.taxable_amount,
            cgst=self.cgst + other.cgst,
            sgst=self.sgst + other.sgst,
            igst=self.igst + other.igst,
            total=self.total + other.total,
            discount=self.discount + other.discount,
        )

    def violations(self, *, check_split: bool = True) -> List[str]:
        problems: List[str] = []
        for item in fields(self):
            if getattr(self, item.name) < ZERO:
                problems.append(f"{item.name} must not be negative")
        if self.taxable_amount != self.subtotal - self.discount:
            problems.append(
                f"taxable_amount {self.taxable_amount} != subtotal {self.subtotal} "
                f"- discount {self.discount}"
            )
        if self.total != self.taxable_amount + self.tax_total:
            problems.append(
                f"total {self.total} != taxable_amount {self.taxable_amount} "
                f"+ tax {self.tax_total}"
            )
        if check_split and self.tax_split is None:
            problems.append(
                "tax split must be CGST+SGST, IGST only, or exempt: "
                f"cgst={self.cgst} sgst={self.sgst} igst={self.igst}"
            )
        return problems


def validate_breakdown(
    breakdown: MonetaryBreakdown, *, label: str = "breakdown", check_split: bool = True
) -> MonetaryBreakdown:
    problems = breakdown.violations(check_split=check_split)
    if problems:
        raise ValidationError(f"Invalid {label}: " + "; ".join(problems))
    return breakdown


def compute_breakdown(
    quantity: Decimal | int | str,
    unit_price: Decimal | float | int | str,
    *,
    gst_rate: Decimal | int | str = ZERO,
    discount: Decimal | float | int | str = ZERO,
    inter_state: bool = False,
) -> MonetaryBreakdown:
    """Price a line from quantity, unit price and a supplied GST rate.

    The rate is applied to the taxable amount and split evenly into CGST and
    SGST for intra-state supply, or charged entirely as IGST otherwise.
    """
    quantity = to_decimal(quantity, label="quantity")
    rate = to_decimal(gst_rate, label="GST rate")
    if quantity <= 0:
        raise ValidationError("Line quantity must be positive")
    if rate < 0 or rate > 100:
        raise ValidationError(f"GST rate {rate} is out of range")
    subtotal = quantize(quantity * quantize(unit_price))
    discount = quantize(discount)
    if discount < ZERO or discount > subtotal:
        raise ValidationError(f"Discount {discount} must be between 0 and subtotal {subtotal}")
    taxable = subtotal - discount
    cgst = sgst = igst = ZERO
    if inter_state:
        igst = quantize(taxable * rate / 100)
    else:
        cgst = quantize(taxable * rate / 200)
        sgst = cgst
    return MonetaryBreakdown(
        subtotal=subtotal,
        discount=discount,
        taxable_amount=taxable,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        total=taxable + cgst + sgst + igst,
    )


def sum_breakdowns(breakdowns: Iterable[MonetaryBreakdown]) -> MonetaryBreakdown:
    result = MonetaryBreakdown.zero()
    for breakdown in breakdowns:
        result = result + breakdown
    return result


__all__ = [
    "CENT",
    "ZERO",
    "MonetaryBreakdown",
    "TaxSplit",
    "compute_breakdown",
    "quantize",
    "sum_breakdowns",
    "to_decimal",
    "validate_breakdown",
]
