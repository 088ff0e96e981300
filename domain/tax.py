"""
Domain: Tax rules and per-line tax math.

    taxable_base = unit_price * quantity - discount
    tax_amount   = taxable_base * rate / 100     (rounded half-up to cents)

Tax codes follow the authority's VAT table: code "2" is the standard rate,
code "0" is zero-rated/exempt. Rate lookup (and the fallback when no active
rule exists) lives in the tax engine service; this module is pure arithmetic.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

STANDARD_TAX_CODE = "2"
ZERO_RATED_TAX_CODE = "0"

# Authority "codigoPorcentaje" for each bracket.
STANDARD_PERCENTAGE_CODE = "2"
ZERO_RATED_PERCENTAGE_CODE = "0"

CENTS = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class TaxRule:
    tax_code: str
    percentage_code: str
    name: str
    rate: Decimal
    active: bool = True


@dataclass(frozen=True, slots=True)
class LineTax:
    tax_code: str
    percentage_code: str
    rate: Decimal
    subtotal: Decimal
    discount: Decimal
    taxable_base: Decimal
    tax_amount: Decimal
    from_fallback: bool = False


def compute_line_tax(
    unit_price: Decimal,
    quantity: Decimal,
    discount: Decimal,
    *,
    tax_code: str,
    percentage_code: str,
    rate: Decimal,
    from_fallback: bool = False,
) -> LineTax:
    subtotal = unit_price * quantity
    if discount > subtotal:
        raise ValueError("discount cannot exceed the line subtotal")
    taxable_base = to_cents(subtotal - discount)
    tax_amount = to_cents(taxable_base * rate / Decimal("100"))
    return LineTax(
        tax_code=tax_code,
        percentage_code=percentage_code,
        rate=rate,
        subtotal=to_cents(subtotal),
        discount=to_cents(discount),
        taxable_base=taxable_base,
        tax_amount=tax_amount,
        from_fallback=from_fallback,
    )
