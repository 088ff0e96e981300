"""
Tests for `services/tax_engine.py`.

Covers contract rules:
- taxable_base = unit_price * quantity - discount; tax = base * rate / 100,
  both rounded half-up to cents.
- A tax code without an active rule is not an error: the standard code falls
  back to the configured default VAT rate, every other code to 0%.
- Active rules are read from the store when none are supplied.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from domain.tax import TaxRule
from services.tax_engine import TaxEngine


def _rule(tax_code: str, rate: str, *, percentage_code: str = "4", active: bool = True) -> TaxRule:
    return TaxRule(
        tax_code=tax_code,
        percentage_code=percentage_code,
        name=f"IVA {rate}%",
        rate=Decimal(rate),
        active=active,
    )


def test_line_tax_uses_active_rule() -> None:
    """Verify base and tax for a discounted line under an explicit rule."""

    engine = TaxEngine([_rule("2", "15")])

    line = engine.compute_line(Decimal("10.00"), Decimal("2"), Decimal("1.00"), "2")

    assert line.subtotal == Decimal("20.00")
    assert line.taxable_base == Decimal("19.00")
    assert line.tax_amount == Decimal("2.85")
    assert line.percentage_code == "4"
    assert line.from_fallback is False


def test_tax_rounds_half_up() -> None:
    """Verify half a cent rounds up, not to even."""

    engine = TaxEngine([_rule("2", "10")])

    line = engine.compute_line(Decimal("1.25"), Decimal("1"), Decimal("0"), "2")

    assert line.tax_amount == Decimal("0.13")


def test_standard_code_falls_back_to_default_rate() -> None:
    """Verify the standard code without a rule uses the configured VAT rate."""

    engine = TaxEngine([], default_vat_rate=Decimal("12"))

    percentage_code, rate, from_fallback = engine.rate_for("2")
    line = engine.compute_line(Decimal("5.00"), Decimal("1"), Decimal("0"), "2")

    assert (percentage_code, rate, from_fallback) == ("2", Decimal("12"), True)
    assert line.tax_amount == Decimal("0.60")


@pytest.mark.parametrize("tax_code", ["0", "6", "unknown"])
def test_other_codes_fall_back_to_zero(tax_code: str) -> None:
    """Verify zero-rated and unknown codes without a rule are taxed at 0%."""

    engine = TaxEngine([])

    line = engine.compute_line(Decimal("3.50"), Decimal("2"), Decimal("0"), tax_code)

    assert line.rate == Decimal("0")
    assert line.percentage_code == "0"
    assert line.tax_amount == Decimal("0.00")
    assert line.taxable_base == Decimal("7.00")


def test_inactive_rules_are_ignored() -> None:
    """Verify an inactive rule does not override the fallback."""

    engine = TaxEngine([_rule("2", "15", active=False)], default_vat_rate=Decimal("12"))

    assert engine.rate_for("2")[1] == Decimal("12")


def test_discount_cannot_exceed_subtotal() -> None:
    """Verify a discount larger than the line subtotal is rejected."""

    engine = TaxEngine([_rule("2", "12")])

    with pytest.raises(ValueError):
        engine.compute_line(Decimal("2.00"), Decimal("1"), Decimal("2.01"), "2")


def test_rules_are_loaded_from_store(fake_db) -> None:
    """Verify the engine reads active rules when none are supplied, highest rate first."""

    fake_db.seed(
        "tax_rules",
        {"tax_code": "2", "percentage_code": "2", "name": "IVA 12%", "rate": "12", "active": True},
        {"tax_code": "2", "percentage_code": "4", "name": "IVA 15%", "rate": "15", "active": True},
        {"tax_code": "0", "percentage_code": "0", "name": "IVA 0%", "rate": "0", "active": True},
        {"tax_code": "6", "percentage_code": "6", "name": "No objeto", "rate": "8", "active": False},
    )

    engine = TaxEngine()

    assert engine.rate_for("2") == ("4", Decimal("15"), False)
    assert engine.rate_for("0") == ("0", Decimal("0"), False)
    assert engine.rate_for("6") == ("0", Decimal("0"), True)
