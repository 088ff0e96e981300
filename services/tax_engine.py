"""
Tax rule engine.

Rates come from the active rules in `tax_rules`, loaded once per engine (one
engine per settlement, so a settlement never sees a rate change halfway
through). A tax code without an active rule is not an error:

- the standard code ("2") falls back to the configured default VAT rate
- the zero-rated code ("0") and any unknown code fall back to 0%

Both fallbacks are logged.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional, Sequence, Tuple

from domain.tax import (
    STANDARD_PERCENTAGE_CODE,
    STANDARD_TAX_CODE,
    ZERO_RATED_PERCENTAGE_CODE,
    LineTax,
    TaxRule,
    compute_line_tax,
)
from repositories import tax_repository

logger = logging.getLogger(__name__)


class TaxEngine:
    """Per-line tax computation over a snapshot of the active tax rules."""

    def __init__(
        self,
        rules: Optional[Sequence[TaxRule]] = None,
        *,
        default_vat_rate: Decimal = Decimal("12"),
    ):
        if rules is None:
            rules = tax_repository.list_active_tax_rules()

        self._default_vat_rate = default_vat_rate
        self._rules: Dict[str, TaxRule] = {}
        for rule in rules:
            # First active rule per code wins (the repository orders by rate desc).
            if rule.active and rule.tax_code not in self._rules:
                self._rules[rule.tax_code] = rule

    def rate_for(self, tax_code: str) -> Tuple[str, Decimal, bool]:
        """Return (percentage_code, rate, from_fallback) for a tax code."""

        rule = self._rules.get(tax_code)
        if rule is not None:
            return rule.percentage_code, rule.rate, False

        if tax_code == STANDARD_TAX_CODE:
            rate = self._default_vat_rate
            percentage_code = STANDARD_PERCENTAGE_CODE
        else:
            rate = Decimal("0")
            percentage_code = ZERO_RATED_PERCENTAGE_CODE

        logger.warning(
            f"No active tax rule for code '{tax_code}', using {rate}%",
            extra={"tax_code": tax_code, "fallback_rate": str(rate)},
        )
        return percentage_code, rate, True

    def compute_line(
        self, unit_price: Decimal, quantity: Decimal, discount: Decimal, tax_code: str
    ) -> LineTax:
        """
        taxable_base = unit_price * quantity - discount; tax = base * rate / 100.

        Both amounts are rounded half-up to cents.
        """

        percentage_code, rate, from_fallback = self.rate_for(tax_code)
        return compute_line_tax(
            unit_price,
            quantity,
            discount,
            tax_code=tax_code,
            percentage_code=percentage_code,
            rate=rate,
            from_fallback=from_fallback,
        )


__all__ = ["TaxEngine"]
