"""
Tax rule repository (persistence).

Read-only access to the configured tax rules.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping

from domain.tax import TaxRule
from repositories.client import get_supabase, response_rows

_TAX_RULES_TABLE: str = "tax_rules"


def _row_to_rule(row: Mapping[str, Any]) -> TaxRule:
    return TaxRule(
        tax_code=str(row["tax_code"]),
        percentage_code=str(row.get("percentage_code") or row["tax_code"]),
        name=str(row.get("name") or ""),
        rate=Decimal(str(row["rate"])),
        active=bool(row.get("active", True)),
    )


def list_active_tax_rules() -> List[TaxRule]:
    """Active rules, highest rate first."""

    response = (
        get_supabase()
        .table(_TAX_RULES_TABLE)
        .select("*")
        .eq("active", True)
        .order("rate", desc=True)
        .execute()
    )
    rows = response_rows(response, "fetch tax rules")
    return [_row_to_rule(row) for row in rows]


__all__ = ["list_active_tax_rules"]
