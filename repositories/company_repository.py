"""
Company profile repository (persistence).

The issuer's fiscal identity lives in a single row of `company_profile`.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from domain.fiscal import CompanyProfile, EmissionType, Environment
from repositories.client import get_supabase, response_rows

_COMPANY_TABLE: str = "company_profile"


def _row_to_profile(row: Mapping[str, Any]) -> CompanyProfile:
    return CompanyProfile(
        tax_id=str(row["tax_id"]),
        legal_name=str(row["legal_name"]),
        head_office_address=str(row.get("head_office_address") or ""),
        trade_name=row.get("trade_name"),
        establishment_address=row.get("establishment_address"),
        establishment_code=str(row.get("establishment_code") or "001"),
        emission_point_code=str(row.get("emission_point_code") or "001"),
        phone=row.get("phone"),
        email=row.get("email"),
        environment=Environment(row.get("environment") or Environment.TEST.value),
        emission_type=EmissionType(row.get("emission_type") or EmissionType.NORMAL.value),
        keeps_accounting=bool(row.get("keeps_accounting", False)),
    )


def get_company_profile() -> Optional[CompanyProfile]:
    """Return the configured issuer, or None when no profile row exists."""

    response = (
        get_supabase()
        .table(_COMPANY_TABLE)
        .select("*")
        .order("created_at")
        .limit(1)
        .execute()
    )
    rows = response_rows(response, "fetch company profile")
    if not rows:
        return None
    return _row_to_profile(rows[0])


__all__ = ["get_company_profile"]
