"""
Authority log repository (persistence).

Append-only audit trail of every request sent to the tax authority.
"""

from __future__ import annotations

from typing import Any, List, Mapping

from domain.fiscal import AuthorityLogEntry, AuthorityLogOutcome, AuthorityRequestType
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import get_supabase, response_rows

_AUTHORITY_LOG_TABLE: str = "authority_log"


def _row_to_entry(row: Mapping[str, Any]) -> AuthorityLogEntry:
    return AuthorityLogEntry(
        log_id=str(row["id"]),
        sale_id=str(row["sale_id"]),
        access_key=str(row["access_key"]),
        request_type=AuthorityRequestType(str(row["request_type"])),
        outcome=AuthorityLogOutcome(str(row["outcome"])),
        message=str(row.get("message") or ""),
        created_at=parse_utc_datetime(row["created_at"]),
        raw_response=row.get("raw_response"),
    )


def append_log_entry(entry: AuthorityLogEntry) -> None:
    payload: dict[str, Any] = {
        "id": entry.log_id,
        "sale_id": entry.sale_id,
        "access_key": entry.access_key,
        "request_type": entry.request_type.value,
        "outcome": entry.outcome.value,
        "message": entry.message,
        "raw_response": entry.raw_response,
        "created_at": to_iso_utc(entry.created_at, name="created_at"),
    }
    response = get_supabase().table(_AUTHORITY_LOG_TABLE).insert(payload).execute()
    response_rows(response, "append authority log entry")


def list_log_entries_for_sale(sale_id: str) -> List[AuthorityLogEntry]:
    """All attempts for a sale, oldest first."""

    response = (
        get_supabase()
        .table(_AUTHORITY_LOG_TABLE)
        .select("*")
        .eq("sale_id", sale_id)
        .order("created_at")
        .execute()
    )
    rows = response_rows(response, "list authority log entries")
    return [_row_to_entry(row) for row in rows]


__all__ = ["append_log_entry", "list_log_entries_for_sale"]
