"""
Invoice sequence repository (persistence).

The only write path is the `next_invoice_sequential` PostgreSQL function,
called over RPC. In one statement it creates the sequence row for the key if
it is missing (current = 0, max = p_ceiling) and increments-and-reads
`current` when it is still below `max`. Its JSON result is either

    {"success": true, "sequential": <int>}
    {"success": false, "error": "SEQUENCE_EXHAUSTED", "message": "..."}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from postgrest.exceptions import APIError

from repositories.client import get_supabase

logger = logging.getLogger(__name__)

_SEQUENCES_TABLE: str = "invoice_sequences"


@dataclass(frozen=True, slots=True)
class SequenceIncrement:
    """Result of one increment RPC."""

    success: bool
    value: Optional[int]
    error_code: Optional[str]
    error_message: Optional[str]


def _result_from_payload(payload: Mapping[str, Any]) -> SequenceIncrement:
    if payload.get("success"):
        return SequenceIncrement(
            success=True,
            value=int(payload["sequential"]),
            error_code=None,
            error_message=None,
        )
    return SequenceIncrement(
        success=False,
        value=None,
        error_code=payload.get("error"),
        error_message=payload.get("message"),
    )


def increment_sequence(
    doc_type: str, establishment: str, emission_point: str, ceiling: int
) -> SequenceIncrement:
    """
    Atomically take the next value of the (doc_type, establishment, emission_point) sequence.

    Raises:
        RuntimeError: the store reported an error unrelated to the sequence itself
    """

    try:
        response = (
            get_supabase()
            .rpc(
                "next_invoice_sequential",
                {
                    "p_doc_type": doc_type,
                    "p_establishment": establishment,
                    "p_emission_point": emission_point,
                    "p_ceiling": ceiling,
                },
            )
            .execute()
        )
    except APIError as e:
        # supabase-py raises APIError when the function's JSON body does not
        # look like a row set; the payload is still the function's result.
        try:
            error_data = e.json() if callable(getattr(e, "json", None)) else {}
        except (TypeError, ValueError):
            error_data = {}

        if isinstance(error_data, Mapping) and "success" in error_data:
            return _result_from_payload(error_data)

        raise RuntimeError(f"Failed to increment invoice sequence: {e}") from e

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to increment invoice sequence: {error}")

    result = response.data
    if isinstance(result, list):
        result = result[0] if result else {}
    if not isinstance(result, Mapping):
        raise RuntimeError(f"Unexpected sequence RPC result: {result!r}")

    return _result_from_payload(result)


def get_current_value(doc_type: str, establishment: str, emission_point: str) -> int:
    """Last issued value for a key (0 when the key was never used). Read-only."""

    response = (
        get_supabase()
        .table(_SEQUENCES_TABLE)
        .select("*")
        .eq("doc_type", doc_type)
        .eq("establishment", establishment)
        .eq("emission_point", emission_point)
        .limit(1)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to read invoice sequence: {error}")
    rows = response.data or []
    if not rows:
        return 0
    return int(rows[0]["current_value"])


__all__ = ["SequenceIncrement", "get_current_value", "increment_sequence"]
