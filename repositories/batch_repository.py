"""
Batch repository (persistence).

Reads batches and applies quantity changes. Quantity changes never happen as
a read-then-write from Python: they go through PostgreSQL functions called
over RPC, each a single conditional UPDATE keyed by batch id:

- deduct_batch_quantity(p_batch_id, p_amount)
    UPDATE batches SET quantity = quantity - p_amount
     WHERE id = p_batch_id AND active AND quantity >= p_amount
    RETURNING *
- restore_batch_quantity(p_batch_id, p_amount)
    UPDATE batches SET quantity = quantity + p_amount WHERE id = p_batch_id
    RETURNING *

An empty result from deduct_batch_quantity means the batch could not cover
the amount at update time (a concurrent settlement got there first).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from domain.inventory import Batch
from domain.time import parse_utc_datetime
from repositories.client import get_supabase, response_rows

_BATCHES_TABLE: str = "batches"


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _row_to_batch(row: Mapping[str, Any]) -> Batch:
    """Convert a Supabase row into a Batch."""

    return Batch(
        batch_id=str(row["id"]),
        inventory_item_id=str(row["inventory_item_id"]),
        batch_number=str(row.get("batch_number") or ""),
        quantity=Decimal(str(row["quantity"])),
        unit_cost=Decimal(str(row.get("cost_per_unit") or "0")),
        created_at=parse_utc_datetime(row["created_at"]),
        expiry_date=_parse_date(row.get("expiry_date")),
        active=bool(row.get("active", True)),
    )


def list_available_batches(inventory_item_id: str) -> List[Batch]:
    """
    Fetch the allocatable batches of an item: active with quantity > 0.

    Always a fresh read; callers must not cache the result across allocations.
    Ordered by creation time, oldest first.
    """

    response = (
        get_supabase()
        .table(_BATCHES_TABLE)
        .select("*")
        .eq("inventory_item_id", inventory_item_id)
        .eq("active", True)
        .gt("quantity", 0)
        .order("created_at")
        .execute()
    )
    rows = response_rows(response, "fetch available batches")
    return [_row_to_batch(row) for row in rows]


def get_batch_by_id(batch_id: str) -> Optional[Batch]:
    response = (
        get_supabase()
        .table(_BATCHES_TABLE)
        .select("*")
        .eq("id", batch_id)
        .limit(1)
        .execute()
    )
    rows = response_rows(response, "get batch")
    if not rows:
        return None
    return _row_to_batch(rows[0])


def deduct_batch_quantity(batch_id: str, amount: Decimal) -> Optional[Batch]:
    """
    Atomically subtract `amount` from a batch if it still holds at least that much.

    Returns:
        The updated Batch, or None when the condition did not hold.
    """

    if amount <= 0:
        raise ValueError("amount must be > 0")

    response = (
        get_supabase()
        .rpc("deduct_batch_quantity", {"p_batch_id": batch_id, "p_amount": str(amount)})
        .execute()
    )
    rows = response_rows(response, "deduct batch quantity")
    if not rows:
        return None
    return _row_to_batch(rows[0])


def restore_batch_quantity(batch_id: str, amount: Decimal) -> Batch:
    """Atomically add `amount` back to a batch (compensation of a deduction)."""

    if amount <= 0:
        raise ValueError("amount must be > 0")

    response = (
        get_supabase()
        .rpc("restore_batch_quantity", {"p_batch_id": batch_id, "p_amount": str(amount)})
        .execute()
    )
    rows = response_rows(response, "restore batch quantity")
    if not rows:
        raise RuntimeError(f"Failed to restore batch quantity: batch {batch_id} not found")
    return _row_to_batch(rows[0])


__all__ = [
    "deduct_batch_quantity",
    "get_batch_by_id",
    "list_available_batches",
    "restore_batch_quantity",
]
