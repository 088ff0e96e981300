"""
Stock movement repository (persistence).

Stock movements are append-only: this module only inserts and reads. There
is deliberately no update or delete operation.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping
from uuid import uuid4

from domain.inventory import MovementType, StockMovement
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import get_supabase, response_rows

_MOVEMENTS_TABLE: str = "stock_movements"


def _row_to_movement(row: Mapping[str, Any]) -> StockMovement:
    return StockMovement(
        movement_id=str(row["id"]),
        inventory_item_id=str(row["inventory_item_id"]),
        batch_id=str(row["batch_id"]),
        quantity_delta=Decimal(str(row["quantity"])),
        movement_type=MovementType(str(row["movement_type"])),
        reason=str(row.get("reason") or ""),
        reference=str(row["reference"]),
        created_at=parse_utc_datetime(row["created_at"]),
    )


def record_movement(
    *,
    inventory_item_id: str,
    batch_id: str,
    quantity_delta: Decimal,
    movement_type: MovementType,
    reason: str,
    reference: str,
    created_at: datetime,
) -> StockMovement:
    """Append one movement and return it."""

    movement = StockMovement(
        movement_id=str(uuid4()),
        inventory_item_id=inventory_item_id,
        batch_id=batch_id,
        quantity_delta=quantity_delta,
        movement_type=movement_type,
        reason=reason,
        reference=reference,
        created_at=created_at,
    )

    payload: dict[str, Any] = {
        "id": movement.movement_id,
        "inventory_item_id": inventory_item_id,
        "batch_id": batch_id,
        "quantity": str(quantity_delta),
        "movement_type": movement_type.value,
        "reason": reason,
        "reference": reference,
        "created_at": to_iso_utc(created_at, name="created_at"),
    }

    response = get_supabase().table(_MOVEMENTS_TABLE).insert(payload).execute()
    response_rows(response, "record stock movement")
    return movement


def list_movements_by_reference(reference: str) -> List[StockMovement]:
    response = (
        get_supabase()
        .table(_MOVEMENTS_TABLE)
        .select("*")
        .eq("reference", reference)
        .order("created_at")
        .execute()
    )
    rows = response_rows(response, "list stock movements")
    return [_row_to_movement(row) for row in rows]


__all__ = ["list_movements_by_reference", "record_movement"]
