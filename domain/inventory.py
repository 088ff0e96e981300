"""
Domain: Inventory batches, stock movements and FIFO allocation planning.

Contract excerpts implemented here:
- A Batch's remaining quantity is never negative.
- A batch with quantity 0 stays visible for audit but is never allocated.
- FIFO: the oldest batch (by creation timestamp) is drained before a newer one
  is touched; batch number makes the order total. Expiry dates do not reorder.
- Stock movements are append-only: one per batch touched by a deduction,
  carrying a signed delta (negative for a sale, positive for a reversal).

This module contains only pure domain entities and the pure allocation plan.
Applying the plan to the store is the batch ledger service's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from .time import require_utc_timestamp


class MovementType(str, Enum):
    SALE = "sale"
    SALE_REVERSAL = "sale_reversal"


@dataclass(frozen=True, slots=True)
class Batch:
    batch_id: str
    inventory_item_id: str
    batch_number: str
    quantity: Decimal
    unit_cost: Decimal
    created_at: datetime
    expiry_date: Optional[date] = None
    active: bool = True

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.quantity < 0:
            raise ValueError("Batch quantity must never be negative")

    @property
    def is_allocatable(self) -> bool:
        """Active batches with stock left; empty batches are kept for audit only."""
        return self.active and self.quantity > 0


@dataclass(frozen=True, slots=True)
class BatchAllocation:
    """Amount taken from one batch for one requirement."""

    batch: Batch
    amount: Decimal


@dataclass(frozen=True, slots=True)
class StockMovement:
    movement_id: str
    inventory_item_id: str
    batch_id: str
    quantity_delta: Decimal
    movement_type: MovementType
    reason: str
    reference: str
    created_at: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.quantity_delta == 0:
            raise ValueError("A stock movement must change the quantity")


def fifo_sort_key(batch: Batch) -> Tuple[datetime, str]:
    return (batch.created_at, batch.batch_number)


def fifo_order(batches: Iterable[Batch]) -> List[Batch]:
    """Allocatable batches, oldest first."""

    return sorted((b for b in batches if b.is_allocatable), key=fifo_sort_key)


def total_available(batches: Iterable[Batch]) -> Decimal:
    return sum((b.quantity for b in batches if b.is_allocatable), Decimal("0"))


def plan_fifo_allocation(
    batches: Sequence[Batch], required: Decimal
) -> Tuple[List[BatchAllocation], Decimal]:
    """
    Plan how to take `required` units from `batches` in FIFO order.

    Returns (allocations, unmet) where unmet is 0 when the batches cover the
    requirement. Each allocation takes min(remaining, batch.quantity); no batch
    is touched before every older batch is exhausted.
    """

    if required < 0:
        raise ValueError("required must be >= 0")

    remaining = required
    plan: List[BatchAllocation] = []
    for batch in fifo_order(batches):
        if remaining <= 0:
            break
        take = min(remaining, batch.quantity)
        plan.append(BatchAllocation(batch=batch, amount=take))
        remaining -= take

    return plan, remaining


__all__ = [
    "Batch",
    "BatchAllocation",
    "MovementType",
    "StockMovement",
    "fifo_order",
    "fifo_sort_key",
    "plan_fifo_allocation",
    "total_available",
]
