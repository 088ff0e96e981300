"""
Batch ledger service.

Owns stock consumption from dated batches:
- availability queries over fresh batch reads
- FIFO allocation applied one batch at a time through the atomic
  `deduct_batch_quantity` RPC (never read-then-write in Python)
- compensation of a previous allocation (`release`)

Every batch touched produces exactly one append-only StockMovement referencing
the sale. A conditional update that matches no row means another settlement
drained the batch first: the attempt gives back what it took and the whole
item allocation is retried once against a fresh batch list before the caller
sees InsufficientStock.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from domain.errors import AllocationConflict, InsufficientStock, Shortfall
from domain.inventory import Batch, BatchAllocation, MovementType, plan_fifo_allocation, total_available
from domain.recipe import StockRequirement
from domain.time import utc_now
from repositories import batch_repository, stock_movement_repository

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# One retry after the first AllocationConflict.
_MAX_ATTEMPTS = 2


def available_quantity(inventory_item_id: str) -> Decimal:
    """Sum of remaining quantity over the item's allocatable batches."""

    return total_available(batch_repository.list_available_batches(inventory_item_id))


def _pinned_available(batch: Optional[Batch], inventory_item_id: str) -> Decimal:
    """Quantity a pinned batch can give: nothing when missing, inactive or holding another item."""

    if batch is None or batch.inventory_item_id != inventory_item_id or not batch.is_allocatable:
        return _ZERO
    return batch.quantity


def _available_for(
    inventory_item_id: str, batch_override: Optional[str]
) -> Tuple[Decimal, Optional[Batch]]:
    if batch_override is None:
        return available_quantity(inventory_item_id), None

    batch = batch_repository.get_batch_by_id(batch_override)
    return _pinned_available(batch, inventory_item_id), batch


def check_availability(
    inventory_item_id: str, required: Decimal, batch_override: Optional[str] = None
) -> Decimal:
    """
    Shortfall for `required` units of an item (0 when it is covered).

    With `batch_override`, only that batch counts; a missing or inactive batch,
    or one holding another item, has nothing available.
    """

    if required <= 0:
        return _ZERO

    available, _ = _available_for(inventory_item_id, batch_override)
    return max(required - available, _ZERO)


def find_shortfalls(requirements: Sequence[StockRequirement]) -> List[Shortfall]:
    """
    Check every requirement and report all of the short ones.

    Never stops at the first shortfall, so the caller can show the complete list.
    """

    shortfalls: List[Shortfall] = []
    for requirement in requirements:
        available, pinned = _available_for(requirement.inventory_item_id, requirement.batch_id)
        if available < requirement.quantity:
            shortfalls.append(
                Shortfall(
                    inventory_item_id=requirement.inventory_item_id,
                    item_name=requirement.item_name,
                    required=requirement.quantity,
                    available=available,
                    batch_id=requirement.batch_id,
                    batch_number=pinned.batch_number if pinned is not None else None,
                )
            )

    return shortfalls


def _candidate_batches(inventory_item_id: str, batch_override: Optional[str]) -> List[Batch]:
    if batch_override is None:
        return batch_repository.list_available_batches(inventory_item_id)

    batch = batch_repository.get_batch_by_id(batch_override)
    if _pinned_available(batch, inventory_item_id) <= 0:
        return []
    return [batch]


def _apply_deduction(allocation: BatchAllocation, *, reference: str, reason: str) -> None:
    """Deduct one planned take and record its movement, or raise AllocationConflict."""

    batch = allocation.batch
    updated = batch_repository.deduct_batch_quantity(batch.batch_id, allocation.amount)
    if updated is None:
        raise AllocationConflict(batch.batch_id, allocation.amount)

    stock_movement_repository.record_movement(
        inventory_item_id=batch.inventory_item_id,
        batch_id=batch.batch_id,
        quantity_delta=-allocation.amount,
        movement_type=MovementType.SALE,
        reason=reason,
        reference=reference,
        created_at=utc_now(),
    )


def _allocate_once(
    inventory_item_id: str,
    required: Decimal,
    *,
    reference: str,
    reason: str,
    batch_override: Optional[str],
    item_name: str,
) -> List[BatchAllocation]:
    batches = _candidate_batches(inventory_item_id, batch_override)
    plan, unmet = plan_fifo_allocation(batches, required)
    if unmet > 0:
        pinned = batches[0] if batch_override is not None and batches else None
        raise InsufficientStock(
            [
                Shortfall(
                    inventory_item_id=inventory_item_id,
                    item_name=item_name,
                    required=required,
                    available=required - unmet,
                    batch_id=batch_override,
                    batch_number=pinned.batch_number if pinned is not None else None,
                )
            ]
        )

    applied: List[BatchAllocation] = []
    try:
        for allocation in plan:
            _apply_deduction(allocation, reference=reference, reason=reason)
            applied.append(allocation)
    except AllocationConflict:
        if applied:
            release(applied, reference=reference, reason=f"Allocation retry: {reason}")
        raise

    return applied


def allocate(
    inventory_item_id: str,
    required: Decimal,
    *,
    reference: str,
    reason: str,
    batch_override: Optional[str] = None,
    item_name: str = "",
) -> List[BatchAllocation]:
    """
    Deduct `required` units of an item, oldest batch first.

    Args:
        inventory_item_id: Item to consume
        required: Units to take (<= 0 is a no-op)
        reference: Sale id recorded on every movement
        reason: Human-readable movement reason
        batch_override: Restrict allocation to this batch (no FIFO fallback)
        item_name: Used in shortfall messages

    Returns:
        One BatchAllocation per batch touched, in the order they were drained

    Raises:
        InsufficientStock: the item (or pinned batch) cannot cover `required`,
            including after a lost race was retried
    """

    if required <= 0:
        return []

    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            return _allocate_once(
                inventory_item_id,
                required,
                reference=reference,
                reason=reason,
                batch_override=batch_override,
                item_name=item_name,
            )
        except AllocationConflict as conflict:
            logger.warning(
                f"Batch changed during allocation (attempt {attempt} of {_MAX_ATTEMPTS})",
                extra={
                    "inventory_item_id": inventory_item_id,
                    "batch_id": conflict.batch_id,
                    "amount": str(conflict.amount),
                    "reference": reference,
                },
            )

    candidates = _candidate_batches(inventory_item_id, batch_override)
    raise InsufficientStock(
        [
            Shortfall(
                inventory_item_id=inventory_item_id,
                item_name=item_name,
                required=required,
                available=min(total_available(candidates), required),
                batch_id=batch_override,
            )
        ]
    )


def release(allocations: Sequence[BatchAllocation], *, reference: str, reason: str) -> None:
    """
    Give back previously deducted amounts (compensation).

    Restores each batch atomically and appends a positive `sale_reversal`
    movement; the original `sale` movements are never touched.
    """

    for allocation in reversed(list(allocations)):
        batch = allocation.batch
        batch_repository.restore_batch_quantity(batch.batch_id, allocation.amount)
        stock_movement_repository.record_movement(
            inventory_item_id=batch.inventory_item_id,
            batch_id=batch.batch_id,
            quantity_delta=allocation.amount,
            movement_type=MovementType.SALE_REVERSAL,
            reason=reason,
            reference=reference,
            created_at=utc_now(),
        )
        logger.info(
            "Released batch allocation",
            extra={"batch_id": batch.batch_id, "amount": str(allocation.amount), "reference": reference},
        )


__all__ = [
    "allocate",
    "available_quantity",
    "check_availability",
    "find_shortfalls",
    "release",
]
