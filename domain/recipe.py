"""
Domain: Recipes (bill of materials for sold dishes).

A RecipeEntry says how much of one inventory item a single unit of a dish (or
of one of its variants) consumes. An entry may pin a specific batch; pinned
entries are allocated from that batch only.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True, slots=True)
class RecipeEntry:
    entry_id: str
    dish_id: str
    inventory_item_id: str
    quantity_per_unit: Decimal
    variant_id: Optional[str] = None
    batch_id: Optional[str] = None
    item_name: str = ""

    def __post_init__(self) -> None:
        if self.quantity_per_unit < 0:
            raise ValueError("quantity_per_unit must be >= 0")


@dataclass(frozen=True, slots=True)
class StockRequirement:
    """Total quantity of one item (optionally one pinned batch) a sale consumes."""

    inventory_item_id: str
    quantity: Decimal
    item_name: str = ""
    batch_id: Optional[str] = None
    dish_names: tuple[str, ...] = ()

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return (self.inventory_item_id, self.batch_id)

    def describe_reason(self) -> str:
        dishes = ", ".join(self.dish_names) if self.dish_names else "sale"
        return f"Sale: {dishes}"
