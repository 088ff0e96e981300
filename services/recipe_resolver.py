"""
Recipe resolver.

Maps sold dishes to the inventory they consume. Pure lookup over the recipe
repository; the only policy here is variant precedence (variant rows win over
dish-level rows when the variant has any) and the merge of per-line
requirements into one requirement per (item, pinned batch).
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from domain.recipe import RecipeEntry, StockRequirement
from domain.sale import SaleLine
from repositories import recipe_repository

logger = logging.getLogger(__name__)


def resolve(dish_id: str, variant_id: Optional[str] = None) -> List[RecipeEntry]:
    """
    Recipe entries for one unit of a dish (or of the chosen variant).

    Returns an empty list when the dish has no recipe at all.
    """

    if variant_id:
        variant_entries = recipe_repository.list_entries_for_variant(dish_id, variant_id)
        if variant_entries:
            return variant_entries
    return recipe_repository.list_entries_for_dish(dish_id)


def requirements_for(lines: Sequence[SaleLine]) -> List[StockRequirement]:
    """
    Total stock a set of sale lines consumes.

    Each entry's quantity-per-unit is multiplied by the line quantity; entries
    for the same (item, pinned batch) are summed across lines, in first-seen
    order. Dishes without a recipe consume nothing and are logged.
    """

    merged: Dict[Tuple[str, Optional[str]], StockRequirement] = {}

    for line in lines:
        entries = resolve(line.dish_id, line.variant_id)
        if not entries:
            logger.warning(
                f"Dish '{line.dish_name}' has no recipe entries; no stock will be deducted for it",
                extra={"dish_id": line.dish_id, "variant_id": line.variant_id, "line_id": line.line_id},
            )
            continue

        for entry in entries:
            amount = entry.quantity_per_unit * line.quantity
            if amount <= 0:
                continue
            key = (entry.inventory_item_id, entry.batch_id)
            existing = merged.get(key)
            if existing is None:
                merged[key] = StockRequirement(
                    inventory_item_id=entry.inventory_item_id,
                    quantity=amount,
                    item_name=entry.item_name,
                    batch_id=entry.batch_id,
                    dish_names=(line.dish_name,),
                )
            else:
                dish_names = existing.dish_names
                if line.dish_name not in dish_names:
                    dish_names = dish_names + (line.dish_name,)
                merged[key] = StockRequirement(
                    inventory_item_id=existing.inventory_item_id,
                    quantity=existing.quantity + amount,
                    item_name=existing.item_name or entry.item_name,
                    batch_id=existing.batch_id,
                    dish_names=dish_names,
                )

    return list(merged.values())


__all__ = ["requirements_for", "resolve"]
