"""
Recipe repository (persistence).

Read-only access to the recipe_entries table (bill of materials per dish and
per dish variant). Managing recipes is the back-office CRUD screens' job.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping

from domain.recipe import RecipeEntry
from repositories.client import get_supabase, response_rows

_RECIPE_TABLE: str = "recipe_entries"


def _row_to_entry(row: Mapping[str, Any]) -> RecipeEntry:
    return RecipeEntry(
        entry_id=str(row["id"]),
        dish_id=str(row["dish_id"]),
        inventory_item_id=str(row["inventory_item_id"]),
        quantity_per_unit=Decimal(str(row["quantity"])),
        variant_id=str(row["variant_id"]) if row.get("variant_id") else None,
        batch_id=str(row["batch_id"]) if row.get("batch_id") else None,
        item_name=str(row.get("item_name") or ""),
    )


def list_entries_for_dish(dish_id: str) -> List[RecipeEntry]:
    """Dish-level entries (those not tied to a variant)."""

    response = (
        get_supabase()
        .table(_RECIPE_TABLE)
        .select("*")
        .eq("dish_id", dish_id)
        .is_("variant_id", "null")
        .order("created_at")
        .execute()
    )
    rows = response_rows(response, "fetch recipe entries for dish")
    return [_row_to_entry(row) for row in rows]


def list_entries_for_variant(dish_id: str, variant_id: str) -> List[RecipeEntry]:
    response = (
        get_supabase()
        .table(_RECIPE_TABLE)
        .select("*")
        .eq("dish_id", dish_id)
        .eq("variant_id", variant_id)
        .order("created_at")
        .execute()
    )
    rows = response_rows(response, "fetch recipe entries for variant")
    return [_row_to_entry(row) for row in rows]


__all__ = ["list_entries_for_dish", "list_entries_for_variant"]
