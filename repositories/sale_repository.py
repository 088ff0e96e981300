"""
Sale repository (persistence).

This module provides *only* persistence operations for the Sale domain entity
and its lines. It contains no settlement rules; it only enforces the one
persistence constraint the pipeline relies on: closing is a conditional update
that matches only a sale still in the `served` state.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping, Optional

from domain.sale import PaymentMethod, Sale, SaleLine, SaleStatus
from domain.time import parse_optional_utc_datetime, to_iso_utc
from repositories.client import get_supabase, response_rows

# Supabase table names. Keep these aligned with sql/schema.sql.
_SALES_TABLE: str = "sales"
_SALE_LINES_TABLE: str = "sale_lines"


def _decimal(value: Any, default: str = "0") -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal(default)


def _row_to_line(row: Mapping[str, Any]) -> SaleLine:
    """Convert a Supabase row into a SaleLine."""

    return SaleLine(
        line_id=str(row["id"]),
        dish_id=str(row["dish_id"]),
        dish_name=str(row.get("dish_name") or ""),
        quantity=_decimal(row["quantity"]),
        unit_price=_decimal(row["unit_price"]),
        total_price=_decimal(row.get("total_price")),
        status=str(row.get("status") or SaleStatus.PENDING.value),
        variant_id=str(row["variant_id"]) if row.get("variant_id") else None,
        discount=_decimal(row.get("discount")),
        tax_code=str(row["tax_code"]) if row.get("tax_code") else None,
    )


def _row_to_sale(row: Mapping[str, Any], lines: List[SaleLine]) -> Sale:
    """Convert a Supabase row (plus its lines) into a Sale."""

    payment = row.get("payment_method")
    return Sale(
        sale_id=str(row["id"]),
        table_number=str(row.get("table_number") or ""),
        employee_id=str(row["employee_id"]) if row.get("employee_id") else None,
        employee_name=str(row.get("employee_name") or ""),
        status=SaleStatus(str(row["status"])),
        total_amount=_decimal(row.get("total_amount")),
        lines=lines,
        notes=row.get("notes"),
        payment_method=PaymentMethod(payment) if payment else None,
        closed_by=str(row["closed_by"]) if row.get("closed_by") else None,
        closed_at=parse_optional_utc_datetime(row.get("closed_at")),
        ticket_number=row.get("ticket_number"),
        fiscal_document_id=str(row["fiscal_document_id"]) if row.get("fiscal_document_id") else None,
        created_at=parse_optional_utc_datetime(row.get("created_at")),
    )


def get_sale_lines(sale_id: str) -> List[SaleLine]:
    """Fetch the lines of a sale in the order they were taken."""

    response = (
        get_supabase()
        .table(_SALE_LINES_TABLE)
        .select("*")
        .eq("sale_id", sale_id)
        .order("created_at")
        .execute()
    )
    rows = response_rows(response, "fetch sale lines")
    return [_row_to_line(row) for row in rows]


def get_sale_by_id(sale_id: str) -> Optional[Sale]:
    """
    Retrieve a sale with its lines.

    Returns:
        Sale or None if not found
    """

    response = (
        get_supabase()
        .table(_SALES_TABLE)
        .select("*")
        .eq("id", sale_id)
        .limit(1)
        .execute()
    )
    rows = response_rows(response, "get sale")
    if not rows:
        return None

    return _row_to_sale(rows[0], get_sale_lines(sale_id))


def mark_sale_closed(sale: Sale) -> None:
    """
    Persist the closed state of a sale.

    Requirements:
    - `sale` must already be in the closed state (see Sale.closed()).
    - Must only update a row whose status is still `served`; a sale closed by a
      concurrent settlement is never overwritten.

    Raises:
        ValueError: the row was not found or is no longer `served`
    """

    if sale.status != SaleStatus.CLOSED or sale.closed_at is None or sale.payment_method is None:
        raise ValueError("mark_sale_closed expects a sale in the closed state")

    payload: dict[str, Any] = {
        "status": SaleStatus.CLOSED.value,
        "payment_method": sale.payment_method.value,
        "closed_by": sale.closed_by,
        "closed_at": to_iso_utc(sale.closed_at, name="closed_at"),
        "ticket_number": sale.ticket_number,
        "fiscal_document_id": sale.fiscal_document_id,
    }

    response = (
        get_supabase()
        .table(_SALES_TABLE)
        .update(payload)
        .eq("id", sale.sale_id)
        .eq("status", SaleStatus.SERVED.value)
        .execute()
    )
    updated_rows = response_rows(response, "close sale")
    if not updated_rows:
        raise ValueError(f"Sale {sale.sale_id} not found or no longer served")


def list_closed_sales(limit: int = 50) -> List[Sale]:
    """Most recently closed sales with their lines, newest first."""

    response = (
        get_supabase()
        .table(_SALES_TABLE)
        .select("*")
        .eq("status", SaleStatus.CLOSED.value)
        .order("closed_at", desc=True)
        .limit(limit)
        .execute()
    )
    rows = response_rows(response, "list closed sales")
    return [_row_to_sale(row, get_sale_lines(str(row["id"]))) for row in rows]


__all__ = [
    "get_sale_by_id",
    "get_sale_lines",
    "list_closed_sales",
    "mark_sale_closed",
]
