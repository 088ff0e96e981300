"""
Domain: Sales (comandas) and their lines.

Lifecycle of a Sale:
    pending -> ready -> served -> closed

The order-taking and kitchen flows own the first three transitions. The
settlement pipeline owns exactly one: served -> closed.

Invariants:
- A closed Sale has a payment method, a ticket number and exactly one fiscal
  document. Its total is immutable.
- A SaleLine's kitchen status is independent of the Sale status.

This module contains only pure domain entities: no I/O, no database.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .time import require_utc_timestamp


class SaleStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    SERVED = "served"
    CLOSED = "closed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    CHECK = "check"


# Settlement accepts only these; CHECK exists for the authority code mapping.
SETTLEMENT_PAYMENT_METHODS = (PaymentMethod.CASH, PaymentMethod.CARD, PaymentMethod.TRANSFER)


@dataclass(frozen=True, slots=True)
class SaleLine:
    line_id: str
    dish_id: str
    dish_name: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    status: str = SaleStatus.PENDING.value
    variant_id: Optional[str] = None
    discount: Decimal = Decimal("0")
    tax_code: Optional[str] = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        if self.unit_price < 0:
            raise ValueError("unit_price must be >= 0")
        if self.discount < 0:
            raise ValueError("discount must be >= 0")


@dataclass(frozen=True, slots=True)
class Sale:
    """
    A table's order as seen by the cashier.

    Fields set only at settlement: payment_method, closed_by, closed_at,
    ticket_number, fiscal_document_id.
    """

    sale_id: str
    table_number: str
    employee_id: Optional[str]
    employee_name: str
    status: SaleStatus
    total_amount: Decimal
    lines: List[SaleLine] = field(default_factory=list)
    notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    closed_by: Optional[str] = None
    closed_at: Optional[datetime] = None
    ticket_number: Optional[str] = None
    fiscal_document_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.closed_at is not None:
            require_utc_timestamp("closed_at", self.closed_at)
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)

    @property
    def is_closed(self) -> bool:
        return self.status == SaleStatus.CLOSED

    @property
    def is_settleable(self) -> bool:
        """Only served sales enter the settlement pipeline."""
        return self.status == SaleStatus.SERVED

    def closed(
        self,
        *,
        payment_method: PaymentMethod,
        closed_by: Optional[str],
        closed_at: datetime,
        ticket_number: str,
        fiscal_document_id: str,
    ) -> "Sale":
        """
        Return a new Sale in the closed state.

        Raises ValueError when the sale is not served (a closed sale can never
        be closed again, which keeps its total and document immutable).
        """

        require_utc_timestamp("closed_at", closed_at)
        if not self.is_settleable:
            raise ValueError(f"Sale {self.sale_id} is '{self.status.value}', expected 'served'")
        return replace(
            self,
            status=SaleStatus.CLOSED,
            payment_method=payment_method,
            closed_by=closed_by,
            closed_at=closed_at,
            ticket_number=ticket_number,
            fiscal_document_id=fiscal_document_id,
        )
