"""
Domain: Cashier tickets.

A Ticket is what the cashier hands over after settlement. Its number is the
fiscal document's sequential; its amounts come from the same document.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class TicketLine:
    dish_name: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True, slots=True)
class Ticket:
    ticket_number: str
    sale_id: str
    table_number: str
    server_name: str
    lines: List[TicketLine]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: str
    issued_at: datetime
    printable_text: str

    def __post_init__(self) -> None:
        require_utc_timestamp("issued_at", self.issued_at)
