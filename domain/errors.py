"""
Domain: Settlement error kinds.

Every failure the settlement pipeline reports to its callers is one of these
types. Each carries enough structure for a caller to render a specific message
(shortfall quantities, the sequence key, the document that was rejected).

Two situations are deliberately NOT errors: a dish without recipe entries and
a tax code without an active rule. Those are logged policy fallbacks.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from .fiscal import FiscalDocument


class SettlementError(Exception):
    """Base class for every error raised by the settlement pipeline."""


@dataclass(frozen=True, slots=True)
class Shortfall:
    """
    One item (or one pinned batch) that cannot cover the required quantity.

    `shortfall` is `required - available`. It is positive except when an
    allocation kept losing races to concurrent settlements, where it can be 0.
    """

    inventory_item_id: str
    item_name: str
    required: Decimal
    available: Decimal
    batch_id: Optional[str] = None
    batch_number: Optional[str] = None

    @property
    def shortfall(self) -> Decimal:
        return self.required - self.available

    def describe(self) -> str:
        label = self.item_name or self.inventory_item_id
        if self.batch_id is not None:
            label = f"{label} (batch {self.batch_number or self.batch_id})"
        return f"{label}: short {self.shortfall}"


class InsufficientStock(SettlementError):
    """Raised when one or more items/batches cannot cover the sale."""

    def __init__(self, shortfalls: Sequence[Shortfall]):
        self.shortfalls: List[Shortfall] = list(shortfalls)
        details = ", ".join(s.describe() for s in self.shortfalls)
        super().__init__(f"Insufficient stock: {details}")


class AllocationConflict(SettlementError):
    """
    A conditional batch update matched no row.

    Internal to the batch ledger: another settlement drained the batch between
    the read and the update. Retried once before surfacing as InsufficientStock.
    """

    def __init__(self, batch_id: str, amount: Decimal):
        self.batch_id = batch_id
        self.amount = amount
        super().__init__(f"Batch {batch_id} could not cover {amount} at update time")


class SequenceExhausted(SettlementError):
    """The sequence for (doc_type, establishment, emission_point) reached its ceiling."""

    def __init__(self, key: Tuple[str, str, str]):
        self.key = key
        super().__init__(
            "Invoice sequence exhausted for doc_type={0} establishment={1} emission_point={2}".format(*key)
        )


class AuthorityRejected(SettlementError):
    """The tax authority declined the document. Stock stays consumed; the sale stays open."""

    def __init__(self, document: "FiscalDocument", message: str):
        self.document = document
        self.message = message
        super().__init__(f"Document {document.sequential} rejected by the tax authority: {message}")


class AuthorityIndeterminate(SettlementError):
    """
    The authority outcome is unknown (timeout, connection failure, in process).

    The document stays `pending` and must be re-queried, never re-submitted
    under a new sequential.
    """

    def __init__(self, document: "FiscalDocument", message: str):
        self.document = document
        self.message = message
        super().__init__(f"Document {document.sequential} outcome is not final: {message}")


class ValidationError(SettlementError):
    """Malformed settlement input, rejected before any state mutation."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class NotFound(SettlementError):
    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class InvalidSaleState(SettlementError):
    """The sale is not in a state the requested operation accepts."""

    def __init__(self, sale_id: str, status: str, message: str = ""):
        self.sale_id = sale_id
        self.status = status
        super().__init__(message or f"Sale {sale_id} cannot be settled from status '{status}'")


__all__ = [
    "AllocationConflict",
    "AuthorityIndeterminate",
    "AuthorityRejected",
    "InsufficientStock",
    "InvalidSaleState",
    "NotFound",
    "SequenceExhausted",
    "SettlementError",
    "Shortfall",
    "ValidationError",
]
