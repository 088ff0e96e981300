"""
Domain: the cashier's end-of-day figures (pure).

Revenue counts authorized invoices only; pending and rejected invoices are
reported by count so the cashier can follow them up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable

from .fiscal import AuthorityStatus, FiscalDocument
from .sale import SETTLEMENT_PAYMENT_METHODS


@dataclass(frozen=True, slots=True)
class DailySummary:
    day: date
    authorized_count: int = 0
    pending_count: int = 0
    rejected_count: int = 0
    subtotal: Decimal = Decimal("0.00")
    tax_total: Decimal = Decimal("0.00")
    total_revenue: Decimal = Decimal("0.00")
    revenue_by_payment_method: Dict[str, Decimal] = field(default_factory=dict)


def summarize_day(day: date, documents: Iterable[FiscalDocument]) -> DailySummary:
    by_method: Dict[str, Decimal] = {m.value: Decimal("0.00") for m in SETTLEMENT_PAYMENT_METHODS}
    counts = {status: 0 for status in AuthorityStatus}
    subtotal = Decimal("0.00")
    tax_total = Decimal("0.00")

    for document in documents:
        counts[document.status] += 1
        if document.status != AuthorityStatus.AUTHORIZED:
            continue
        subtotal += document.subtotal
        tax_total += document.tax_total
        method = document.payment_method.value
        by_method[method] = by_method.get(method, Decimal("0.00")) + document.grand_total

    return DailySummary(
        day=day,
        authorized_count=counts[AuthorityStatus.AUTHORIZED],
        pending_count=counts[AuthorityStatus.PENDING],
        rejected_count=counts[AuthorityStatus.REJECTED],
        subtotal=subtotal,
        tax_total=tax_total,
        total_revenue=subtotal + tax_total,
        revenue_by_payment_method=by_method,
    )


__all__ = ["DailySummary", "summarize_day"]
