"""
Cashier service.

Read-only views the cashier works from during the day:
- the invoices issued on a fiscal day, with their authority status
- the most recently closed sales
- the day's totals by payment method

Fiscal days follow the issuer's timezone, like the emission date printed on
the invoice.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from domain.cashier import DailySummary, summarize_day
from domain.errors import ValidationError
from domain.fiscal import FiscalDocument
from domain.sale import Sale
from domain.time import local_day_bounds, local_today
from repositories import fiscal_document_repository, sale_repository
from services.settings import SettlementSettings

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 500


def _fiscal_timezone(settings: Optional[SettlementSettings]) -> str:
    return (settings or SettlementSettings.from_env()).fiscal_timezone


def list_invoices_for_day(
    day: Optional[date] = None, *, settings: Optional[SettlementSettings] = None
) -> List[FiscalDocument]:
    """
    Invoices issued on a fiscal day (today when `day` is None), newest first.

    Pending and rejected invoices are included so they can be followed up.
    """

    tz_name = _fiscal_timezone(settings)
    day = day or local_today(tz_name)
    start, end = local_day_bounds(day, tz_name)
    documents = fiscal_document_repository.list_documents_issued_between(start, end)
    logger.info(
        f"Listed {len(documents)} invoices for {day.isoformat()}",
        extra={"day": day.isoformat(), "fiscal_timezone": tz_name},
    )
    return documents


def list_closed_sales(limit: int = 50) -> List[Sale]:
    """
    Most recently closed sales, newest first.

    Raises:
        ValidationError: limit outside 1..MAX_HISTORY_LIMIT
    """

    if not 1 <= limit <= MAX_HISTORY_LIMIT:
        raise ValidationError("limit", f"must be between 1 and {MAX_HISTORY_LIMIT}")
    return sale_repository.list_closed_sales(limit)


def daily_summary(day: Optional[date] = None, *, settings: Optional[SettlementSettings] = None) -> DailySummary:
    """Totals of a fiscal day; revenue counts authorized invoices only."""

    tz_name = _fiscal_timezone(settings)
    day = day or local_today(tz_name)
    return summarize_day(day, list_invoices_for_day(day, settings=settings))


__all__ = [
    "MAX_HISTORY_LIMIT",
    "daily_summary",
    "list_closed_sales",
    "list_invoices_for_day",
]
