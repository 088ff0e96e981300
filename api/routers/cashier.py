"""
Cashier API Endpoints.

Read-only endpoints for the cashier's day: invoices issued, closed sales
history and the daily summary by payment method.
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from api.models import ClosedSaleResponse, DailySummaryResponse, FiscalDocumentResponse
from domain.errors import ValidationError
from services.cashier_service import MAX_HISTORY_LIMIT, daily_summary, list_closed_sales, list_invoices_for_day

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/invoices",
    response_model=List[FiscalDocumentResponse],
    summary="List Invoices of a Day",
    description="Invoices issued on a fiscal day (default today), newest first, with their authority status.",
)
def get_invoices(day: Optional[date] = Query(None, description="Fiscal day, YYYY-MM-DD")):
    try:
        return [FiscalDocumentResponse.from_document(d) for d in list_invoices_for_day(day)]
    except Exception as e:
        logger.exception("Failed to list invoices", extra={"day": str(day)})
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list invoices: {str(e)}"
        )


@router.get(
    "/sales/closed",
    response_model=List[ClosedSaleResponse],
    summary="Closed Sales History",
    description="Most recently closed sales, newest first.",
)
def get_closed_sales(limit: int = Query(50, description=f"1 to {MAX_HISTORY_LIMIT}")):
    try:
        return [ClosedSaleResponse.from_sale(s) for s in list_closed_sales(limit)]
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"field": e.field, "message": e.message})
    except Exception as e:
        logger.exception("Failed to list closed sales")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list closed sales: {str(e)}"
        )


@router.get(
    "/reports/daily",
    response_model=DailySummaryResponse,
    summary="Daily Summary",
    description="Invoice counts and revenue by payment method for a fiscal day (default today).",
)
def get_daily_summary(day: Optional[date] = Query(None, description="Fiscal day, YYYY-MM-DD")):
    try:
        return DailySummaryResponse.from_summary(daily_summary(day))
    except Exception as e:
        logger.exception("Failed to build daily summary", extra={"day": str(day)})
        raise HTTPException(
            status_code=500,
            detail=f"Failed to build daily summary: {str(e)}"
        )
