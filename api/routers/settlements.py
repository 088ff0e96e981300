"""
Settlements API Endpoints.

Endpoints for settling served sales, checking their stock, reprinting tickets
and refreshing the tax authority status of their fiscal documents.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse

from api.models import (
    FiscalDocumentResponse,
    SettlementRequestBody,
    SettlementResponse,
    ShortfallResponse,
    StockCheckResponse,
    TicketResponse,
)
from domain.errors import (
    AuthorityIndeterminate,
    AuthorityRejected,
    InsufficientStock,
    InvalidSaleState,
    NotFound,
    SequenceExhausted,
    ValidationError,
)
from domain.fiscal import BuyerIdentity
from services.settlement_service import (
    SettlementContext,
    SettlementRequest,
    check_stock,
    get_default_context,
    refresh_status,
    reprint,
    settle,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_settlement_context() -> SettlementContext:
    """Dependency returning the settlement collaborators (overridden in tests)."""
    return get_default_context()


def _document_payload(document) -> Dict[str, Any]:
    return FiscalDocumentResponse.from_document(document).model_dump(mode="json")


@router.post(
    "/sales/{sale_id}/settlement",
    response_model=SettlementResponse,
    summary="Settle Sale",
    description="Close a served sale: deduct stock, issue and submit its electronic invoice.",
    responses={
        202: {"description": "Invoice submitted, authority outcome not yet known"},
        404: {"description": "Sale not found"},
        409: {"description": "Insufficient stock, invalid sale state or invoice rejected"},
        422: {"description": "Invalid payment method or buyer data"},
        503: {"description": "Invoice sequence exhausted"},
    },
)
def settle_sale(
    sale_id: str,
    request: SettlementRequestBody,
    context: SettlementContext = Depends(get_settlement_context),
):
    """
    Settle a served sale.

    **Process:**
    1. Validates payment method and buyer data
    2. Checks stock for every dish (all shortfalls are reported together)
    3. Deducts stock from the oldest batches first
    4. Issues the next sequential number and access key
    5. Submits the signed invoice to the tax authority
    6. Closes the sale and returns the ticket

    **Retrying:** calling this endpoint again for a sale whose invoice was
    rejected resubmits the same invoice number; for a pending invoice it
    queries the authority instead. Stock is never deducted twice.

    **Example request:**
    ```json
    {
      "payment_method": "card",
      "settled_by": "123e4567-e89b-12d3-a456-426614174002"
    }
    ```
    """
    try:
        buyer = None
        if request.buyer is not None:
            buyer = BuyerIdentity.supplied(
                tax_id=request.buyer.tax_id,
                legal_name=request.buyer.legal_name,
                address=request.buyer.address,
                phone=request.buyer.phone,
                email=request.buyer.email,
            )

        result = settle(
            SettlementRequest(
                sale_id=sale_id,
                payment_method=request.payment_method,
                settled_by=request.settled_by,
                buyer=buyer,
            ),
            context=context,
        )

        return SettlementResponse(
            sale_id=result.sale.sale_id,
            status=result.sale.status.value,
            ticket=TicketResponse.from_ticket(result.ticket),
            document=FiscalDocumentResponse.from_document(result.document),
        )

    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"field": e.field, "message": e.message})
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InsufficientStock as e:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(e),
                "shortfalls": [
                    ShortfallResponse.from_shortfall(s).model_dump(mode="json") for s in e.shortfalls
                ],
            },
        )
    except InvalidSaleState as e:
        raise HTTPException(status_code=409, detail=str(e))
    except AuthorityRejected as e:
        raise HTTPException(
            status_code=409,
            detail={"status": "rejected", "message": e.message, "document": _document_payload(e.document)},
        )
    except AuthorityIndeterminate as e:
        return JSONResponse(
            status_code=202,
            content={"status": "pending", "message": e.message, "document": _document_payload(e.document)},
        )
    except SequenceExhausted as e:
        logger.error("Settlement failed: invoice sequence exhausted", extra={"sale_id": sale_id})
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.exception("Settlement failed", extra={"sale_id": sale_id})
        raise HTTPException(
            status_code=500,
            detail=f"Failed to settle sale: {str(e)}"
        )


@router.get(
    "/sales/{sale_id}/stock-check",
    response_model=StockCheckResponse,
    summary="Check Sale Stock",
    description="Report every stock shortfall the sale would hit if settled now. Nothing is deducted.",
)
def check_sale_stock(sale_id: str):
    """
    Check stock for a sale without touching it.

    Every short item (or pinned batch) is listed with its required,
    available and missing quantity.
    """
    try:
        shortfalls = check_stock(sale_id)
        return StockCheckResponse(
            sale_id=sale_id,
            sufficient=not shortfalls,
            shortfalls=[ShortfallResponse.from_shortfall(s) for s in shortfalls],
        )
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to check stock: {str(e)}"
        )


@router.get(
    "/sales/{sale_id}/ticket",
    response_class=PlainTextResponse,
    summary="Reprint Ticket",
    description="Return the stored printable invoice of a sale, byte for byte.",
)
def reprint_ticket(sale_id: str):
    try:
        return PlainTextResponse(reprint(sale_id))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reprint ticket: {str(e)}"
        )


@router.post(
    "/sales/{sale_id}/fiscal-document/refresh",
    response_model=FiscalDocumentResponse,
    summary="Refresh Invoice Status",
    description="Query the tax authority for a pending invoice and apply the outcome.",
)
def refresh_fiscal_document(
    sale_id: str,
    context: SettlementContext = Depends(get_settlement_context),
):
    """
    Re-query a pending invoice.

    An authorized outcome also closes the sale. Final invoices are returned
    unchanged.
    """
    try:
        document = refresh_status(sale_id, context=context)
        return FiscalDocumentResponse.from_document(document)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidSaleState as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.exception("Invoice status refresh failed", extra={"sale_id": sale_id})
        raise HTTPException(
            status_code=500,
            detail=f"Failed to refresh invoice status: {str(e)}"
        )
