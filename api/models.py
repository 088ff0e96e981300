"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from domain.cashier import DailySummary
from domain.errors import Shortfall
from domain.fiscal import FiscalDocument
from domain.sale import Sale
from domain.ticket import Ticket


# ============================================================================
# Settlement Models
# ============================================================================

class BuyerPayload(BaseModel):
    """Buyer identity printed on the invoice. Omit it for a final-consumer invoice."""
    tax_id: str = Field(..., description="10-digit national id or 13-digit RUC")
    legal_name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class SettlementRequestBody(BaseModel):
    """Request to settle (close) a served sale."""
    payment_method: str = Field(..., description="cash, card or transfer")
    settled_by: Optional[str] = Field(None, description="Employee closing the sale")
    buyer: Optional[BuyerPayload] = None

    class Config:
        json_schema_extra = {
            "example": {
                "payment_method": "cash",
                "settled_by": "123e4567-e89b-12d3-a456-426614174002",
                "buyer": {
                    "tax_id": "1790012345001",
                    "legal_name": "ACME S.A.",
                    "email": "billing@acme.ec"
                }
            }
        }


class TicketLineResponse(BaseModel):
    dish_name: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


class TicketResponse(BaseModel):
    """Cashier ticket; the ticket number is the invoice sequential."""
    ticket_number: str
    table_number: str
    server_name: str
    lines: List[TicketLineResponse]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: str
    issued_at: datetime
    printable_text: str

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            ticket_number=ticket.ticket_number,
            table_number=ticket.table_number,
            server_name=ticket.server_name,
            lines=[
                TicketLineResponse(
                    dish_name=line.dish_name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                )
                for line in ticket.lines
            ],
            subtotal=ticket.subtotal,
            tax=ticket.tax,
            total=ticket.total,
            payment_method=ticket.payment_method,
            issued_at=ticket.issued_at,
            printable_text=ticket.printable_text,
        )


class FiscalDocumentResponse(BaseModel):
    """Summary of a fiscal document and its authority status."""
    document_id: str
    sale_id: str
    number: str
    sequential: str
    access_key: str
    status: str  # "pending", "authorized" or "rejected"
    issued_at: datetime
    buyer_tax_id: str
    buyer_name: str
    payment_code: str
    subtotal: Decimal
    tax_total: Decimal
    grand_total: Decimal
    authorization_code: Optional[str] = None
    authorized_at: Optional[datetime] = None
    authority_message: Optional[str] = None

    @classmethod
    def from_document(cls, document: FiscalDocument) -> "FiscalDocumentResponse":
        return cls(
            document_id=document.document_id,
            sale_id=document.sale_id,
            number=document.number,
            sequential=document.sequential,
            access_key=document.access_key,
            status=document.status.value,
            issued_at=document.issued_at,
            buyer_tax_id=document.buyer.tax_id,
            buyer_name=document.buyer.legal_name,
            payment_code=document.payment_code,
            subtotal=document.subtotal,
            tax_total=document.tax_total,
            grand_total=document.grand_total,
            authorization_code=document.authorization_code,
            authorized_at=document.authorized_at,
            authority_message=document.authority_message,
        )


class SettlementResponse(BaseModel):
    """Response for a completed settlement."""
    sale_id: str
    status: str
    ticket: TicketResponse
    document: FiscalDocumentResponse


# ============================================================================
# Stock Models
# ============================================================================

class ShortfallResponse(BaseModel):
    inventory_item_id: str
    item_name: str
    required: Decimal
    available: Decimal
    shortfall: Decimal
    batch_id: Optional[str] = None
    batch_number: Optional[str] = None

    @classmethod
    def from_shortfall(cls, shortfall: Shortfall) -> "ShortfallResponse":
        return cls(
            inventory_item_id=shortfall.inventory_item_id,
            item_name=shortfall.item_name,
            required=shortfall.required,
            available=shortfall.available,
            shortfall=shortfall.shortfall,
            batch_id=shortfall.batch_id,
            batch_number=shortfall.batch_number,
        )


class StockCheckResponse(BaseModel):
    """Stock check for a sale (no stock is touched)."""
    sale_id: str
    sufficient: bool
    shortfalls: List[ShortfallResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "sale_id": "123e4567-e89b-12d3-a456-426614174000",
                "sufficient": False,
                "shortfalls": [
                    {
                        "inventory_item_id": "123e4567-e89b-12d3-a456-426614174010",
                        "item_name": "Tomato",
                        "required": "8",
                        "available": "5",
                        "shortfall": "3",
                        "batch_id": None,
                        "batch_number": None
                    }
                ]
            }
        }


# ============================================================================
# Cashier Models
# ============================================================================

class ClosedSaleResponse(BaseModel):
    """A closed sale in the cashier's history."""
    sale_id: str
    table_number: str
    server_name: str
    ticket_number: Optional[str] = None
    payment_method: Optional[str] = None
    closed_by: Optional[str] = None
    closed_at: Optional[datetime] = None
    total_amount: Decimal
    line_count: int

    @classmethod
    def from_sale(cls, sale: Sale) -> "ClosedSaleResponse":
        return cls(
            sale_id=sale.sale_id,
            table_number=sale.table_number,
            server_name=sale.employee_name,
            ticket_number=sale.ticket_number,
            payment_method=sale.payment_method.value if sale.payment_method else None,
            closed_by=sale.closed_by,
            closed_at=sale.closed_at,
            total_amount=sale.total_amount,
            line_count=len(sale.lines),
        )


class DailySummaryResponse(BaseModel):
    """End-of-day figures; revenue counts authorized invoices only."""
    day: date
    authorized_count: int
    pending_count: int
    rejected_count: int
    subtotal: Decimal
    tax_total: Decimal
    total_revenue: Decimal
    revenue_by_payment_method: Dict[str, Decimal]

    class Config:
        json_schema_extra = {
            "example": {
                "day": "2024-04-01",
                "authorized_count": 42,
                "pending_count": 1,
                "rejected_count": 0,
                "subtotal": "512.50",
                "tax_total": "58.20",
                "total_revenue": "570.70",
                "revenue_by_payment_method": {"cash": "310.20", "card": "220.50", "transfer": "40.00"}
            }
        }

    @classmethod
    def from_summary(cls, summary: DailySummary) -> "DailySummaryResponse":
        return cls(
            day=summary.day,
            authorized_count=summary.authorized_count,
            pending_count=summary.pending_count,
            rejected_count=summary.rejected_count,
            subtotal=summary.subtotal,
            tax_total=summary.tax_total,
            total_revenue=summary.total_revenue,
            revenue_by_payment_method=dict(summary.revenue_by_payment_method),
        )
