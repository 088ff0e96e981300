"""
Fiscal document repository (persistence).

One row per sale (`sale_id` is unique). Buyer identity and lines are stored as
jsonb columns. An authorized document is immutable: every update is a
conditional update that only matches rows not yet authorized.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from domain.fiscal import AuthorityStatus, BuyerIdentity, DocumentLine, FiscalDocument
from domain.sale import PaymentMethod
from domain.time import parse_optional_utc_datetime, parse_utc_datetime, to_iso_utc
from repositories.client import get_supabase, response_rows

_DOCUMENTS_TABLE: str = "fiscal_documents"


def _buyer_to_json(buyer: BuyerIdentity) -> Dict[str, str]:
    return {
        "tax_id": buyer.tax_id,
        "legal_name": buyer.legal_name,
        "address": buyer.address,
        "phone": buyer.phone,
        "email": buyer.email,
    }


def _buyer_from_json(data: Mapping[str, Any]) -> BuyerIdentity:
    return BuyerIdentity(
        tax_id=str(data["tax_id"]),
        legal_name=str(data["legal_name"]),
        address=str(data.get("address") or "N/A"),
        phone=str(data.get("phone") or ""),
        email=str(data.get("email") or ""),
    )


def _line_to_json(line: DocumentLine) -> Dict[str, Any]:
    return {
        "line_number": line.line_number,
        "main_code": line.main_code,
        "auxiliary_code": line.auxiliary_code,
        "description": line.description,
        "quantity": str(line.quantity),
        "unit_price": str(line.unit_price),
        "discount": str(line.discount),
        "tax_code": line.tax_code,
        "percentage_code": line.percentage_code,
        "rate": str(line.rate),
        "taxable_base": str(line.taxable_base),
        "tax_amount": str(line.tax_amount),
    }


def _line_from_json(data: Mapping[str, Any]) -> DocumentLine:
    return DocumentLine(
        line_number=int(data["line_number"]),
        main_code=str(data["main_code"]),
        auxiliary_code=str(data.get("auxiliary_code") or ""),
        description=str(data["description"]),
        quantity=Decimal(str(data["quantity"])),
        unit_price=Decimal(str(data["unit_price"])),
        discount=Decimal(str(data["discount"])),
        tax_code=str(data["tax_code"]),
        percentage_code=str(data["percentage_code"]),
        rate=Decimal(str(data["rate"])),
        taxable_base=Decimal(str(data["taxable_base"])),
        tax_amount=Decimal(str(data["tax_amount"])),
    )


def _document_to_row(document: FiscalDocument) -> Dict[str, Any]:
    return {
        "id": document.document_id,
        "sale_id": document.sale_id,
        "doc_type": document.doc_type,
        "establishment": document.establishment,
        "emission_point": document.emission_point,
        "sequential": document.sequential,
        "access_key": document.access_key,
        "issued_at": to_iso_utc(document.issued_at, name="issued_at"),
        "buyer": _buyer_to_json(document.buyer),
        "payment_method": document.payment_method.value,
        "payment_code": document.payment_code,
        "lines": [_line_to_json(line) for line in document.lines],
        "subtotal": str(document.subtotal),
        "tax_total": str(document.tax_total),
        "grand_total": str(document.grand_total),
        "status": document.status.value,
        "authorization_code": document.authorization_code,
        "authorized_at": (
            to_iso_utc(document.authorized_at, name="authorized_at")
            if document.authorized_at is not None
            else None
        ),
        "authority_message": document.authority_message,
        "document_text": document.document_text,
        "signed_text": document.signed_text,
        "printable_text": document.printable_text,
    }


def _row_to_document(row: Mapping[str, Any]) -> FiscalDocument:
    return FiscalDocument(
        document_id=str(row["id"]),
        sale_id=str(row["sale_id"]),
        doc_type=str(row["doc_type"]),
        establishment=str(row["establishment"]),
        emission_point=str(row["emission_point"]),
        sequential=str(row["sequential"]),
        access_key=str(row["access_key"]),
        issued_at=parse_utc_datetime(row["issued_at"]),
        buyer=_buyer_from_json(row["buyer"]),
        payment_method=PaymentMethod(str(row["payment_method"])),
        lines=[_line_from_json(item) for item in row.get("lines") or []],
        status=AuthorityStatus(str(row["status"])),
        authorization_code=row.get("authorization_code"),
        authorized_at=parse_optional_utc_datetime(row.get("authorized_at")),
        authority_message=row.get("authority_message"),
        document_text=str(row.get("document_text") or ""),
        signed_text=row.get("signed_text"),
        printable_text=row.get("printable_text"),
    )


def insert_fiscal_document(document: FiscalDocument) -> None:
    """
    Persist a new document.

    Raises:
        RuntimeError: on store error (including a second document for the same sale)
    """

    response = get_supabase().table(_DOCUMENTS_TABLE).insert(_document_to_row(document)).execute()
    response_rows(response, "insert fiscal document")


def update_fiscal_document(document: FiscalDocument) -> None:
    """
    Overwrite the mutable state of a not-yet-authorized document.

    Raises:
        ValueError: the document does not exist or is already authorized
    """

    payload = _document_to_row(document)
    # Identity of the document never changes.
    for column in ("id", "sale_id", "doc_type", "establishment", "emission_point", "sequential", "access_key"):
        payload.pop(column)

    response = (
        get_supabase()
        .table(_DOCUMENTS_TABLE)
        .update(payload)
        .eq("id", document.document_id)
        .neq("status", AuthorityStatus.AUTHORIZED.value)
        .execute()
    )
    updated_rows = response_rows(response, "update fiscal document")
    if not updated_rows:
        raise ValueError(f"Fiscal document {document.document_id} not found or already authorized")


def get_fiscal_document_by_sale(sale_id: str) -> Optional[FiscalDocument]:
    response = (
        get_supabase()
        .table(_DOCUMENTS_TABLE)
        .select("*")
        .eq("sale_id", sale_id)
        .limit(1)
        .execute()
    )
    rows = response_rows(response, "get fiscal document")
    if not rows:
        return None
    return _row_to_document(rows[0])


def list_documents_issued_between(start: datetime, end: datetime) -> List[FiscalDocument]:
    """Documents issued in [start, end), newest first, whatever their authority status."""

    response = (
        get_supabase()
        .table(_DOCUMENTS_TABLE)
        .select("*")
        .gte("issued_at", to_iso_utc(start, name="start"))
        .lt("issued_at", to_iso_utc(end, name="end"))
        .order("issued_at", desc=True)
        .execute()
    )
    rows = response_rows(response, "list fiscal documents")
    return [_row_to_document(row) for row in rows]


__all__ = [
    "get_fiscal_document_by_sale",
    "insert_fiscal_document",
    "list_documents_issued_between",
    "update_fiscal_document",
]
