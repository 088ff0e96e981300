"""
Document composer.

Turns a settled sale into a fiscal document:
- document lines with per-line tax (via the tax engine)
- the canonical XML the tax authority receives (`factura`, built with lxml)
- the fixed-width printable representation handed to the cashier printer
- the cashier ticket

Field widths are enforced here by truncation; nothing is rejected for length.
XML element names are the authority's own vocabulary and must not be renamed.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from lxml import etree

from domain.fiscal import (
    ADDRESS_WIDTH,
    DESCRIPTION_WIDTH,
    INVOICE_DOC_TYPE,
    LEGAL_NAME_WIDTH,
    PRODUCT_CODE_WIDTH,
    TAX_ID_WIDTH,
    AuthorityStatus,
    BuyerIdentity,
    CompanyProfile,
    DocumentLine,
    FiscalDocument,
    truncate,
)
from domain.sale import PaymentMethod, Sale, SaleLine
from domain.tax import to_cents
from domain.ticket import Ticket, TicketLine
from domain.time import require_utc_timestamp, to_local
from services.tax_engine import TaxEngine

DEFAULT_FISCAL_TIMEZONE = "America/Guayaquil"

# Authority tax kind for VAT ("codigo" in impuesto/totalImpuesto).
VAT_TAX_KIND = "2"

CURRENCY = "DOLAR"
DOCUMENT_VERSION = "1.1.0"

PRINT_WIDTH = 40

PAYMENT_TEXT: Dict[PaymentMethod, str] = {
    PaymentMethod.CASH: "EFECTIVO",
    PaymentMethod.CARD: "TARJETA DE CREDITO/DEBITO",
    PaymentMethod.TRANSFER: "TRANSFERENCIA BANCARIA",
    PaymentMethod.CHECK: "CHEQUE",
}


def _money(value: Decimal) -> str:
    return f"{to_cents(value):.2f}"


def build_document_lines(
    sale_lines: Sequence[SaleLine], tax_engine: TaxEngine, *, default_tax_code: str = "2"
) -> List[DocumentLine]:
    """One DocumentLine per sale line, numbered from 1, with its tax computed."""

    document_lines: List[DocumentLine] = []
    for number, line in enumerate(sale_lines, start=1):
        tax_code = line.tax_code or default_tax_code
        line_tax = tax_engine.compute_line(line.unit_price, line.quantity, line.discount, tax_code)
        document_lines.append(
            DocumentLine(
                line_number=number,
                main_code=truncate(line.dish_id, PRODUCT_CODE_WIDTH),
                auxiliary_code=truncate(line.variant_id, PRODUCT_CODE_WIDTH),
                description=truncate(line.dish_name, DESCRIPTION_WIDTH),
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount=line_tax.discount,
                tax_code=line_tax.tax_code,
                percentage_code=line_tax.percentage_code,
                rate=line_tax.rate,
                taxable_base=line_tax.taxable_base,
                tax_amount=line_tax.tax_amount,
            )
        )
    return document_lines


def compose(
    *,
    sale: Sale,
    company: CompanyProfile,
    lines: Sequence[DocumentLine],
    sequential: str,
    access_key: str,
    buyer: Optional[BuyerIdentity],
    payment_method: PaymentMethod,
    issued_at: datetime,
    document_id: Optional[str] = None,
    fiscal_timezone: str = DEFAULT_FISCAL_TIMEZONE,
) -> FiscalDocument:
    """
    Assemble a pending FiscalDocument and serialize its XML.

    A missing buyer becomes the final consumer. Passing `document_id`
    recomposes an existing document in place (same identity, new content).
    """

    require_utc_timestamp("issued_at", issued_at)

    document = FiscalDocument(
        document_id=document_id or str(uuid4()),
        sale_id=sale.sale_id,
        doc_type=INVOICE_DOC_TYPE,
        establishment=company.establishment_code,
        emission_point=company.emission_point_code,
        sequential=sequential,
        access_key=access_key,
        issued_at=issued_at,
        buyer=buyer or BuyerIdentity.final_consumer(),
        payment_method=payment_method,
        lines=list(lines),
        status=AuthorityStatus.PENDING,
    )
    return replace(document, document_text=render_xml(document, sale, company, fiscal_timezone=fiscal_timezone))


def _text(parent: etree._Element, tag: str, value: object) -> etree._Element:
    element = etree.SubElement(parent, tag)
    element.text = str(value)
    return element


def render_xml(
    document: FiscalDocument,
    sale: Sale,
    company: CompanyProfile,
    *,
    fiscal_timezone: str = DEFAULT_FISCAL_TIMEZONE,
) -> str:
    """Canonical XML of the invoice, as submitted to the tax authority."""

    buyer = document.buyer
    local_issued = to_local(document.issued_at, fiscal_timezone)

    root = etree.Element("factura", id="comprobante", version=DOCUMENT_VERSION)

    info_tributaria = etree.SubElement(root, "infoTributaria")
    _text(info_tributaria, "ambiente", company.environment.code)
    _text(info_tributaria, "tipoEmision", company.emission_type.code)
    _text(info_tributaria, "razonSocial", truncate(company.legal_name, LEGAL_NAME_WIDTH))
    _text(info_tributaria, "nombreComercial", truncate(company.display_name, LEGAL_NAME_WIDTH))
    _text(info_tributaria, "ruc", truncate(company.tax_id, TAX_ID_WIDTH))
    _text(info_tributaria, "claveAcceso", document.access_key)
    _text(info_tributaria, "codDoc", document.doc_type)
    _text(info_tributaria, "estab", document.establishment)
    _text(info_tributaria, "ptoEmi", document.emission_point)
    _text(info_tributaria, "secuencial", document.sequential)
    _text(info_tributaria, "dirMatriz", truncate(company.head_office_address, ADDRESS_WIDTH))

    info_factura = etree.SubElement(root, "infoFactura")
    _text(info_factura, "fechaEmision", local_issued.strftime("%d/%m/%Y"))
    _text(
        info_factura,
        "dirEstablecimiento",
        truncate(company.establishment_address or company.head_office_address, ADDRESS_WIDTH),
    )
    _text(info_factura, "obligadoContabilidad", "SI" if company.keeps_accounting else "NO")
    _text(info_factura, "tipoIdentificacionComprador", buyer.identification_type)
    _text(info_factura, "razonSocialComprador", truncate(buyer.legal_name, LEGAL_NAME_WIDTH))
    _text(info_factura, "identificacionComprador", truncate(buyer.tax_id, TAX_ID_WIDTH))
    _text(info_factura, "direccionComprador", truncate(buyer.address, ADDRESS_WIDTH))
    _text(info_factura, "totalSinImpuestos", _money(document.subtotal))
    _text(info_factura, "totalDescuento", _money(document.total_discount))

    total_con_impuestos = etree.SubElement(info_factura, "totalConImpuestos")
    for bracket in document.tax_totals:
        total_impuesto = etree.SubElement(total_con_impuestos, "totalImpuesto")
        _text(total_impuesto, "codigo", VAT_TAX_KIND)
        _text(total_impuesto, "codigoPorcentaje", bracket.percentage_code)
        _text(total_impuesto, "baseImponible", _money(bracket.taxable_base))
        _text(total_impuesto, "tarifa", _money(bracket.rate))
        _text(total_impuesto, "valor", _money(bracket.tax_amount))

    _text(info_factura, "propina", "0.00")
    _text(info_factura, "importeTotal", _money(document.grand_total))
    _text(info_factura, "moneda", CURRENCY)

    pagos = etree.SubElement(info_factura, "pagos")
    pago = etree.SubElement(pagos, "pago")
    _text(pago, "formaPago", document.payment_code)
    _text(pago, "total", _money(document.grand_total))
    _text(pago, "plazo", "0")
    _text(pago, "unidadTiempo", "dias")

    detalles = etree.SubElement(root, "detalles")
    for line in document.lines:
        detalle = etree.SubElement(detalles, "detalle")
        _text(detalle, "codigoPrincipal", line.main_code)
        if line.auxiliary_code:
            _text(detalle, "codigoAuxiliar", line.auxiliary_code)
        _text(detalle, "descripcion", line.description)
        _text(detalle, "cantidad", f"{line.quantity:.6f}")
        _text(detalle, "precioUnitario", f"{line.unit_price:.6f}")
        _text(detalle, "descuento", _money(line.discount))
        _text(detalle, "precioTotalSinImpuesto", _money(line.taxable_base))
        impuestos = etree.SubElement(detalle, "impuestos")
        impuesto = etree.SubElement(impuestos, "impuesto")
        _text(impuesto, "codigo", VAT_TAX_KIND)
        _text(impuesto, "codigoPorcentaje", line.percentage_code)
        _text(impuesto, "tarifa", _money(line.rate))
        _text(impuesto, "baseImponible", _money(line.taxable_base))
        _text(impuesto, "valor", _money(line.tax_amount))

    additional = [
        ("Email", buyer.email),
        ("Telefono", buyer.phone),
        ("Mesa", sale.table_number),
        ("Mesero", sale.employee_name),
    ]
    info_adicional = etree.SubElement(root, "infoAdicional")
    for name, value in additional:
        if value:
            campo = etree.SubElement(info_adicional, "campoAdicional", nombre=name)
            campo.text = str(value)

    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True).decode("utf-8")


def _rule(char: str = "=") -> str:
    return char * PRINT_WIDTH


def _center(text: str) -> str:
    return text.center(PRINT_WIDTH).rstrip()


def _amount_row(label: str, value: Decimal) -> str:
    amount = f"${_money(value)}"
    return f"{label}{amount.rjust(PRINT_WIDTH - len(label))}"


def render_printable(
    document: FiscalDocument,
    sale: Sale,
    company: CompanyProfile,
    *,
    fiscal_timezone: str = DEFAULT_FISCAL_TIMEZONE,
) -> str:
    """
    Fixed-width printable representation of the invoice.

    Only depends on the document, sale and company, so the same inputs always
    produce the same text. Authorization data is printed when present.
    """

    buyer = document.buyer
    local_issued = to_local(document.issued_at, fiscal_timezone)

    rows: List[str] = [
        _rule(),
        _center("FACTURA ELECTRONICA"),
        _rule(),
        "",
        "DATOS DEL EMISOR:",
        f"RUC: {company.tax_id}",
        f"Razon Social: {company.legal_name}",
        f"Nombre Comercial: {company.display_name}",
        f"Direccion: {company.head_office_address}",
        f"Telefono: {company.phone or 'N/A'}",
        f"Email: {company.email or 'N/A'}",
        "",
        "DATOS DEL COMPRADOR:",
        f"Identificacion: {buyer.tax_id}",
        f"Razon Social: {buyer.legal_name}",
        f"Direccion: {buyer.address or 'N/A'}",
        f"Telefono: {buyer.phone or 'N/A'}",
        f"Email: {buyer.email or 'N/A'}",
        "",
        "DATOS DE LA FACTURA:",
        f"Numero: {document.number}",
        f"Fecha: {local_issued.strftime('%d/%m/%Y')}",
        f"Hora: {local_issued.strftime('%H:%M:%S')}",
        f"Clave de Acceso: {document.access_key}",
    ]

    if document.status == AuthorityStatus.AUTHORIZED and document.authorization_code:
        rows.append(f"Autorizacion: {document.authorization_code}")
        if document.authorized_at is not None:
            authorized_local = to_local(document.authorized_at, fiscal_timezone)
            rows.append(f"Fecha Autorizacion: {authorized_local.strftime('%d/%m/%Y %H:%M:%S')}")

    rows.extend(
        [
            f"Mesa: {sale.table_number}",
            f"Mesero: {sale.employee_name}",
            "",
            "DETALLE:",
            _rule("-"),
        ]
    )

    for line in document.lines:
        rows.append(f"{line.line_number}. {line.description}")
        rows.append(f"   {line.quantity.normalize():f} x ${_money(line.unit_price)}")
        if line.discount:
            rows.append(f"   Descuento: ${_money(line.discount)}")
        rows.append(f"   Subtotal: ${_money(line.taxable_base)}")
        rows.append(f"   IVA ({_money(line.rate)}%): ${_money(line.tax_amount)}")

    rows.append(_rule("-"))
    for bracket in document.tax_totals:
        rows.append(_amount_row(f"Subtotal {_money(bracket.rate)}%:", bracket.taxable_base))
    if document.total_discount:
        rows.append(_amount_row("Descuento:", document.total_discount))
    for bracket in document.tax_totals:
        if bracket.rate:
            rows.append(_amount_row(f"IVA {_money(bracket.rate)}%:", bracket.tax_amount))
    rows.extend(
        [
            _amount_row("TOTAL:", document.grand_total),
            "",
            f"FORMA DE PAGO: {PAYMENT_TEXT.get(document.payment_method, PAYMENT_TEXT[PaymentMethod.CASH])}",
            "",
            _rule(),
            "Representacion impresa de un",
            "comprobante electronico",
            _rule(),
        ]
    )

    return "\n".join(rows) + "\n"


def build_ticket(document: FiscalDocument, sale: Sale, printable_text: str) -> Ticket:
    """Cashier ticket for a settled sale; its number is the document's sequential."""

    return Ticket(
        ticket_number=document.sequential,
        sale_id=sale.sale_id,
        table_number=sale.table_number,
        server_name=sale.employee_name,
        lines=[
            TicketLine(
                dish_name=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.taxable_base,
            )
            for line in document.lines
        ],
        subtotal=document.subtotal,
        tax=document.tax_total,
        total=document.grand_total,
        payment_method=document.payment_method.value,
        issued_at=document.issued_at,
        printable_text=printable_text,
    )


__all__ = [
    "build_document_lines",
    "build_ticket",
    "compose",
    "render_printable",
    "render_xml",
]
