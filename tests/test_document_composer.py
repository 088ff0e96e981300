"""
Tests for `services/document_composer.py`.

Covers contract rules:
- One document line per sale line, numbered from 1, with per-line tax.
- Field widths are enforced by truncation, never by rejection.
- Missing buyer data becomes the final consumer (identification type 07).
- The XML carries the authority's element names, the local emission date,
  per-bracket totals and the payment-method code.
- The printable text depends only on its inputs and shows authorization data
  once the document is authorized.
- The ticket number is the document's sequential.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from lxml import etree

from domain.fiscal import FINAL_CONSUMER_TAX_ID, BuyerIdentity
from domain.sale import PaymentMethod, Sale, SaleLine, SaleStatus
from domain.tax import TaxRule
from services import document_composer
from services.settings import TEST_COMPANY_PROFILE
from services.tax_engine import TaxEngine

# 03:00 UTC on Jan 2 is still Jan 1 in Guayaquil (UTC-5).
ISSUED_AT = datetime(2024, 1, 2, 3, 0, 0, tzinfo=timezone.utc)
ACCESS_KEY = "0101202401179001234500110010010000000071234567810"


def _engine() -> TaxEngine:
    return TaxEngine([TaxRule(tax_code="2", percentage_code="2", name="IVA 12%", rate=Decimal("12"))])


def _sale(*, table_number: str = "7", employee_name: str = "Carla") -> Sale:
    return Sale(
        sale_id="sale-1",
        table_number=table_number,
        employee_id=None,
        employee_name=employee_name,
        status=SaleStatus.SERVED,
        total_amount=Decimal("14.00"),
        lines=[
            SaleLine(
                line_id="l1",
                dish_id="dish-seco",
                dish_name="Seco de chivo",
                quantity=Decimal("2"),
                unit_price=Decimal("6.50"),
                total_price=Decimal("13.00"),
                discount=Decimal("1.00"),
                variant_id="grande",
            ),
            SaleLine(
                line_id="l2",
                dish_id="dish-agua",
                dish_name="Agua sin gas",
                quantity=Decimal("1"),
                unit_price=Decimal("1.00"),
                total_price=Decimal("1.00"),
                tax_code="0",
            ),
        ],
    )


def _compose(buyer=None, payment_method=PaymentMethod.CARD, sale=None):
    sale = sale or _sale()
    lines = document_composer.build_document_lines(sale.lines, _engine())
    return document_composer.compose(
        sale=sale,
        company=TEST_COMPANY_PROFILE,
        lines=lines,
        sequential="000000007",
        access_key=ACCESS_KEY,
        buyer=buyer,
        payment_method=payment_method,
        issued_at=ISSUED_AT,
    )


def _xml(document) -> etree._Element:
    return etree.fromstring(document.document_text.encode("utf-8"))


def test_document_lines_carry_per_line_tax() -> None:
    """Verify numbering, default tax code and per-line amounts."""

    lines = document_composer.build_document_lines(_sale().lines, _engine())

    assert [line.line_number for line in lines] == [1, 2]
    assert lines[0].tax_code == "2"
    assert lines[0].taxable_base == Decimal("12.00")
    assert lines[0].tax_amount == Decimal("1.44")
    assert lines[0].auxiliary_code == "grande"
    assert lines[1].rate == Decimal("0")
    assert lines[1].tax_amount == Decimal("0.00")


def test_long_fields_are_truncated() -> None:
    """Verify over-long descriptions and product codes are cut to their widths."""

    line = SaleLine(
        line_id="l1",
        dish_id="d" * 40,
        dish_name="Menu degustacion " * 20,
        quantity=Decimal("1"),
        unit_price=Decimal("30"),
        total_price=Decimal("30"),
    )

    [document_line] = document_composer.build_document_lines([line], _engine())

    assert len(document_line.main_code) == 25
    assert len(document_line.description) == 200


def test_document_totals() -> None:
    """Verify subtotal, tax and grand total across both brackets."""

    document = _compose()

    assert document.status.value == "pending"
    assert document.subtotal == Decimal("13.00")
    assert document.tax_total == Decimal("1.44")
    assert document.grand_total == Decimal("14.44")
    assert [(t.rate, t.taxable_base) for t in document.tax_totals] == [
        (Decimal("12"), Decimal("12.00")),
        (Decimal("0"), Decimal("1.00")),
    ]


def test_missing_buyer_becomes_final_consumer() -> None:
    """Verify the final-consumer identity and identification type 07."""

    document = _compose(buyer=None)
    root = _xml(document)

    assert document.buyer.tax_id == FINAL_CONSUMER_TAX_ID
    assert root.findtext("infoFactura/tipoIdentificacionComprador") == "07"
    assert root.findtext("infoFactura/identificacionComprador") == FINAL_CONSUMER_TAX_ID
    assert root.findtext("infoFactura/razonSocialComprador") == "CONSUMIDOR FINAL"


def test_supplied_buyer_is_serialized() -> None:
    """Verify a RUC buyer is typed 04 and their contact data goes to infoAdicional."""

    buyer = BuyerIdentity.supplied(
        tax_id="1790099999001", legal_name="Comercial Andina", email="compras@andina.ec"
    )
    root = _xml(_compose(buyer=buyer))

    assert root.findtext("infoFactura/tipoIdentificacionComprador") == "04"
    extra = {c.get("nombre"): c.text for c in root.findall("infoAdicional/campoAdicional")}
    assert extra == {"Email": "compras@andina.ec", "Mesa": "7", "Mesero": "Carla"}


def test_xml_structure() -> None:
    """Verify the authority element names and key values."""

    root = _xml(_compose(payment_method=PaymentMethod.CARD))

    assert root.tag == "factura"
    assert root.get("id") == "comprobante"
    assert root.findtext("infoTributaria/claveAcceso") == ACCESS_KEY
    assert root.findtext("infoTributaria/codDoc") == "01"
    assert root.findtext("infoTributaria/secuencial") == "000000007"
    assert root.findtext("infoTributaria/ruc") == TEST_COMPANY_PROFILE.tax_id
    assert root.findtext("infoTributaria/ambiente") == "1"
    assert root.findtext("infoFactura/fechaEmision") == "01/01/2024"
    assert root.findtext("infoFactura/totalSinImpuestos") == "13.00"
    assert root.findtext("infoFactura/importeTotal") == "14.44"
    assert root.findtext("infoFactura/pagos/pago/formaPago") == "19"
    assert root.findtext("infoFactura/pagos/pago/total") == "14.44"

    brackets = root.findall("infoFactura/totalConImpuestos/totalImpuesto")
    assert [(b.findtext("codigoPorcentaje"), b.findtext("valor")) for b in brackets] == [
        ("2", "1.44"),
        ("0", "0.00"),
    ]

    details = root.findall("detalles/detalle")
    assert len(details) == 2
    assert details[0].findtext("codigoAuxiliar") == "grande"
    assert details[1].find("codigoAuxiliar") is None
    assert details[0].findtext("descuento") == "1.00"


def test_payment_codes_in_xml() -> None:
    """Verify cash and transfer map to their authority codes."""

    assert _xml(_compose(payment_method=PaymentMethod.CASH)).findtext("infoFactura/pagos/pago/formaPago") == "01"
    assert (
        _xml(_compose(payment_method=PaymentMethod.TRANSFER)).findtext("infoFactura/pagos/pago/formaPago")
        == "20"
    )


def test_printable_text_is_deterministic() -> None:
    """Verify the same inputs render the same text."""

    document = _compose()
    first = document_composer.render_printable(document, _sale(), TEST_COMPANY_PROFILE)
    second = document_composer.render_printable(document, _sale(), TEST_COMPANY_PROFILE)

    assert first == second
    assert "Numero: 001-001-000000007" in first
    assert f"Clave de Acceso: {ACCESS_KEY}" in first
    assert "Fecha: 01/01/2024" in first
    assert "FORMA DE PAGO: TARJETA DE CREDITO/DEBITO" in first
    assert "Autorizacion:" not in first


def test_printable_text_shows_authorization() -> None:
    """Verify the authorization number is printed once the document is authorized."""

    authorized = _compose().authorized(
        authorization_code="1704164400000123", authorized_at=ISSUED_AT, message="AUTORIZADO"
    )

    text = document_composer.render_printable(authorized, _sale(), TEST_COMPANY_PROFILE)

    assert "Autorizacion: 1704164400000123" in text
    assert "$14.44" in text


def test_ticket_number_is_sequential() -> None:
    """Verify the ticket mirrors the document's number and amounts."""

    document = _compose()
    ticket = document_composer.build_ticket(document, _sale(), "printed")

    assert ticket.ticket_number == "000000007"
    assert ticket.table_number == "7"
    assert ticket.server_name == "Carla"
    assert ticket.total == Decimal("14.44")
    assert ticket.tax == Decimal("1.44")
    assert [line.dish_name for line in ticket.lines] == ["Seco de chivo", "Agua sin gas"]
    assert ticket.printable_text == "printed"
    assert ticket.payment_method == "card"
