"""
Tests for `services/settlement_service.py`.

Covers contract rules:
- A settled sale is closed with its ticket number equal to the sequential of
  exactly one authorized fiscal document.
- Validation errors and stock shortfalls leave no trace: no deduction, no
  sequential, no document.
- A failure after allocation but before the document is stored gives every
  allocation back.
- A rejection keeps stock consumed and the sale served; retrying reuses the
  same document, sequential and access key without deducting again.
- An indeterminate outcome keeps the document pending; re-running queries the
  authority instead of issuing a new sequential.
- Reprints return the stored printable text, byte for byte.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.errors import (
    AuthorityIndeterminate,
    AuthorityRejected,
    InsufficientStock,
    InvalidSaleState,
    NotFound,
    SequenceExhausted,
    SettlementError,
    ValidationError,
)
from domain.fiscal import AuthorityStatus, BuyerIdentity
from domain.sale import PaymentMethod, SaleStatus
from fakes import batch_row, recipe_row, sale_line_row, sale_row
from repositories import fiscal_document_repository, sequence_repository
from services import settlement_service
from services.authority_gateway import (
    AuthorityGateway,
    AuthorityOutcome,
    AuthorityResponse,
    AuthorityTransport,
)
from services.settings import SettlementSettings
from services.settlement_service import SettlementContext, SettlementRequest

T0 = datetime(2024, 4, 1, 10, 0, 0, tzinfo=timezone.utc)


def _seed(fake_db, *, sale_id: str = "sale-1", status: str = "served", chicken: str = "1") -> None:
    """Two rice-and-chicken plates plus a juice without recipe."""

    fake_db.seed("sales", sale_row(sale_id, status=status))
    fake_db.seed(
        "sale_lines",
        sale_line_row(sale_id, "dish-arroz", "Arroz con pollo", "2", "5.00"),
        sale_line_row(sale_id, "dish-jugo", "Jugo de naranja", "1", "2.00", tax_code="0"),
    )
    if fake_db.rows("recipe_entries"):
        return
    fake_db.seed(
        "recipe_entries",
        recipe_row("dish-arroz", "rice", "0.25", item_name="Arroz"),
        recipe_row("dish-arroz", "chicken", "0.2", item_name="Pollo"),
    )
    fake_db.seed(
        "batches",
        batch_row("b-rice-1", "rice", "5", created_at=T0),
        batch_row("b-rice-2", "rice", "10", created_at=T0 + timedelta(days=1)),
        batch_row("b-chicken", "chicken", chicken, created_at=T0),
    )


def _quantity(fake_db, batch_id: str) -> Decimal:
    return Decimal(fake_db.row("batches", batch_id)["quantity"])


def _sale_row(fake_db, sale_id: str = "sale-1") -> dict:
    return fake_db.row("sales", sale_id)


def _document_row(fake_db, sale_id: str = "sale-1") -> dict:
    [row] = [d for d in fake_db.rows("fiscal_documents") if d["sale_id"] == sale_id]
    return row


class _ScriptedTransport(AuthorityTransport):
    """Returns fixed responses for submissions and status queries."""

    def __init__(self, send_outcome: AuthorityOutcome, query_outcome: AuthorityOutcome = AuthorityOutcome.INDETERMINATE):
        self.send_outcome = send_outcome
        self.query_outcome = query_outcome
        self.sent = 0
        self.queried = 0

    def _response(self, outcome: AuthorityOutcome) -> AuthorityResponse:
        if outcome == AuthorityOutcome.AUTHORIZED:
            return AuthorityResponse(
                outcome=outcome, message="AUTORIZADO", authorization_code="1712000000000042", authorized_at=T0
            )
        if outcome == AuthorityOutcome.REJECTED:
            return AuthorityResponse(outcome=outcome, message="NO AUTORIZADO")
        return AuthorityResponse(outcome=outcome, message="EN PROCESO")

    def send(self, access_key: str, signed_text: str) -> AuthorityResponse:
        self.sent += 1
        return self._response(self.send_outcome)

    def query(self, access_key: str) -> AuthorityResponse:
        self.queried += 1
        return self._response(self.query_outcome)


# ============================================================================
# Happy path
# ============================================================================


def test_settle_closes_sale_with_authorized_invoice(fake_db, make_context) -> None:
    """Verify stock, sequential, document and sale after a successful settlement."""

    _seed(fake_db)

    result = settlement_service.settle(
        SettlementRequest(sale_id="sale-1", payment_method="cash", settled_by="cashier-1"),
        context=make_context(1.0),
    )

    assert result.sale.status == SaleStatus.CLOSED
    assert result.document.status == AuthorityStatus.AUTHORIZED
    assert result.document.sequential == "000000001"
    assert result.ticket.ticket_number == "000000001"
    assert result.ticket.total == Decimal("13.20")
    assert result.document.buyer.is_final_consumer

    sale = _sale_row(fake_db)
    assert sale["status"] == "closed"
    assert sale["payment_method"] == "cash"
    assert sale["ticket_number"] == "000000001"
    assert sale["fiscal_document_id"] == result.document.document_id
    assert sale["closed_by"] == "cashier-1"

    document = _document_row(fake_db)
    assert document["status"] == "authorized"
    assert document["authorization_code"]
    assert "Autorizacion:" in document["printable_text"]
    assert document["signed_text"].startswith("<!-- FIRMA DIGITAL SIMULADA -->")

    assert _quantity(fake_db, "b-rice-1") == Decimal("4.5")
    assert _quantity(fake_db, "b-rice-2") == Decimal("10")
    assert _quantity(fake_db, "b-chicken") == Decimal("0.6")
    movements = fake_db.rows("stock_movements")
    assert len(movements) == 2
    assert {m["reference"] for m in movements} == {"sale-1"}

    log = [(e["request_type"], e["outcome"]) for e in fake_db.rows("authority_log")]
    assert log == [("submit", "pending"), ("submit", "authorized")]


def test_consecutive_sales_get_consecutive_sequentials(fake_db, make_context) -> None:
    """Verify each settled sale takes the next sequential of the emission point."""

    _seed(fake_db, sale_id="sale-1")
    _seed(fake_db, sale_id="sale-2")
    context = make_context(1.0)

    first = settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)
    second = settlement_service.settle(SettlementRequest("sale-2", "card"), context=context)

    assert (first.ticket.ticket_number, second.ticket.ticket_number) == ("000000001", "000000002")
    assert second.document.payment_code == "19"


def test_company_profile_drives_numbering(fake_db, make_context) -> None:
    """Verify the configured establishment and emission point are used."""

    _seed(fake_db)
    fake_db.seed(
        "company_profile",
        {
            "tax_id": "0990011223001",
            "legal_name": "Marisqueria El Puerto S.A.",
            "head_office_address": "Malecon 100, Guayaquil",
            "establishment_code": "002",
            "emission_point_code": "003",
            "environment": "test",
            "emission_type": "normal",
        },
    )

    result = settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(1.0))

    assert result.document.number == "002-003-000000001"
    assert result.document.access_key[10:23] == "0990011223001"
    assert sequence_repository.get_current_value("01", "002", "003") == 1


def test_supplied_buyer_is_used(fake_db, make_context) -> None:
    """Verify buyer data reaches the stored document."""

    _seed(fake_db)

    result = settlement_service.settle(
        SettlementRequest(
            "sale-1", PaymentMethod.TRANSFER, buyer=BuyerIdentity(tax_id="1712345678", legal_name="Maria Perez")
        ),
        context=make_context(1.0),
    )

    assert result.document.buyer.tax_id == "1712345678"
    assert _document_row(fake_db)["buyer"]["legal_name"] == "Maria Perez"
    assert _document_row(fake_db)["payment_code"] == "20"


# ============================================================================
# Failures before any mutation
# ============================================================================


@pytest.mark.parametrize("payment_method", ["check", "bitcoin", ""])
def test_invalid_payment_method(fake_db, make_context, payment_method: str) -> None:
    """Verify unsupported payment methods are rejected before anything changes."""

    _seed(fake_db)

    with pytest.raises(ValidationError) as exc_info:
        settlement_service.settle(SettlementRequest("sale-1", payment_method), context=make_context(1.0))

    assert exc_info.value.field == "payment_method"
    assert fake_db.rpc_calls == []


def test_invalid_buyer(fake_db, make_context) -> None:
    """Verify malformed buyer data is rejected before anything changes."""

    _seed(fake_db)

    with pytest.raises(ValidationError):
        settlement_service.settle(
            SettlementRequest("sale-1", "cash", buyer=BuyerIdentity(tax_id="123", legal_name="X")),
            context=make_context(1.0),
        )

    assert fake_db.rpc_calls == []
    assert fake_db.rows("fiscal_documents") == []


def test_unknown_sale(fake_db, make_context) -> None:
    """Verify an unknown sale raises NotFound."""

    with pytest.raises(NotFound):
        settlement_service.settle(SettlementRequest("nope", "cash"), context=make_context(1.0))


@pytest.mark.parametrize("status", ["pending", "ready"])
def test_unserved_sale_cannot_be_settled(fake_db, make_context, status: str) -> None:
    """Verify only served sales are settled."""

    _seed(fake_db, status=status)

    with pytest.raises(InvalidSaleState):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(1.0))

    assert fake_db.rpc_calls == []


def test_closed_sale_cannot_be_settled_again(fake_db, make_context) -> None:
    """Verify a second settlement of a closed sale changes nothing."""

    _seed(fake_db)
    context = make_context(1.0)
    settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)
    movements_before = fake_db.rows("stock_movements")

    with pytest.raises(InvalidSaleState):
        settlement_service.settle(SettlementRequest("sale-1", "card"), context=context)

    assert fake_db.rows("stock_movements") == movements_before
    assert _sale_row(fake_db)["payment_method"] == "cash"


def test_insufficient_stock_changes_nothing(fake_db, make_context) -> None:
    """Verify a shortfall reports the item and leaves stock and numbering untouched."""

    _seed(fake_db, chicken="0.3")

    with pytest.raises(InsufficientStock) as exc_info:
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(1.0))

    [shortfall] = exc_info.value.shortfalls
    assert shortfall.item_name == "Pollo"
    assert shortfall.required == Decimal("0.4")
    assert shortfall.shortfall == Decimal("0.1")
    assert _quantity(fake_db, "b-chicken") == Decimal("0.3")
    assert fake_db.rows("stock_movements") == []
    assert fake_db.rows("fiscal_documents") == []
    assert sequence_repository.get_current_value("01", "001", "001") == 0
    assert _sale_row(fake_db)["status"] == "served"


def test_check_stock_is_read_only(fake_db) -> None:
    """Verify the stock check lists shortfalls without deducting."""

    _seed(fake_db, chicken="0")

    shortfalls = settlement_service.check_stock("sale-1")

    assert [s.inventory_item_id for s in shortfalls] == ["chicken"]
    assert fake_db.rows("stock_movements") == []


# ============================================================================
# Compensation
# ============================================================================


def test_failure_mid_allocation_gives_stock_back(fake_db, make_context) -> None:
    """Verify a store failure on the second item restores the first."""

    _seed(fake_db)
    calls = []

    def fail_on_chicken(params) -> None:
        calls.append(params["p_batch_id"])
        if params["p_batch_id"] == "b-chicken":
            raise RuntimeError("connection reset")

    fake_db.hooks["rpc.deduct_batch_quantity"] = fail_on_chicken

    with pytest.raises(RuntimeError):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(1.0))

    assert calls == ["b-rice-1", "b-chicken"]
    assert _quantity(fake_db, "b-rice-1") == Decimal("5")
    assert [m["movement_type"] for m in fake_db.rows("stock_movements")] == ["sale", "sale_reversal"]
    assert sequence_repository.get_current_value("01", "001", "001") == 0
    assert _sale_row(fake_db)["status"] == "served"


def test_document_store_failure_gives_stock_back(fake_db, make_context) -> None:
    """Verify allocations are released when the document cannot be stored."""

    _seed(fake_db)

    def refuse_insert(payload) -> None:
        raise RuntimeError("disk full")

    fake_db.hooks["fiscal_documents.insert"] = refuse_insert

    with pytest.raises(RuntimeError):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(1.0))

    assert _quantity(fake_db, "b-rice-1") == Decimal("5")
    assert _quantity(fake_db, "b-chicken") == Decimal("1")
    assert fake_db.rows("fiscal_documents") == []
    assert _sale_row(fake_db)["status"] == "served"


def test_sequence_exhausted_gives_stock_back(fake_db, make_context) -> None:
    """Verify an exhausted sequence aborts the settlement and restores stock."""

    _seed(fake_db)
    fake_db.seed(
        "invoice_sequences",
        {"doc_type": "01", "establishment": "001", "emission_point": "001", "current_value": 1, "max_value": 1},
    )
    context = make_context(1.0)
    context = SettlementContext(settings=SettlementSettings(sequence_ceiling=1), gateway=context.gateway)

    with pytest.raises(SequenceExhausted):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)

    assert _quantity(fake_db, "b-rice-1") == Decimal("5")
    assert fake_db.rows("fiscal_documents") == []


def test_discount_above_subtotal_is_rejected_before_numbering(fake_db, make_context) -> None:
    """Verify an over-discounted line fails validation and the next sale still gets sequential 1."""

    _seed(fake_db, sale_id="sale-bad")
    fake_db.seed("sale_lines", sale_line_row("sale-bad", "dish-pan", "Pan de yuca", "1", "1.00", discount="2.00"))
    _seed(fake_db, sale_id="sale-good")
    context = make_context(1.0)

    with pytest.raises(ValidationError) as exc_info:
        settlement_service.settle(SettlementRequest("sale-bad", "cash"), context=context)

    assert exc_info.value.field == "lines[2].discount"
    assert fake_db.rpc_calls == []
    assert fake_db.rows("stock_movements") == []

    result = settlement_service.settle(SettlementRequest("sale-good", "cash"), context=context)

    assert result.document.sequential == "000000001"


def test_render_failure_does_not_consume_a_sequential(fake_db, make_context, monkeypatch) -> None:
    """Verify a document that cannot be rendered gives stock back without taking a number."""

    _seed(fake_db, sale_id="sale-1")
    _seed(fake_db, sale_id="sale-2")
    context = make_context(1.0)
    render_xml = settlement_service.document_composer.render_xml

    def broken_render(*args, **kwargs):
        raise ValueError("All strings must be XML compatible")

    monkeypatch.setattr(settlement_service.document_composer, "render_xml", broken_render)
    with pytest.raises(ValueError):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)

    assert sequence_repository.get_current_value("01", "001", "001") == 0
    assert _quantity(fake_db, "b-rice-1") == Decimal("5")

    monkeypatch.setattr(settlement_service.document_composer, "render_xml", render_xml)
    result = settlement_service.settle(SettlementRequest("sale-2", "cash"), context=context)

    assert result.document.sequential == "000000001"


# ============================================================================
# Authority outcomes
# ============================================================================


def test_rejection_keeps_stock_consumed_and_sale_open(fake_db, make_context) -> None:
    """Verify a rejected invoice leaves a rejected document and a served sale."""

    _seed(fake_db)

    with pytest.raises(AuthorityRejected) as exc_info:
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(0.0))

    assert exc_info.value.document.status == AuthorityStatus.REJECTED
    assert _sale_row(fake_db)["status"] == "served"
    assert _document_row(fake_db)["status"] == "rejected"
    assert _quantity(fake_db, "b-rice-1") == Decimal("4.5")
    assert len(fake_db.rows("stock_movements")) == 2


def test_retry_after_rejection_reuses_document(fake_db, make_context) -> None:
    """Verify a retry keeps the sequential and access key and deducts nothing new."""

    _seed(fake_db)
    with pytest.raises(AuthorityRejected) as exc_info:
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(0.0))
    rejected = exc_info.value.document

    result = settlement_service.settle(
        SettlementRequest(
            "sale-1", "card", buyer=BuyerIdentity(tax_id="1790012345001", legal_name="Empresa Cliente S.A.")
        ),
        context=make_context(1.0),
    )

    assert result.sale.status == SaleStatus.CLOSED
    assert result.document.document_id == rejected.document_id
    assert result.document.sequential == rejected.sequential
    assert result.document.access_key == rejected.access_key
    assert result.document.payment_method == PaymentMethod.CARD
    assert result.document.buyer.tax_id == "1790012345001"
    assert len(fake_db.rows("fiscal_documents")) == 1
    assert len(fake_db.rows("stock_movements")) == 2
    assert fake_db.rpc_calls.count("next_invoice_sequential") == 1
    assert _quantity(fake_db, "b-rice-1") == Decimal("4.5")


def test_indeterminate_outcome_keeps_document_pending(fake_db, make_context) -> None:
    """Verify an unknown outcome is neither a success nor a rejection."""

    _seed(fake_db)
    transport = _ScriptedTransport(AuthorityOutcome.INDETERMINATE)

    with pytest.raises(AuthorityIndeterminate):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(transport=transport))

    assert _document_row(fake_db)["status"] == "pending"
    assert _sale_row(fake_db)["status"] == "served"


def test_rerun_of_pending_settlement_queries_instead_of_resubmitting(fake_db, make_context) -> None:
    """Verify a re-run asks the authority about the existing document."""

    _seed(fake_db)
    transport = _ScriptedTransport(AuthorityOutcome.INDETERMINATE)
    context = make_context(transport=transport)
    with pytest.raises(AuthorityIndeterminate):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)

    transport.query_outcome = AuthorityOutcome.AUTHORIZED
    result = settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)

    assert (transport.sent, transport.queried) == (1, 1)
    assert result.sale.status == SaleStatus.CLOSED
    assert result.document.sequential == "000000001"
    assert result.document.authorization_code == "1712000000000042"
    assert fake_db.rpc_calls.count("next_invoice_sequential") == 1
    assert len(fake_db.rows("stock_movements")) == 2


def test_refresh_status_applies_authorization(fake_db, make_context) -> None:
    """Verify refreshing a pending document closes the sale once authorized."""

    _seed(fake_db)
    transport = _ScriptedTransport(AuthorityOutcome.INDETERMINATE)
    context = make_context(transport=transport)
    with pytest.raises(AuthorityIndeterminate):
        settlement_service.settle(SettlementRequest("sale-1", "transfer"), context=context)

    still_pending = settlement_service.refresh_status("sale-1", context=context)
    assert still_pending.status == AuthorityStatus.PENDING

    transport.query_outcome = AuthorityOutcome.AUTHORIZED
    document = settlement_service.refresh_status("sale-1", settled_by="cashier-2", context=context)

    assert document.status == AuthorityStatus.AUTHORIZED
    sale = _sale_row(fake_db)
    assert sale["status"] == "closed"
    assert sale["payment_method"] == "transfer"
    assert sale["closed_by"] == "cashier-2"


def test_refresh_status_records_rejection(fake_db, make_context) -> None:
    """Verify a rejection found by a status query is stored."""

    _seed(fake_db)
    transport = _ScriptedTransport(AuthorityOutcome.INDETERMINATE, AuthorityOutcome.REJECTED)
    context = make_context(transport=transport)
    with pytest.raises(AuthorityIndeterminate):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)

    document = settlement_service.refresh_status("sale-1", context=context)

    assert document.status == AuthorityStatus.REJECTED
    assert _document_row(fake_db)["status"] == "rejected"
    assert _sale_row(fake_db)["status"] == "served"


def test_refresh_status_without_document(fake_db, make_context) -> None:
    """Verify refreshing a sale that was never invoiced raises NotFound."""

    _seed(fake_db)

    with pytest.raises(NotFound):
        settlement_service.refresh_status("sale-1", context=make_context(1.0))


def test_concurrent_settlements_of_one_sale(fake_db, make_context) -> None:
    """Verify two cashiers settling the same sale close it once and consume stock once."""

    _seed(fake_db)
    context = make_context(1.0)

    def attempt(_: int) -> str:
        try:
            settlement_service.settle(SettlementRequest("sale-1", "cash"), context=context)
            return "closed"
        except (SettlementError, RuntimeError, ValueError) as e:
            return type(e).__name__

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(attempt, range(2)))

    assert outcomes.count("closed") == 1
    assert _sale_row(fake_db)["status"] == "closed"
    assert len(fake_db.rows("fiscal_documents")) == 1
    assert _quantity(fake_db, "b-rice-1") + _quantity(fake_db, "b-rice-2") == Decimal("14.5")
    assert _quantity(fake_db, "b-chicken") == Decimal("0.6")


# ============================================================================
# Reprint
# ============================================================================


def test_reprint_is_byte_identical(fake_db, make_context) -> None:
    """Verify reprints return exactly the stored printable text."""

    _seed(fake_db)
    result = settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(1.0))

    first = settlement_service.reprint("sale-1")
    second = settlement_service.reprint("sale-1")

    assert first == second == result.ticket.printable_text
    assert fiscal_document_repository.get_fiscal_document_by_sale("sale-1").printable_text == first


def test_reprint_of_rejected_document(fake_db, make_context) -> None:
    """Verify a rejected document can still be reprinted."""

    _seed(fake_db)
    with pytest.raises(AuthorityRejected):
        settlement_service.settle(SettlementRequest("sale-1", "cash"), context=make_context(0.0))

    assert "Numero: 001-001-000000001" in settlement_service.reprint("sale-1")


def test_reprint_without_document(fake_db) -> None:
    """Verify reprinting a sale that was never invoiced raises NotFound."""

    _seed(fake_db)

    with pytest.raises(NotFound):
        settlement_service.reprint("sale-1")
