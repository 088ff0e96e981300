"""
Settlement service.

Takes a served sale to closed:

    validate input and stock -> allocate (FIFO) -> build and render the document
    -> issue sequential + access key -> persist document (pending)
    -> sign & submit -> commit

A sequential is only issued once the document is known to build, so a bad
line or a rendering failure never leaves a gap in the numbering.

Failure semantics:
- Anything that fails before allocation leaves no trace (the sale stays served).
- A failure during allocation, or before the document is persisted, gives
  back every allocation made in this run (reversal movements are appended).
- Once the document is persisted, stock stays consumed. The run ends with the
  sale closed, or with the document `rejected` (retry recomposes the same
  document) or `pending` (re-run queries the authority, never re-issues).

Re-running settle on a sale that already has a document never consumes stock
or a sequential number again.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Union

from domain.errors import (
    AuthorityIndeterminate,
    AuthorityRejected,
    InsufficientStock,
    InvalidSaleState,
    NotFound,
    Shortfall,
    ValidationError,
)
from domain.access_key import ACCESS_KEY_LENGTH, SEQUENTIAL_WIDTH
from domain.fiscal import (
    INVOICE_DOC_TYPE,
    AuthorityStatus,
    BuyerIdentity,
    CompanyProfile,
    DocumentLine,
    FiscalDocument,
)
from domain.inventory import BatchAllocation
from domain.recipe import StockRequirement
from domain.sale import SETTLEMENT_PAYMENT_METHODS, PaymentMethod, Sale
from domain.ticket import Ticket
from domain.time import to_local, utc_now
from repositories import company_repository, fiscal_document_repository, sale_repository
from services import batch_ledger, document_composer, recipe_resolver, sequence_issuer
from services.authority_gateway import (
    AuthorityGateway,
    AuthorityOutcome,
    AuthorityResponse,
    SimulatedAuthorityTransport,
)
from services.settings import TEST_COMPANY_PROFILE, SettlementSettings
from services.signing import DocumentSigner, PassThroughSigner
from services.tax_engine import TaxEngine

logger = logging.getLogger(__name__)

# Placeholder numbering for the draft rendered before a sequential is issued.
_DRAFT_SEQUENTIAL = "0" * SEQUENTIAL_WIDTH
_DRAFT_ACCESS_KEY = "0" * ACCESS_KEY_LENGTH


@dataclass(frozen=True, slots=True)
class SettlementRequest:
    """Cashier input for closing a sale. `buyer=None` means final consumer."""

    sale_id: str
    payment_method: Union[PaymentMethod, str]
    settled_by: Optional[str] = None
    buyer: Optional[BuyerIdentity] = None


@dataclass(frozen=True, slots=True)
class SettlementResult:
    sale: Sale
    document: FiscalDocument
    ticket: Ticket


@dataclass(frozen=True, slots=True)
class SettlementContext:
    """Collaborators of a settlement run (swapped in tests and scripts)."""

    settings: SettlementSettings
    gateway: AuthorityGateway
    signer: DocumentSigner = field(default_factory=PassThroughSigner)
    clock: Callable[[], datetime] = utc_now

    @classmethod
    def from_settings(cls, settings: Optional[SettlementSettings] = None) -> "SettlementContext":
        settings = settings or SettlementSettings.from_env()
        transport = SimulatedAuthorityTransport(
            approval_rate=settings.authority_approval_rate,
            delay_seconds=settings.authority_simulated_delay,
        )
        return cls(
            settings=settings,
            gateway=AuthorityGateway(transport, timeout_seconds=settings.authority_timeout_seconds),
        )


_default_context: Optional[SettlementContext] = None
_default_context_lock = threading.Lock()


def get_default_context() -> SettlementContext:
    """Context built from the environment on first use."""

    global _default_context
    if _default_context is None:
        with _default_context_lock:
            if _default_context is None:
                _default_context = SettlementContext.from_settings()
    return _default_context


# ============================================================================
# Input validation and loading
# ============================================================================


def _parse_payment_method(value: Union[PaymentMethod, str]) -> PaymentMethod:
    try:
        method = PaymentMethod(value)
    except ValueError:
        raise ValidationError("payment_method", f"unknown payment method '{value}'") from None

    if method not in SETTLEMENT_PAYMENT_METHODS:
        allowed = ", ".join(m.value for m in SETTLEMENT_PAYMENT_METHODS)
        raise ValidationError("payment_method", f"must be one of: {allowed}")
    return method


def _validate_buyer(buyer: Optional[BuyerIdentity]) -> Optional[BuyerIdentity]:
    if buyer is None or buyer.is_final_consumer:
        return buyer
    return BuyerIdentity.supplied(
        tax_id=buyer.tax_id,
        legal_name=buyer.legal_name,
        address=buyer.address,
        phone=buyer.phone,
        email=buyer.email,
    )


def _validate_lines(sale: Sale) -> None:
    for index, line in enumerate(sale.lines):
        if line.discount > line.unit_price * line.quantity:
            raise ValidationError(
                f"lines[{index}].discount",
                f"discount {line.discount} on '{line.dish_name}' exceeds the line subtotal",
            )


def _load_sale(sale_id: str) -> Sale:
    sale = sale_repository.get_sale_by_id(sale_id)
    if sale is None:
        raise NotFound("sale", sale_id)
    return sale


def _load_company() -> CompanyProfile:
    company = company_repository.get_company_profile()
    if company is None:
        logger.warning(
            "No company profile configured; using the test issuer profile",
            extra={"issuer_tax_id": TEST_COMPANY_PROFILE.tax_id},
        )
        return TEST_COMPANY_PROFILE
    return company


def _require_settleable(sale: Sale) -> None:
    if sale.is_closed:
        raise InvalidSaleState(sale.sale_id, sale.status.value, f"Sale {sale.sale_id} is already closed")
    if not sale.is_settleable:
        raise InvalidSaleState(sale.sale_id, sale.status.value)


# ============================================================================
# Stock
# ============================================================================


def check_stock(sale_id: str) -> List[Shortfall]:
    """Every stock shortfall the sale would hit if settled now. Read-only."""

    sale = _load_sale(sale_id)
    return batch_ledger.find_shortfalls(recipe_resolver.requirements_for(sale.lines))


def _release_quietly(allocations: Sequence[BatchAllocation], sale_id: str) -> None:
    """Compensate allocations while another error is propagating."""

    if not allocations:
        return
    try:
        batch_ledger.release(allocations, reference=sale_id, reason=f"Settlement aborted: sale {sale_id}")
    except Exception:
        logger.exception(
            "Failed to release allocations of an aborted settlement",
            extra={"sale_id": sale_id, "allocation_count": len(allocations)},
        )


def _allocate_all(sale: Sale, requirements: Sequence[StockRequirement]) -> List[BatchAllocation]:
    """Allocate every requirement or none of them."""

    allocations: List[BatchAllocation] = []
    try:
        for requirement in requirements:
            allocations.extend(
                batch_ledger.allocate(
                    requirement.inventory_item_id,
                    requirement.quantity,
                    reference=sale.sale_id,
                    reason=requirement.describe_reason(),
                    batch_override=requirement.batch_id,
                    item_name=requirement.item_name,
                )
            )
    except Exception:
        _release_quietly(allocations, sale.sale_id)
        raise
    return allocations


# ============================================================================
# Document
# ============================================================================


def _build_lines(sale: Sale, ctx: SettlementContext) -> List[DocumentLine]:
    settings = ctx.settings
    return document_composer.build_document_lines(
        sale.lines,
        TaxEngine(default_vat_rate=settings.default_vat_rate),
        default_tax_code=settings.default_tax_code,
    )


def _compose_signed(
    *,
    sale: Sale,
    company: CompanyProfile,
    lines: Sequence[DocumentLine],
    sequential: str,
    access_key: str,
    buyer: Optional[BuyerIdentity],
    payment_method: PaymentMethod,
    issued_at: datetime,
    ctx: SettlementContext,
    document_id: Optional[str] = None,
) -> FiscalDocument:
    settings = ctx.settings
    document = document_composer.compose(
        sale=sale,
        company=company,
        lines=lines,
        sequential=sequential,
        access_key=access_key,
        buyer=buyer,
        payment_method=payment_method,
        issued_at=issued_at,
        document_id=document_id,
        fiscal_timezone=settings.fiscal_timezone,
    )
    return replace(
        document,
        signed_text=ctx.signer.sign(document.document_text),
        printable_text=document_composer.render_printable(
            document, sale, company, fiscal_timezone=settings.fiscal_timezone
        ),
    )


def _create_document(
    sale: Sale,
    company: CompanyProfile,
    payment_method: PaymentMethod,
    buyer: Optional[BuyerIdentity],
    ctx: SettlementContext,
) -> FiscalDocument:
    lines = _build_lines(sale, ctx)
    issued_at = ctx.clock()

    # Render a draft first: a document that cannot be built must fail before it takes a number.
    _compose_signed(
        sale=sale,
        company=company,
        lines=lines,
        sequential=_DRAFT_SEQUENTIAL,
        access_key=_DRAFT_ACCESS_KEY,
        buyer=buyer,
        payment_method=payment_method,
        issued_at=issued_at,
        ctx=ctx,
    )

    sequential = sequence_issuer.next_sequential(
        INVOICE_DOC_TYPE,
        company.establishment_code,
        company.emission_point_code,
        ceiling=ctx.settings.sequence_ceiling,
    )
    access_key = sequence_issuer.issue_access_key(
        issuer_tax_id=company.tax_id,
        environment=company.environment.code,
        doc_type=INVOICE_DOC_TYPE,
        establishment=company.establishment_code,
        emission_point=company.emission_point_code,
        sequential=sequential,
        emission_type=company.emission_type.code,
        emission_date=to_local(issued_at, ctx.settings.fiscal_timezone).date(),
    )
    document = _compose_signed(
        sale=sale,
        company=company,
        lines=lines,
        sequential=sequential,
        access_key=access_key,
        buyer=buyer,
        payment_method=payment_method,
        issued_at=issued_at,
        ctx=ctx,
    )
    fiscal_document_repository.insert_fiscal_document(document)
    logger.info(
        f"Fiscal document {document.number} created",
        extra={"sale_id": sale.sale_id, "sequential": sequential, "access_key": access_key},
    )
    return document


def _recompose_rejected(
    document: FiscalDocument,
    sale: Sale,
    company: CompanyProfile,
    payment_method: PaymentMethod,
    buyer: Optional[BuyerIdentity],
    ctx: SettlementContext,
) -> FiscalDocument:
    """Rebuild a rejected document in place: same id, sequential, access key and issue time."""

    recomposed = _compose_signed(
        sale=sale,
        company=company,
        lines=_build_lines(sale, ctx),
        sequential=document.sequential,
        access_key=document.access_key,
        buyer=buyer or document.buyer,
        payment_method=payment_method,
        issued_at=document.issued_at,
        ctx=ctx,
        document_id=document.document_id,
    )
    fiscal_document_repository.update_fiscal_document(recomposed)
    logger.info(
        f"Fiscal document {recomposed.number} recomposed for resubmission",
        extra={"sale_id": sale.sale_id, "sequential": recomposed.sequential},
    )
    return recomposed


# ============================================================================
# Authority outcome and commit
# ============================================================================


def _close_sale(
    sale: Sale,
    document: FiscalDocument,
    company: CompanyProfile,
    settled_by: Optional[str],
    ctx: SettlementContext,
) -> SettlementResult:
    closed = sale.closed(
        payment_method=document.payment_method,
        closed_by=settled_by,
        closed_at=ctx.clock(),
        ticket_number=document.sequential,
        fiscal_document_id=document.document_id,
    )
    try:
        sale_repository.mark_sale_closed(closed)
    except ValueError as e:
        raise InvalidSaleState(sale.sale_id, sale.status.value, str(e)) from e

    printable = document.printable_text or document_composer.render_printable(
        document, sale, company, fiscal_timezone=ctx.settings.fiscal_timezone
    )
    logger.info(
        f"Sale {sale.sale_id} closed with ticket {document.sequential}",
        extra={"sale_id": sale.sale_id, "sequential": document.sequential},
    )
    return SettlementResult(
        sale=closed,
        document=document,
        ticket=document_composer.build_ticket(document, closed, printable),
    )


def _apply_authorization(
    document: FiscalDocument,
    response: AuthorityResponse,
    sale: Sale,
    company: CompanyProfile,
    ctx: SettlementContext,
) -> FiscalDocument:
    authorized = document.authorized(
        authorization_code=response.authorization_code or "",
        authorized_at=response.authorized_at or ctx.clock(),
        message=response.message,
    )
    authorized = replace(
        authorized,
        printable_text=document_composer.render_printable(
            authorized, sale, company, fiscal_timezone=ctx.settings.fiscal_timezone
        ),
    )
    fiscal_document_repository.update_fiscal_document(authorized)
    return authorized


def _apply_rejection(document: FiscalDocument, response: AuthorityResponse) -> FiscalDocument:
    rejected = document.rejected(message=response.message)
    fiscal_document_repository.update_fiscal_document(rejected)
    return rejected


def _conclude(
    document: FiscalDocument,
    response: AuthorityResponse,
    sale: Sale,
    company: CompanyProfile,
    settled_by: Optional[str],
    ctx: SettlementContext,
) -> SettlementResult:
    if response.outcome == AuthorityOutcome.AUTHORIZED:
        authorized = _apply_authorization(document, response, sale, company, ctx)
        return _close_sale(sale, authorized, company, settled_by, ctx)

    if response.outcome == AuthorityOutcome.REJECTED:
        raise AuthorityRejected(_apply_rejection(document, response), response.message)

    raise AuthorityIndeterminate(document, response.message)


# ============================================================================
# Use cases
# ============================================================================


def _resume(
    document: FiscalDocument,
    sale: Sale,
    company: CompanyProfile,
    payment_method: PaymentMethod,
    settled_by: Optional[str],
    buyer: Optional[BuyerIdentity],
    ctx: SettlementContext,
) -> SettlementResult:
    """Continue a settlement whose stock was already consumed."""

    if document.status == AuthorityStatus.AUTHORIZED:
        logger.info(
            "Document already authorized; closing sale",
            extra={"sale_id": sale.sale_id, "sequential": document.sequential},
        )
        return _close_sale(sale, document, company, settled_by, ctx)

    if document.status == AuthorityStatus.PENDING:
        response = ctx.gateway.query_status(document)
        return _conclude(document, response, sale, company, settled_by, ctx)

    recomposed = _recompose_rejected(document, sale, company, payment_method, buyer, ctx)
    response = ctx.gateway.submit(recomposed)
    return _conclude(recomposed, response, sale, company, settled_by, ctx)


def settle(request: SettlementRequest, *, context: Optional[SettlementContext] = None) -> SettlementResult:
    """
    Settle a served sale.

    Raises:
        ValidationError: bad payment method, buyer data or line discount (nothing changed)
        NotFound: unknown sale
        InvalidSaleState: sale is not served (or was closed concurrently)
        InsufficientStock: one or more items short (nothing changed)
        SequenceExhausted: no sequential left (allocations given back)
        AuthorityRejected: document rejected; stock stays consumed, sale stays served
        AuthorityIndeterminate: outcome unknown; document stays pending
    """

    ctx = context or get_default_context()

    payment_method = _parse_payment_method(request.payment_method)
    buyer = _validate_buyer(request.buyer)

    sale = _load_sale(request.sale_id)
    _require_settleable(sale)
    _validate_lines(sale)
    company = _load_company()

    log_extra = {"sale_id": sale.sale_id, "payment_method": payment_method.value}

    existing = fiscal_document_repository.get_fiscal_document_by_sale(sale.sale_id)
    if existing is not None:
        logger.info(
            f"Resuming settlement with existing {existing.status.value} document",
            extra={**log_extra, "sequential": existing.sequential},
        )
        return _resume(existing, sale, company, payment_method, request.settled_by, buyer, ctx)

    logger.info("Settling sale", extra=log_extra)

    requirements = recipe_resolver.requirements_for(sale.lines)
    shortfalls = batch_ledger.find_shortfalls(requirements)
    if shortfalls:
        logger.warning(
            "Settlement blocked by stock shortfalls",
            extra={**log_extra, "shortfall_count": len(shortfalls)},
        )
        raise InsufficientStock(shortfalls)

    allocations = _allocate_all(sale, requirements)

    try:
        document = _create_document(sale, company, payment_method, buyer, ctx)
    except Exception:
        _release_quietly(allocations, sale.sale_id)
        raise

    response = ctx.gateway.submit(document)
    return _conclude(document, response, sale, company, request.settled_by, ctx)


def refresh_status(
    sale_id: str, *, settled_by: Optional[str] = None, context: Optional[SettlementContext] = None
) -> FiscalDocument:
    """
    Re-query the authority for a pending document and apply the outcome.

    An authorized outcome also closes the sale. Documents that are already
    final are returned unchanged (closing the sale first if a previous run
    stopped between authorization and commit).
    """

    ctx = context or get_default_context()

    document = fiscal_document_repository.get_fiscal_document_by_sale(sale_id)
    if document is None:
        raise NotFound("fiscal document", sale_id)

    sale = _load_sale(sale_id)
    company = _load_company()

    if document.status == AuthorityStatus.AUTHORIZED:
        if sale.is_settleable:
            _close_sale(sale, document, company, settled_by, ctx)
        return document

    if document.status == AuthorityStatus.REJECTED:
        return document

    response = ctx.gateway.query_status(document)
    if response.outcome == AuthorityOutcome.AUTHORIZED:
        authorized = _apply_authorization(document, response, sale, company, ctx)
        if sale.is_settleable:
            _close_sale(sale, authorized, company, settled_by, ctx)
        return authorized
    if response.outcome == AuthorityOutcome.REJECTED:
        return _apply_rejection(document, response)
    return document


def reprint(sale_id: str) -> str:
    """
    Stored printable representation of a sale's fiscal document.

    Returns exactly what was stored, so repeated reprints are byte-identical.

    Raises:
        NotFound: no document was ever generated for the sale
    """

    document = fiscal_document_repository.get_fiscal_document_by_sale(sale_id)
    if document is None or not document.printable_text:
        raise NotFound("fiscal document", sale_id)
    return document.printable_text


__all__ = [
    "SettlementContext",
    "SettlementRequest",
    "SettlementResult",
    "check_stock",
    "get_default_context",
    "refresh_status",
    "reprint",
    "settle",
]
