"""
Domain: Fiscal documents (electronic invoices) and their parties.

Contract excerpts implemented here:
- One FiscalDocument per settled Sale. It is created `pending`, becomes
  `authorized` or `rejected` after submission, and is immutable once authorized.
- When no buyer data is supplied the reserved "final consumer" identity is used.
- Supplied buyer data must carry a 10-digit (national id) or 13-digit (RUC) tax
  id and a legal name; anything else is rejected before any state mutation.
- Field widths are significant downstream and values are truncated to them,
  never rejected.

This module contains only pure domain entities: no I/O, no serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from .errors import ValidationError
from .sale import PaymentMethod
from .tax import to_cents
from .time import require_utc_timestamp

INVOICE_DOC_TYPE = "01"

FINAL_CONSUMER_TAX_ID = "9999999999999"
FINAL_CONSUMER_NAME = "CONSUMIDOR FINAL"

# Downstream field widths.
TAX_ID_WIDTH = 13
LEGAL_NAME_WIDTH = 300
ADDRESS_WIDTH = 200
DESCRIPTION_WIDTH = 200
PRODUCT_CODE_WIDTH = 25
PHONE_WIDTH = 20
EMAIL_WIDTH = 100

# Authority payment-method codes ("formaPago").
PAYMENT_CODES: Dict[PaymentMethod, str] = {
    PaymentMethod.CASH: "01",
    PaymentMethod.CHECK: "16",
    PaymentMethod.CARD: "19",
    PaymentMethod.TRANSFER: "20",
}
DEFAULT_PAYMENT_CODE = "01"


def payment_code_for(method: Optional[PaymentMethod]) -> str:
    if method is None:
        return DEFAULT_PAYMENT_CODE
    return PAYMENT_CODES.get(method, DEFAULT_PAYMENT_CODE)


def truncate(value: Optional[str], width: int) -> str:
    return (value or "").strip()[:width]


class Environment(str, Enum):
    TEST = "test"
    PRODUCTION = "production"

    @property
    def code(self) -> str:
        return "2" if self is Environment.PRODUCTION else "1"


class EmissionType(str, Enum):
    NORMAL = "normal"
    CONTINGENCY = "contingency"

    @property
    def code(self) -> str:
        return "2" if self is EmissionType.CONTINGENCY else "1"


class AuthorityStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class CompanyProfile:
    """The issuer: who emits the invoice and from which establishment/point."""

    tax_id: str
    legal_name: str
    head_office_address: str
    trade_name: Optional[str] = None
    establishment_address: Optional[str] = None
    establishment_code: str = "001"
    emission_point_code: str = "001"
    phone: Optional[str] = None
    email: Optional[str] = None
    environment: Environment = Environment.TEST
    emission_type: EmissionType = EmissionType.NORMAL
    keeps_accounting: bool = False

    @property
    def display_name(self) -> str:
        return self.trade_name or self.legal_name


@dataclass(frozen=True, slots=True)
class BuyerIdentity:
    tax_id: str
    legal_name: str
    address: str = "N/A"
    phone: str = ""
    email: str = ""

    @staticmethod
    def final_consumer() -> "BuyerIdentity":
        return BuyerIdentity(tax_id=FINAL_CONSUMER_TAX_ID, legal_name=FINAL_CONSUMER_NAME)

    @staticmethod
    def supplied(
        *,
        tax_id: Optional[str],
        legal_name: Optional[str],
        address: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> "BuyerIdentity":
        """
        Build and validate a buyer identity from cashier input.

        Raises ValidationError when the tax id is not 10 or 13 digits or the
        legal name is empty. Over-long values are truncated to their widths.
        """

        cleaned_tax_id = (tax_id or "").strip()
        if not cleaned_tax_id.isdigit():
            raise ValidationError("buyer.tax_id", "must contain only digits")
        if len(cleaned_tax_id) not in (10, 13):
            raise ValidationError(
                "buyer.tax_id", f"must be 10 or 13 digits, got {len(cleaned_tax_id)}"
            )
        if not (legal_name or "").strip():
            raise ValidationError("buyer.legal_name", "is required when buyer data is supplied")

        return BuyerIdentity(
            tax_id=cleaned_tax_id,
            legal_name=truncate(legal_name, LEGAL_NAME_WIDTH),
            address=truncate(address, ADDRESS_WIDTH) or "N/A",
            phone=truncate(phone, PHONE_WIDTH),
            email=truncate(email, EMAIL_WIDTH),
        )

    @property
    def is_final_consumer(self) -> bool:
        return self.tax_id == FINAL_CONSUMER_TAX_ID

    @property
    def identification_type(self) -> str:
        """Authority buyer-identification code: 04 RUC, 05 national id, 07 final consumer."""
        if self.is_final_consumer:
            return "07"
        if len(self.tax_id) == 13:
            return "04"
        return "05"


@dataclass(frozen=True, slots=True)
class DocumentLine:
    line_number: int
    main_code: str
    auxiliary_code: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal
    tax_code: str
    percentage_code: str
    rate: Decimal
    taxable_base: Decimal
    tax_amount: Decimal

    @property
    def total_before_tax(self) -> Decimal:
        return self.taxable_base


@dataclass(frozen=True, slots=True)
class TaxTotal:
    """Document-level total for one tax bracket (tax code + rate)."""

    tax_code: str
    percentage_code: str
    rate: Decimal
    taxable_base: Decimal
    tax_amount: Decimal


def summarize_tax_brackets(lines: List[DocumentLine]) -> List[TaxTotal]:
    """Group lines by (tax_code, percentage_code, rate), in first-seen order."""

    brackets: Dict[tuple, List[DocumentLine]] = {}
    for line in lines:
        brackets.setdefault((line.tax_code, line.percentage_code, line.rate), []).append(line)

    return [
        TaxTotal(
            tax_code=tax_code,
            percentage_code=percentage_code,
            rate=rate,
            taxable_base=to_cents(sum((l.taxable_base for l in grouped), Decimal("0"))),
            tax_amount=to_cents(sum((l.tax_amount for l in grouped), Decimal("0"))),
        )
        for (tax_code, percentage_code, rate), grouped in brackets.items()
    ]


@dataclass(frozen=True, slots=True)
class FiscalDocument:
    """
    An electronic invoice for one Sale.

    `document_text` is the canonical XML, `signed_text` what was submitted,
    `printable_text` the cashier representation served on reprint.
    """

    document_id: str
    sale_id: str
    doc_type: str
    establishment: str
    emission_point: str
    sequential: str
    access_key: str
    issued_at: datetime
    buyer: BuyerIdentity
    payment_method: PaymentMethod
    lines: List[DocumentLine] = field(default_factory=list)
    status: AuthorityStatus = AuthorityStatus.PENDING
    authorization_code: Optional[str] = None
    authorized_at: Optional[datetime] = None
    authority_message: Optional[str] = None
    document_text: str = ""
    signed_text: Optional[str] = None
    printable_text: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("issued_at", self.issued_at)
        if self.authorized_at is not None:
            require_utc_timestamp("authorized_at", self.authorized_at)

    @property
    def number(self) -> str:
        """Human document number EST-PTO-SEQUENTIAL."""
        return f"{self.establishment}-{self.emission_point}-{self.sequential}"

    @property
    def payment_code(self) -> str:
        return payment_code_for(self.payment_method)

    @property
    def tax_totals(self) -> List[TaxTotal]:
        return summarize_tax_brackets(self.lines)

    @property
    def subtotal_zero_rated(self) -> Decimal:
        return to_cents(sum((l.taxable_base for l in self.lines if l.rate == 0), Decimal("0")))

    @property
    def subtotal_taxed(self) -> Decimal:
        return to_cents(sum((l.taxable_base for l in self.lines if l.rate != 0), Decimal("0")))

    @property
    def subtotal(self) -> Decimal:
        return self.subtotal_zero_rated + self.subtotal_taxed

    @property
    def total_discount(self) -> Decimal:
        return to_cents(sum((l.discount for l in self.lines), Decimal("0")))

    @property
    def tax_total(self) -> Decimal:
        return to_cents(sum((l.tax_amount for l in self.lines), Decimal("0")))

    @property
    def grand_total(self) -> Decimal:
        return self.subtotal + self.tax_total

    @property
    def is_final(self) -> bool:
        return self.status in (AuthorityStatus.AUTHORIZED, AuthorityStatus.REJECTED)

    def authorized(self, *, authorization_code: str, authorized_at: datetime, message: str) -> "FiscalDocument":
        if self.status == AuthorityStatus.AUTHORIZED:
            raise ValueError("FiscalDocument is already authorized")
        return replace(
            self,
            status=AuthorityStatus.AUTHORIZED,
            authorization_code=authorization_code,
            authorized_at=authorized_at,
            authority_message=message,
        )

    def rejected(self, *, message: str) -> "FiscalDocument":
        if self.status == AuthorityStatus.AUTHORIZED:
            raise ValueError("An authorized FiscalDocument cannot be rejected")
        return replace(self, status=AuthorityStatus.REJECTED, authority_message=message)


class AuthorityRequestType(str, Enum):
    SUBMIT = "submit"
    QUERY = "query"


class AuthorityLogOutcome(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class AuthorityLogEntry:
    """Immutable audit record of one attempt against the tax authority."""

    log_id: str
    sale_id: str
    access_key: str
    request_type: AuthorityRequestType
    outcome: AuthorityLogOutcome
    message: str
    created_at: datetime
    raw_response: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
