"""
Domain: Fiscal access keys and sequential numbers (pure).

Access key layout (49 ASCII digits):

    DDMMYYYY | DT(2) | RUC(13) | ENV(1) | EST(3) | PTO(3) | SEQ(9) | RND(8) | EMI(1) | CHK(1)

The first 48 digits are the payload; CHK is the modulo-11 check digit:
scan the payload right-to-left, weight the digits 2,3,4,5,6,7,2,3,... (back to
2 after 7), sum the products, r = sum mod 11; CHK = 0 if r == 0, 1 if r == 1,
else 11 - r.
"""

from __future__ import annotations

import secrets
from datetime import date

SEQUENTIAL_WIDTH = 9
ACCESS_KEY_LENGTH = 49
PAYLOAD_LENGTH = 48

# (field name, width) in access-key order, after the 8-digit date.
_FIELD_WIDTHS = (
    ("doc_type", 2),
    ("issuer_tax_id", 13),
    ("environment", 1),
    ("establishment", 3),
    ("emission_point", 3),
    ("sequential", SEQUENTIAL_WIDTH),
    ("numeric_code", 8),
    ("emission_type", 1),
)


def format_sequential(value: int) -> str:
    """Zero-pad a sequence value to 9 digits."""

    if value < 1:
        raise ValueError("sequential values start at 1")
    text = str(value)
    if len(text) > SEQUENTIAL_WIDTH:
        raise ValueError(f"sequential {value} does not fit in {SEQUENTIAL_WIDTH} digits")
    return text.zfill(SEQUENTIAL_WIDTH)


def mod11_check_digit(payload: str) -> int:
    if not payload.isdigit():
        raise ValueError("payload must contain only digits")

    total = 0
    weight = 2
    for digit in reversed(payload):
        total += int(digit) * weight
        weight = 2 if weight == 7 else weight + 1

    remainder = total % 11
    if remainder in (0, 1):
        return remainder
    return 11 - remainder


def _fit(name: str, value: str, width: int) -> str:
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"{name} must contain only digits, got {value!r}")
    # Left-pad short values, keep the rightmost digits of long ones.
    return text.zfill(width)[-width:]


def build_access_key(
    *,
    issuer_tax_id: str,
    environment: str,
    doc_type: str,
    establishment: str,
    emission_point: str,
    sequential: str,
    numeric_code: str,
    emission_type: str,
    emission_date: date,
) -> str:
    values = {
        "doc_type": doc_type,
        "issuer_tax_id": issuer_tax_id,
        "environment": environment,
        "establishment": establishment,
        "emission_point": emission_point,
        "sequential": sequential,
        "numeric_code": numeric_code,
        "emission_type": emission_type,
    }
    payload = emission_date.strftime("%d%m%Y") + "".join(
        _fit(name, values[name], width) for name, width in _FIELD_WIDTHS
    )
    key = f"{payload}{mod11_check_digit(payload)}"
    return key[:ACCESS_KEY_LENGTH]


def is_valid_access_key(key: str) -> bool:
    if len(key) != ACCESS_KEY_LENGTH or not key.isdigit():
        return False
    return mod11_check_digit(key[:PAYLOAD_LENGTH]) == int(key[-1])


def new_numeric_code() -> str:
    """8 random digits for the access key's security code."""

    return f"{secrets.randbelow(100_000_000):08d}"
