"""
Sequence & access-key issuer.

Sequential numbers are legally required to be unique and gapless per
(document type, establishment, emission point). The increment itself is one
atomic RPC round trip in the database; within this process, callers for the
same key are additionally serialized by a per-key lock held only for the
duration of that round trip.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Dict, Tuple

from domain.access_key import (
    build_access_key,
    format_sequential,
    is_valid_access_key,
    mod11_check_digit,
    new_numeric_code,
)
from domain.errors import SequenceExhausted
from repositories import sequence_repository

logger = logging.getLogger(__name__)

SequenceKey = Tuple[str, str, str]

_SEQUENCE_EXHAUSTED = "SEQUENCE_EXHAUSTED"

_locks: Dict[SequenceKey, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(key: SequenceKey) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


def next_sequential(
    doc_type: str, establishment: str, emission_point: str, *, ceiling: int = 999_999_999
) -> str:
    """
    Issue the next sequential number for a key, zero-padded to 9 digits.

    The first call for a key creates its sequence (starting at 0, capped at
    `ceiling`), so the first value issued is 000000001.

    Raises:
        SequenceExhausted: the sequence reached its ceiling
        RuntimeError: store failure
    """

    key: SequenceKey = (doc_type, establishment, emission_point)

    with _lock_for(key):
        result = sequence_repository.increment_sequence(doc_type, establishment, emission_point, ceiling)

    if not result.success:
        if result.error_code == _SEQUENCE_EXHAUSTED:
            logger.error(
                "Invoice sequence exhausted",
                extra={"doc_type": doc_type, "establishment": establishment, "emission_point": emission_point},
            )
            raise SequenceExhausted(key)
        raise RuntimeError(
            f"Failed to issue sequential: {result.error_code} {result.error_message or ''}".strip()
        )

    if result.value is None:
        raise RuntimeError("Sequence RPC reported success without a value")
    if result.value > ceiling:
        raise SequenceExhausted(key)

    sequential = format_sequential(result.value)
    logger.info(
        "Issued sequential",
        extra={
            "doc_type": doc_type,
            "establishment": establishment,
            "emission_point": emission_point,
            "sequential": sequential,
        },
    )
    return sequential


def issue_access_key(
    *,
    issuer_tax_id: str,
    environment: str,
    doc_type: str,
    establishment: str,
    emission_point: str,
    sequential: str,
    emission_type: str,
    emission_date: date,
) -> str:
    """Build an access key with a fresh random numeric code."""

    return build_access_key(
        issuer_tax_id=issuer_tax_id,
        environment=environment,
        doc_type=doc_type,
        establishment=establishment,
        emission_point=emission_point,
        sequential=sequential,
        numeric_code=new_numeric_code(),
        emission_type=emission_type,
        emission_date=emission_date,
    )


__all__ = [
    "build_access_key",
    "is_valid_access_key",
    "issue_access_key",
    "mod11_check_digit",
    "new_numeric_code",
    "next_sequential",
]
