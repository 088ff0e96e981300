"""
Tax authority gateway.

Submits signed fiscal documents to the tax authority and queries the status
of documents whose outcome is not final. Every attempt is written to the
authority log twice: once before the call (`pending`) and once with its result.

The transport is a strategy (`AuthorityTransport`). The shipped
`SimulatedAuthorityTransport` stands in for the authority's web services:
it authorizes with a configurable probability after a configurable delay.

Each call is bounded by a timeout. A timeout or a connection failure is an
`indeterminate` outcome: the document may or may not have reached the
authority, so it must be re-queried and never re-issued.
"""

from __future__ import annotations

import json
import logging
import random
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional
from uuid import uuid4

from domain.fiscal import AuthorityLogEntry, AuthorityLogOutcome, AuthorityRequestType, FiscalDocument
from domain.time import utc_now
from repositories import authority_log_repository

logger = logging.getLogger(__name__)


class AuthorityOutcome(str, Enum):
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True, slots=True)
class AuthorityResponse:
    outcome: AuthorityOutcome
    message: str
    authorization_code: Optional[str] = None
    authorized_at: Optional[datetime] = None
    raw_response: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.outcome != AuthorityOutcome.INDETERMINATE


class AuthorityConnectionError(Exception):
    """The transport could not reach the authority (or lost the connection mid-call)."""


class AuthorityTransport(ABC):
    """How documents reach the tax authority."""

    @abstractmethod
    def send(self, access_key: str, signed_text: str) -> AuthorityResponse:
        """Submit a signed document for authorization."""

    @abstractmethod
    def query(self, access_key: str) -> AuthorityResponse:
        """Ask for the current status of a previously submitted document."""


# Authority status strings, as returned by its web services.
AUTHORIZED_STATE = "AUTORIZADO"
REJECTED_STATE = "NO AUTORIZADO"
IN_PROCESS_STATE = "EN PROCESO"


class SimulatedAuthorityTransport(AuthorityTransport):
    """
    In-process stand-in for the authority.

    Args:
        approval_rate: Probability (0..1) that a submission is authorized
        delay_seconds: Simulated network latency per call
        rng: Random source (inject a seeded one for deterministic tests)
        sleep: Sleep function (inject a no-op in tests)
    """

    def __init__(
        self,
        *,
        approval_rate: float = 0.9,
        delay_seconds: float = 2.0,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not 0 <= approval_rate <= 1:
            raise ValueError("approval_rate must be between 0 and 1")
        self._approval_rate = approval_rate
        self._delay_seconds = delay_seconds
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._decided: Dict[str, AuthorityResponse] = {}

    def _authorization_number(self) -> str:
        return f"{int(time.time() * 1000)}{self._rng.randrange(1000):03d}"

    def _authorized(self) -> AuthorityResponse:
        code = self._authorization_number()
        authorized_at = utc_now()
        return AuthorityResponse(
            outcome=AuthorityOutcome.AUTHORIZED,
            message=AUTHORIZED_STATE,
            authorization_code=code,
            authorized_at=authorized_at,
            raw_response=json.dumps(
                {"estado": AUTHORIZED_STATE, "autorizacion": code, "fechaAutorizacion": authorized_at.isoformat()}
            ),
        )

    def _rejected(self) -> AuthorityResponse:
        message = "ERROR: Documento no autorizado - Error en validacion"
        return AuthorityResponse(
            outcome=AuthorityOutcome.REJECTED,
            message=message,
            raw_response=json.dumps({"estado": REJECTED_STATE, "mensaje": message}),
        )

    def send(self, access_key: str, signed_text: str) -> AuthorityResponse:
        if self._delay_seconds:
            self._sleep(self._delay_seconds)

        if self._rng.random() < self._approval_rate:
            response = self._authorized()
        else:
            response = self._rejected()
        self._decided[access_key] = response
        return response

    def query(self, access_key: str) -> AuthorityResponse:
        if self._delay_seconds:
            self._sleep(self._delay_seconds / 2)

        decided = self._decided.get(access_key)
        if decided is not None:
            return decided

        state = self._rng.choice([AUTHORIZED_STATE, REJECTED_STATE, IN_PROCESS_STATE])
        if state == AUTHORIZED_STATE:
            response = self._authorized()
        elif state == REJECTED_STATE:
            response = self._rejected()
        else:
            return AuthorityResponse(
                outcome=AuthorityOutcome.INDETERMINATE,
                message=IN_PROCESS_STATE,
                raw_response=json.dumps({"estado": IN_PROCESS_STATE}),
            )
        self._decided[access_key] = response
        return response


_LOG_OUTCOMES = {
    AuthorityOutcome.AUTHORIZED: AuthorityLogOutcome.AUTHORIZED,
    AuthorityOutcome.REJECTED: AuthorityLogOutcome.REJECTED,
    AuthorityOutcome.INDETERMINATE: AuthorityLogOutcome.PENDING,
}


class AuthorityGateway:
    """Bounded, audited access to the tax authority."""

    def __init__(
        self,
        transport: AuthorityTransport,
        *,
        timeout_seconds: float = 30.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._transport = transport
        self._timeout_seconds = timeout_seconds
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="authority")

    def submit(self, document: FiscalDocument) -> AuthorityResponse:
        """
        Submit a document's signed text for authorization.

        Never raises for timeouts or connection failures; those come back as an
        `indeterminate` response. Unexpected transport errors are logged as
        `error` and re-raised.
        """

        signed_text = document.signed_text or document.document_text
        return self._attempt(
            document,
            AuthorityRequestType.SUBMIT,
            f"Submitting document {document.number}",
            lambda: self._transport.send(document.access_key, signed_text),
        )

    def query_status(self, document: FiscalDocument) -> AuthorityResponse:
        """Query the authority for a document whose outcome is not final."""

        return self._attempt(
            document,
            AuthorityRequestType.QUERY,
            f"Querying status of document {document.number}",
            lambda: self._transport.query(document.access_key),
        )

    def _log(
        self,
        document: FiscalDocument,
        request_type: AuthorityRequestType,
        outcome: AuthorityLogOutcome,
        message: str,
        raw_response: Optional[str] = None,
    ) -> None:
        authority_log_repository.append_log_entry(
            AuthorityLogEntry(
                log_id=str(uuid4()),
                sale_id=document.sale_id,
                access_key=document.access_key,
                request_type=request_type,
                outcome=outcome,
                message=message,
                created_at=utc_now(),
                raw_response=raw_response,
            )
        )

    def _attempt(
        self,
        document: FiscalDocument,
        request_type: AuthorityRequestType,
        description: str,
        call: Callable[[], AuthorityResponse],
    ) -> AuthorityResponse:
        log_extra = {
            "sale_id": document.sale_id,
            "access_key": document.access_key,
            "sequential": document.sequential,
            "request_type": request_type.value,
        }
        self._log(document, request_type, AuthorityLogOutcome.PENDING, description)

        future = self._executor.submit(call)
        try:
            response = future.result(timeout=self._timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            message = f"No response from the tax authority within {self._timeout_seconds:g}s"
            self._log(document, request_type, AuthorityLogOutcome.ERROR, message)
            logger.warning(message, extra=log_extra)
            return AuthorityResponse(outcome=AuthorityOutcome.INDETERMINATE, message=message)
        except (AuthorityConnectionError, ConnectionError) as e:
            message = f"Connection to the tax authority failed: {e}"
            self._log(document, request_type, AuthorityLogOutcome.ERROR, message)
            logger.warning(message, extra=log_extra)
            return AuthorityResponse(outcome=AuthorityOutcome.INDETERMINATE, message=message)
        except Exception as e:
            self._log(document, request_type, AuthorityLogOutcome.ERROR, f"Internal error: {e}")
            logger.exception("Tax authority call failed", extra=log_extra)
            raise

        self._log(
            document,
            request_type,
            _LOG_OUTCOMES[response.outcome],
            response.message,
            raw_response=response.raw_response,
        )
        if response.outcome == AuthorityOutcome.AUTHORIZED:
            logger.info(f"Document {document.number} authorized", extra=log_extra)
        else:
            logger.warning(
                f"Document {document.number} not authorized: {response.message}",
                extra={**log_extra, "outcome": response.outcome.value},
            )
        return response


__all__ = [
    "AuthorityConnectionError",
    "AuthorityGateway",
    "AuthorityOutcome",
    "AuthorityResponse",
    "AuthorityTransport",
    "SimulatedAuthorityTransport",
]
