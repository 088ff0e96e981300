"""
Document signing.

The tax authority only accepts signed documents. Real signing (XAdES-BES with
the issuer's certificate) is not implemented; `PassThroughSigner` marks the
document as carrying a simulated signature so the rest of the pipeline can run
end to end. A real signer only needs to implement `DocumentSigner.sign`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

SIMULATED_SIGNATURE_MARKER = "<!-- FIRMA DIGITAL SIMULADA -->"


class DocumentSigner(ABC):
    @abstractmethod
    def sign(self, document_text: str) -> str:
        """Return the signed form of `document_text`."""


class PassThroughSigner(DocumentSigner):
    def sign(self, document_text: str) -> str:
        if document_text.startswith(SIMULATED_SIGNATURE_MARKER):
            return document_text
        return f"{SIMULATED_SIGNATURE_MARKER}\n{document_text}"


__all__ = ["DocumentSigner", "PassThroughSigner", "SIMULATED_SIGNATURE_MARKER"]
