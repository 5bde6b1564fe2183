"""
Credential Service

Issue and verify flows built on the four core operations:

    issue:   fingerprint -> register -> QR payload
    verify:  (fingerprint || forgery analysis) -> ledger lookup

Ledger presence and the forgery verdict are reported side by side and never
merged: a document can be on the ledger and still look suspicious, or the
other way round.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from certledger.core.errors import InvalidInputError
from certledger.core.metrics import incr_metric
from certledger.services.extraction import ExtractionResult, TextExtractor, extract_text
from certledger.services.fingerprint import fingerprint, short_fingerprint
from certledger.services.forgery_scoring import ForgeryAnalysis, ForgeryScorer, get_forgery_scorer
from certledger.services.image_forensics import is_raster_image
from certledger.services.ledger import DocumentRecord, LedgerRegistry, VerificationResult

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class IssuedCredential:
    record: DocumentRecord
    qr_payload: str

    def to_dict(self) -> dict:
        return {
            "record": self.record.to_dict(),
            "qr_payload": self.qr_payload,
            "display_hash": short_fingerprint(self.record.fingerprint),
        }


@dataclass
class DocumentAnalysis:
    extraction: ExtractionResult
    analysis: ForgeryAnalysis

    def to_dict(self) -> dict:
        return {
            "extraction": {
                "confidence": round(self.extraction.confidence, 2),
                "engine": self.extraction.engine,
                "characters": len(self.extraction.text),
            },
            "analysis": self.analysis.to_dict(),
        }


@dataclass
class CredentialVerification:
    fingerprint: str
    verification: VerificationResult
    document_analysis: Optional[DocumentAnalysis] = None

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "display_hash": short_fingerprint(self.fingerprint),
            **self.verification.to_dict(),
            "forgery_analysis": self.document_analysis.to_dict() if self.document_analysis else None,
        }


# =============================================================================
# QR PAYLOAD
# =============================================================================

def build_qr_payload(fingerprint_hex: str, metadata: dict[str, Any]) -> str:
    """
    JSON value for the credential's QR code.

    Carries the full fingerprint: verification is exact-match, so a
    truncated hash could never be looked up.
    """
    return json.dumps({
        "documentType": metadata.get("document_type"),
        "recipientName": metadata.get("recipient_name"),
        "issueDate": metadata.get("issue_date"),
        "hash": fingerprint_hex,
    }, separators=(",", ":"))


def parse_verification_code(code: str) -> str:
    """
    Fingerprint from a scanned code: QR JSON with a "hash" field, or the
    raw hash itself.
    """
    code = (code or "").strip()
    if not code:
        raise InvalidInputError("Verification code must not be empty", field="code")
    try:
        data = json.loads(code)
    except json.JSONDecodeError:
        return code
    if isinstance(data, dict):
        value = data.get("hash")
        if not value or not isinstance(value, str):
            raise InvalidInputError("QR payload has no hash", field="code")
        return value
    # JSON scalars (e.g. an all-digit code) are treated as raw hashes
    return code


# =============================================================================
# FORGERY ANALYSIS
# =============================================================================

async def analyze_document(
    content: bytes,
    mime_type: Optional[str] = None,
    extractor: Optional[TextExtractor] = None,
    scorer: Optional[ForgeryScorer] = None,
) -> DocumentAnalysis:
    """
    Extract text, then score it. Raster uploads also feed the ELA signal.

    Extraction errors propagate typed; there is no fallback analysis.
    """
    scorer = scorer or get_forgery_scorer()
    extraction = await extract_text(content, mime_type, extractor=extractor)
    image = content if is_raster_image(content) else None
    analysis = await asyncio.to_thread(scorer.score, extraction.text, extraction.confidence, image)
    return DocumentAnalysis(extraction=extraction, analysis=analysis)


# =============================================================================
# SERVICE
# =============================================================================

class CredentialService:
    """Issue and verify credentials against one registry."""

    def __init__(
        self,
        registry: LedgerRegistry,
        scorer: Optional[ForgeryScorer] = None,
        extractor: Optional[TextExtractor] = None,
    ):
        self.registry = registry
        self.scorer = scorer or get_forgery_scorer()
        self.extractor = extractor

    async def issue(
        self,
        content: bytes,
        metadata: dict[str, Any],
        issuer: Optional[str] = None,
    ) -> IssuedCredential:
        """Fingerprint the document and register it (idempotent)."""
        digest = fingerprint(content)
        incr_metric("fingerprints_total")
        record = await self.registry.register(digest, metadata, registered_by=issuer)
        return IssuedCredential(record=record, qr_payload=build_qr_payload(digest, record.metadata))

    async def analyze(self, content: bytes, mime_type: Optional[str] = None) -> DocumentAnalysis:
        return await analyze_document(content, mime_type, self.extractor, self.scorer)

    async def verify_document(
        self,
        content: bytes,
        mime_type: Optional[str] = None,
        analyze: bool = True,
    ) -> CredentialVerification:
        """
        Re-derive the fingerprint and look it up. With analyze=True the
        forgery analysis runs alongside the lookup; its failure fails the
        call rather than being reported as "no indicators".
        """
        digest = fingerprint(content)
        incr_metric("fingerprints_total")

        if analyze:
            document_analysis, verification = await asyncio.gather(
                self.analyze(content, mime_type),
                self.registry.verify(digest),
            )
        else:
            document_analysis, verification = None, await self.registry.verify(digest)

        logger.info(
            "Verified document: on_ledger=%s forged=%s",
            verification.found,
            document_analysis.analysis.is_forged if document_analysis else None,
            extra={"fingerprint": digest},
        )
        return CredentialVerification(
            fingerprint=digest,
            verification=verification,
            document_analysis=document_analysis,
        )

    async def verify_code(self, code: str) -> CredentialVerification:
        """Verify a scanned QR payload or a typed-in hash."""
        digest = parse_verification_code(code)
        verification = await self.registry.verify(digest)
        return CredentialVerification(
            fingerprint=digest.strip().lower(),
            verification=verification,
        )
