"""
Credentials Router
Issue and verify digital credentials against the ledger.

Issue:  upload + metadata -> fingerprint -> ledger record + QR payload
Verify: upload (fingerprint + forgery analysis) or scanned code -> ledger lookup

The forgery verdict is advisory and reported next to ledger presence,
never folded into it.
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile, status
from pydantic import BaseModel, Field

from certledger.core.config import Settings, get_settings
from certledger.core.errors import InvalidInputError
from certledger.core.metrics import incr_metric
from certledger.services.credentials import CredentialService
from certledger.services.fingerprint import fingerprint, short_fingerprint
from certledger.services.forgery_scoring import ForgeryScorer, get_forgery_scorer
from certledger.services.ledger import DocumentRecord, LedgerRegistry, get_ledger_registry

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================

class RecordResponse(BaseModel):
    """A ledger record."""
    fingerprint: str
    metadata: dict[str, Any]
    registered_at: str
    receipt_id: str
    registered_by: Optional[str] = None


class FingerprintResponse(BaseModel):
    fingerprint: str
    display_hash: str
    size_bytes: int
    filename: Optional[str] = None


class IssueResponse(BaseModel):
    """Response after issuing a credential."""
    record: RecordResponse
    qr_payload: str
    display_hash: str


class ExtractionSummary(BaseModel):
    confidence: float
    engine: str
    characters: int


class ForgeryAnalysisResponse(BaseModel):
    is_forged: bool
    confidence_score: float
    details: list[str]
    forgery_likelihood: float
    sub_scores: dict[str, float]


class DocumentAnalysisResponse(BaseModel):
    extraction: ExtractionSummary
    analysis: ForgeryAnalysisResponse


class VerificationResponse(BaseModel):
    """Ledger presence plus, for uploads, the advisory forgery analysis."""
    fingerprint: str
    display_hash: str
    found: bool
    record: Optional[RecordResponse] = None
    forgery_analysis: Optional[DocumentAnalysisResponse] = None


class ScoreRequest(BaseModel):
    text: str = Field(..., description="Extracted document text")
    ocr_confidence: float = Field(..., description="Recognition confidence, 0-100")


class IssuerRecordsResponse(BaseModel):
    issuer: str
    total: int
    records: list[RecordResponse]


class StatsResponse(BaseModel):
    total_records: int
    total_issuers: int
    by_document_type: dict[str, int]
    backend: str


# =============================================================================
# Helpers
# =============================================================================

def get_credential_service(
    registry: LedgerRegistry = Depends(get_ledger_registry),
    scorer: ForgeryScorer = Depends(get_forgery_scorer),
) -> CredentialService:
    return CredentialService(registry, scorer=scorer)


async def read_upload(file: UploadFile, settings: Settings) -> bytes:
    """Read an upload, enforcing the size limit."""
    content = await file.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        logger.warning("Rejected oversized upload %s", file.filename)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum: {settings.max_upload_size_mb}MB",
        )
    return content


def build_metadata(
    fields: dict[str, Optional[str]],
    extra: Optional[str],
    issuer: Optional[str] = None,
) -> dict[str, Any]:
    """Credential metadata: the JSON `extra` object overlaid with the named form fields."""
    metadata: dict[str, Any] = {}
    if extra:
        try:
            parsed = json.loads(extra)
        except json.JSONDecodeError as e:
            raise InvalidInputError(f"metadata is not valid JSON: {e.msg}", field="metadata") from e
        if not isinstance(parsed, dict):
            raise InvalidInputError("metadata must be a JSON object", field="metadata")
        metadata.update(parsed)

    metadata.update({k: v for k, v in fields.items() if v})
    if issuer:
        metadata.setdefault("issuer", issuer)
    return metadata


def _record(record: DocumentRecord) -> RecordResponse:
    return RecordResponse(**record.to_dict())


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/fingerprint", response_model=FingerprintResponse)
async def fingerprint_document(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
):
    """Compute the SHA-256 fingerprint of an uploaded document."""
    content = await read_upload(file, settings)
    digest = fingerprint(content)
    incr_metric("fingerprints_total")
    return FingerprintResponse(
        fingerprint=digest,
        display_hash=short_fingerprint(digest),
        size_bytes=len(content),
        filename=file.filename,
    )


@router.post("/issue", response_model=IssueResponse, status_code=status.HTTP_201_CREATED)
async def issue_credential(
    file: UploadFile = File(...),
    document_type: Optional[str] = Form(None),
    recipient_name: Optional[str] = Form(None),
    recipient_email: Optional[str] = Form(None),
    issue_date: Optional[str] = Form(None, description="ISO date"),
    expiry_date: Optional[str] = Form(None, description="ISO date"),
    notes: Optional[str] = Form(None, description="Additional information"),
    metadata: Optional[str] = Form(None, description="Extra metadata as a JSON object"),
    issuer: Optional[str] = Form(None, description="Issuing account id"),
    x_issuer_id: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    service: CredentialService = Depends(get_credential_service),
):
    """
    Register a credential on the ledger.

    Idempotent: re-issuing identical bytes returns the original record
    and receipt id; the new metadata is ignored.
    """
    content = await read_upload(file, settings)
    issuer_id = issuer or x_issuer_id
    fields = {
        "document_type": document_type,
        "recipient_name": recipient_name,
        "recipient_email": recipient_email,
        "issue_date": issue_date,
        "expiry_date": expiry_date,
        "notes": notes,
    }
    payload = build_metadata(fields, metadata, issuer=issuer_id)
    issued = await service.issue(content, payload, issuer=issuer_id)
    return IssueResponse(
        record=_record(issued.record),
        qr_payload=issued.qr_payload,
        display_hash=short_fingerprint(issued.record.fingerprint),
    )


@router.post("/verify", response_model=VerificationResponse)
async def verify_credential(
    file: Optional[UploadFile] = File(None),
    code: Optional[str] = Form(None, description="Scanned QR payload or raw hash"),
    analyze: bool = Form(True),
    settings: Settings = Depends(get_settings),
    service: CredentialService = Depends(get_credential_service),
):
    """
    Verify a credential by upload or by scanned code.

    Uploads are fingerprinted and, unless analyze=false, run through the
    forgery analysis in parallel with the ledger lookup.
    """
    if file is not None:
        content = await read_upload(file, settings)
        result = await service.verify_document(content, file.content_type, analyze=analyze)
    elif code:
        result = await service.verify_code(code)
    else:
        raise InvalidInputError("Provide a file or a verification code", field="file")

    return VerificationResponse(**result.to_dict())


@router.post("/analyze", response_model=DocumentAnalysisResponse)
async def analyze_document(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
    service: CredentialService = Depends(get_credential_service),
):
    """Extract text from an upload and score it for forgery indicators."""
    content = await read_upload(file, settings)
    result = await service.analyze(content, file.content_type)
    return DocumentAnalysisResponse(**result.to_dict())


@router.post("/score", response_model=ForgeryAnalysisResponse)
async def score_text(
    request: ScoreRequest,
    scorer: ForgeryScorer = Depends(get_forgery_scorer),
):
    """Score already-extracted text."""
    analysis = scorer.score(request.text, request.ocr_confidence)
    return ForgeryAnalysisResponse(**analysis.to_dict())


@router.get("/stats", response_model=StatsResponse)
async def ledger_stats(registry: LedgerRegistry = Depends(get_ledger_registry)):
    """Registry statistics."""
    stats = await registry.get_statistics()
    return StatsResponse(**stats.to_dict(), backend=registry.store.backend_name)


@router.get("/receipts/{receipt_id}", response_model=RecordResponse)
async def get_receipt(
    receipt_id: str,
    registry: LedgerRegistry = Depends(get_ledger_registry),
):
    """Look up a record by its registration receipt id."""
    record = await registry.get_receipt(receipt_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return _record(record)


@router.get("/issuers/{issuer}", response_model=IssuerRecordsResponse)
async def list_issuer_records(
    issuer: str,
    registry: LedgerRegistry = Depends(get_ledger_registry),
):
    """Records registered by an issuer, oldest first."""
    records = await registry.list_by_issuer(issuer)
    return IssuerRecordsResponse(
        issuer=issuer,
        total=len(records),
        records=[_record(r) for r in records],
    )


@router.get("/{fingerprint_hex}", response_model=VerificationResponse)
async def verify_fingerprint(
    fingerprint_hex: str,
    service: CredentialService = Depends(get_credential_service),
):
    """Verify a fingerprint directly. Unknown fingerprints return found=false."""
    result = await service.verify_code(fingerprint_hex)
    return VerificationResponse(**result.to_dict())
