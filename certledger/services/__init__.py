# Core services - fingerprinting, extraction, scoring, ledger

from certledger.services.fingerprint import (
    fingerprint,
    fingerprint_stream,
    fingerprint_file,
    is_fingerprint,
    normalize_fingerprint,
    short_fingerprint,
)

from certledger.services.forgery_scoring import (
    ForgeryAnalysis,
    ForgeryScorer,
    ScoringConfig,
    score,
)

from certledger.services.ledger import (
    DocumentRecord,
    LedgerRegistry,
    VerificationResult,
    get_ledger_registry,
)

__all__ = [
    "fingerprint",
    "fingerprint_stream",
    "fingerprint_file",
    "is_fingerprint",
    "normalize_fingerprint",
    "short_fingerprint",
    "ForgeryAnalysis",
    "ForgeryScorer",
    "ScoringConfig",
    "score",
    "DocumentRecord",
    "LedgerRegistry",
    "VerificationResult",
    "get_ledger_registry",
]
