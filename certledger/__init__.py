"""
CertLedger - credential issuance and verification service.

Binds documents to SHA-256 fingerprints, records them in an idempotent
ledger, and scores document authenticity from OCR output.
"""

__version__ = "1.0.0"
