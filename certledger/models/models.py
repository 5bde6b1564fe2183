"""
CertLedger Database Models
SQLAlchemy ORM models for the ledger.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from certledger.core.database import Base


# =============================================================================
# Ledger Entry
# =============================================================================

class LedgerEntry(Base):
    """
    One registered credential.

    The fingerprint primary key is the uniqueness guarantee: two writers
    racing on the same document both attempt the INSERT and exactly one
    commits. Rows are never updated or deleted.
    """
    __tablename__ = "ledger_entries"

    # SHA-256 hex of the document bytes
    fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)

    receipt_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)

    # Caller-supplied payload, stored verbatim
    metadata_json: Mapped[dict] = mapped_column(JSON)

    # Caller identity passed explicitly at registration
    registered_by: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)

    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
