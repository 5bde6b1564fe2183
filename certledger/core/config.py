"""
CertLedger Configuration.

All settings load from environment variables (or a .env file) through
pydantic-settings. Use get_settings() everywhere; it is cached, so call
get_settings.cache_clear() after changing the environment in tests.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "CertLedger"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None
    enable_metrics: bool = True

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------
    ledger_backend: Literal["memory", "file", "database"] = "memory"
    ledger_file: str = "data/ledger/ledger.json"
    database_url: str = "sqlite+aiosqlite:///./certledger.db"
    registry_timeout_seconds: float = Field(10.0, gt=0)

    # -------------------------------------------------------------------------
    # Text extraction (OCR)
    # -------------------------------------------------------------------------
    ocr_engine: Literal["tesseract", "azure", "plain"] = "tesseract"
    extraction_timeout_seconds: float = Field(60.0, gt=0)
    azure_ai_endpoint: str = ""
    azure_ai_key: str = ""
    tesseract_cmd: Optional[str] = None
    tesseract_lang: str = "eng"

    # -------------------------------------------------------------------------
    # Forgery scoring (reference calibration 30/20/25/25, threshold 0.4)
    # -------------------------------------------------------------------------
    forgery_threshold: float = Field(0.4, ge=0, le=1)
    weight_ocr_confidence: float = Field(30.0, ge=0)
    weight_formatting: float = Field(20.0, ge=0)
    weight_text_patterns: float = Field(25.0, ge=0)
    weight_manipulation: float = Field(25.0, ge=0)

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------
    max_upload_size_mb: int = 20
    request_timeout_seconds: float = 120.0

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
