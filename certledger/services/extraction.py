"""
Text Extraction Adapter

OCR is consumed as a capability, not reimplemented. Every engine returns
extracted text plus a recognition confidence in [0, 100]:

- TesseractExtractor: local OCR (pytesseract + Pillow)
- AzureReadExtractor: Azure Document Intelligence prebuilt-read over httpx
- PlainTextExtractor: text documents decode directly at confidence 100

Empty text and confidence 0 are valid low-confidence output. Anything the
engine cannot process raises ExtractionFailed; a call that exceeds its
bound raises ExtractionTimeout.
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
import pytesseract
from PIL import Image, UnidentifiedImageError

from certledger.core.config import Settings, get_settings
from certledger.core.errors import ExtractionFailed, ExtractionTimeout
from certledger.core.metrics import incr_metric
from certledger.core.timeout import bounded

logger = logging.getLogger(__name__)

TEXT_MIME_TYPES = ("text/plain", "text/csv", "text/markdown")


@dataclass
class ExtractionResult:
    """Text and recognition confidence from one extraction call."""
    text: str
    confidence: float  # 0-100
    engine: str

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "confidence": round(self.confidence, 2),
            "engine": self.engine,
        }


# =============================================================================
# ENGINES
# =============================================================================

class TextExtractor(ABC):
    """Abstract base class for text extraction engines."""

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Return engine name: tesseract, azure, plain"""

    @abstractmethod
    async def extract(self, content: bytes, mime_type: Optional[str] = None) -> ExtractionResult:
        """Extract text from a document."""


class PlainTextExtractor(TextExtractor):
    """Text documents need no OCR: decode and report full confidence."""

    engine_name = "plain"

    async def extract(self, content: bytes, mime_type: Optional[str] = None) -> ExtractionResult:
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            text = content.decode("latin-1", errors="replace")
        return ExtractionResult(text=text, confidence=100.0, engine=self.engine_name)


class TesseractExtractor(TextExtractor):
    """Local OCR via the tesseract binary."""

    engine_name = "tesseract"

    def __init__(
        self,
        lang: str = "eng",
        tesseract_cmd: Optional[str] = None,
        timeout: float = 0,
    ):
        self.lang = lang
        self.timeout = timeout
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    async def extract(self, content: bytes, mime_type: Optional[str] = None) -> ExtractionResult:
        if mime_type in TEXT_MIME_TYPES:
            return await PlainTextExtractor().extract(content, mime_type)
        # tesseract is blocking; keep it off the event loop
        return await asyncio.to_thread(self._recognize, content)

    def _recognize(self, content: bytes) -> ExtractionResult:
        try:
            with Image.open(io.BytesIO(content)) as img:
                img.load()
                image = img.convert("RGB")
        except UnidentifiedImageError as e:
            raise ExtractionFailed(self.engine_name, "Unsupported or unrecognized image format") from e
        except OSError as e:
            raise ExtractionFailed(self.engine_name, f"Corrupt image: {e}") from e

        try:
            text = pytesseract.image_to_string(image, lang=self.lang, timeout=self.timeout)
            data = pytesseract.image_to_data(
                image,
                lang=self.lang,
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise ExtractionFailed(self.engine_name, "tesseract is not installed or not on PATH") from e
        except (pytesseract.TesseractError, RuntimeError) as e:
            raise ExtractionFailed(self.engine_name, str(e)) from e

        return ExtractionResult(
            text=text,
            confidence=self.mean_word_confidence(data),
            engine=self.engine_name,
        )

    @staticmethod
    def mean_word_confidence(data: dict) -> float:
        """Mean confidence of recognized words; tesseract marks non-words with -1."""
        confidences = []
        for word, conf in zip(data.get("text", []), data.get("conf", [])):
            try:
                value = float(conf)
            except (TypeError, ValueError):
                continue
            if value >= 0 and str(word).strip():
                confidences.append(value)
        if not confidences:
            return 0.0
        return min(100.0, sum(confidences) / len(confidences))


class AzureReadExtractor(TextExtractor):
    """
    Azure Document Intelligence client (prebuilt-read model).

    Submits the document, then polls Operation-Location until the analysis
    succeeds or fails. Word confidences arrive on a 0-1 scale.
    """

    engine_name = "azure"
    API_VERSION = "2024-02-29-preview"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        poll_interval: float = 1.0,
        max_polls: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not endpoint or not api_key:
            raise ExtractionFailed(self.engine_name, "Azure endpoint and key must be configured")
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._transport = transport

    @property
    def analyze_url(self) -> str:
        return (
            f"{self.endpoint}/documentintelligence/documentModels/prebuilt-read:analyze"
            f"?api-version={self.API_VERSION}"
        )

    async def extract(self, content: bytes, mime_type: Optional[str] = None) -> ExtractionResult:
        if mime_type in TEXT_MIME_TYPES:
            return await PlainTextExtractor().extract(content, mime_type)

        headers = {
            "Ocp-Apim-Subscription-Key": self.api_key,
            "Content-Type": mime_type or "application/octet-stream",
        }
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=60.0) as client:
                response = await client.post(self.analyze_url, headers=headers, content=content)
                if response.status_code == 202:
                    operation_url = response.headers.get("Operation-Location")
                    if not operation_url:
                        raise ExtractionFailed(self.engine_name, "Missing Operation-Location header")
                    result = await self._poll_operation(client, operation_url)
                elif response.status_code == 200:
                    body = response.json()
                    result = body.get("analyzeResult", body)
                else:
                    raise ExtractionFailed(
                        self.engine_name,
                        f"Analyze request rejected ({response.status_code}): {response.text[:200]}",
                    )
        except httpx.HTTPError as e:
            raise ExtractionFailed(self.engine_name, f"Request failed: {e}") from e
        except ValueError as e:
            raise ExtractionFailed(self.engine_name, f"Malformed response: {e}") from e

        return ExtractionResult(
            text=self._get_text(result),
            confidence=self._get_confidence(result),
            engine=self.engine_name,
        )

    async def _poll_operation(self, client: httpx.AsyncClient, operation_url: str) -> dict:
        """Poll async operation until complete."""
        headers = {"Ocp-Apim-Subscription-Key": self.api_key}

        for _ in range(self.max_polls):
            response = await client.get(operation_url, headers=headers)
            result = response.json()

            status = result.get("status", "")
            if status == "succeeded":
                return result.get("analyzeResult", {})
            if status == "failed":
                error = result.get("error", {})
                message = error.get("message", "Analysis failed") if isinstance(error, dict) else str(error)
                raise ExtractionFailed(self.engine_name, message)

            await asyncio.sleep(self.poll_interval)

        raise ExtractionFailed(self.engine_name, "Analysis did not complete")

    @staticmethod
    def _get_text(result: dict) -> str:
        if "content" in result:
            return result["content"] or ""
        lines = []
        for page in result.get("pages", []):
            for line in page.get("lines", []):
                lines.append(line.get("content", ""))
        return "\n".join(lines)

    @staticmethod
    def _get_confidence(result: dict) -> float:
        confidences = [
            float(word["confidence"])
            for page in result.get("pages", [])
            for word in page.get("words", [])
            if word.get("confidence") is not None
        ]
        if not confidences:
            return 0.0
        # Azure reports 0-1
        return max(0.0, min(100.0, 100.0 * sum(confidences) / len(confidences)))


# =============================================================================
# FACTORY + OPERATION
# =============================================================================

def get_text_extractor(settings: Optional[Settings] = None) -> TextExtractor:
    """Build the configured extraction engine."""
    settings = settings or get_settings()
    if settings.ocr_engine == "azure":
        return AzureReadExtractor(settings.azure_ai_endpoint, settings.azure_ai_key)
    if settings.ocr_engine == "plain":
        return PlainTextExtractor()
    return TesseractExtractor(
        lang=settings.tesseract_lang,
        tesseract_cmd=settings.tesseract_cmd,
        timeout=settings.extraction_timeout_seconds,
    )


async def extract_text(
    content: bytes,
    mime_type: Optional[str] = None,
    timeout: Optional[float] = None,
    extractor: Optional[TextExtractor] = None,
) -> ExtractionResult:
    """
    Extract text and recognition confidence from a document.

    Raises:
        ExtractionFailed: the engine could not process the input
        ExtractionTimeout: the call exceeded `timeout` (default from settings)
    """
    settings = get_settings()
    extractor = extractor or get_text_extractor(settings)
    timeout = settings.extraction_timeout_seconds if timeout is None else timeout

    try:
        result = await bounded(extractor.extract(content, mime_type), timeout, ExtractionTimeout)
    except ExtractionFailed as e:
        incr_metric("extraction_failures_total")
        logger.warning("Extraction failed: %s", e.message, extra={"engine": e.engine})
        raise

    logger.debug(
        "Extracted %d characters (confidence %.1f) with %s",
        len(result.text),
        result.confidence,
        result.engine,
    )
    return result
