"""
CertLedger - Text Extraction Adapter Tests

Azure is exercised through httpx.MockTransport; pytesseract is patched.
"""

import asyncio
import io
from unittest.mock import patch

import httpx
import pytest
import pytesseract
from PIL import Image

from certledger.core.errors import ExtractionFailed, ExtractionTimeout
from certledger.core.metrics import get_metrics
from certledger.services.extraction import (
    AzureReadExtractor,
    ExtractionResult,
    PlainTextExtractor,
    TesseractExtractor,
    TextExtractor,
    extract_text,
    get_text_extractor,
)


ENDPOINT = "https://certledger-test.cognitiveservices.azure.com"

ANALYZE_RESULT = {
    "content": "Bachelor of Science\nJohn Doe",
    "pages": [
        {
            "words": [
                {"content": "Bachelor", "confidence": 0.98},
                {"content": "of", "confidence": 0.96},
                {"content": "Science", "confidence": 0.94},
            ]
        }
    ],
}


def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), (255, 255, 255)).save(buffer, "PNG")
    return buffer.getvalue()


class SlowExtractor(TextExtractor):
    engine_name = "slow"

    async def extract(self, content, mime_type=None):
        await asyncio.sleep(1)
        return ExtractionResult(text="", confidence=0, engine=self.engine_name)


# =============================================================================
# Plain text
# =============================================================================

@pytest.mark.anyio
async def test_plain_text_full_confidence(diploma_bytes):
    result = await PlainTextExtractor().extract(diploma_bytes)
    assert "John Doe" in result.text
    assert result.confidence == 100
    assert result.engine == "plain"


@pytest.mark.anyio
async def test_plain_text_falls_back_to_latin1():
    result = await PlainTextExtractor().extract(b"Universit\xe9")
    assert result.text == "Universit\u00e9"


# =============================================================================
# Tesseract
# =============================================================================

@pytest.mark.anyio
async def test_tesseract_uses_mean_word_confidence():
    data = {"text": ["", "John", "Doe", " "], "conf": ["-1", "90", "80", "-1"]}
    with patch.object(pytesseract, "image_to_string", return_value="John Doe\n"), \
            patch.object(pytesseract, "image_to_data", return_value=data):
        result = await TesseractExtractor().extract(png_bytes(), "image/png")

    assert result.text == "John Doe\n"
    assert result.confidence == pytest.approx(85)
    assert result.engine == "tesseract"


@pytest.mark.anyio
async def test_tesseract_passes_text_documents_through(diploma_bytes):
    with patch.object(pytesseract, "image_to_string") as ocr:
        result = await TesseractExtractor().extract(diploma_bytes, "text/plain")
    ocr.assert_not_called()
    assert result.engine == "plain"


@pytest.mark.anyio
async def test_tesseract_rejects_non_image():
    with pytest.raises(ExtractionFailed) as exc_info:
        await TesseractExtractor().extract(b"%PDF-1.7 not an image", "application/pdf")
    assert exc_info.value.engine == "tesseract"
    assert exc_info.value.status_code == 422


@pytest.mark.anyio
async def test_tesseract_missing_binary():
    with patch.object(pytesseract, "image_to_string", side_effect=pytesseract.TesseractNotFoundError()):
        with pytest.raises(ExtractionFailed, match="not installed"):
            await TesseractExtractor().extract(png_bytes(), "image/png")


def test_mean_word_confidence_without_words():
    assert TesseractExtractor.mean_word_confidence({"text": [""], "conf": ["-1"]}) == 0


# =============================================================================
# Azure Document Intelligence
# =============================================================================

@pytest.mark.anyio
async def test_azure_polls_until_succeeded():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        assert request.headers["Ocp-Apim-Subscription-Key"] == "secret"
        if request.method == "POST":
            return httpx.Response(202, headers={"Operation-Location": f"{ENDPOINT}/operations/1"})
        if len(calls) == 2:
            return httpx.Response(200, json={"status": "running"})
        return httpx.Response(200, json={"status": "succeeded", "analyzeResult": ANALYZE_RESULT})

    extractor = AzureReadExtractor(
        ENDPOINT, "secret", poll_interval=0, transport=httpx.MockTransport(handler)
    )
    result = await extractor.extract(png_bytes(), "image/png")

    assert result.text == "Bachelor of Science\nJohn Doe"
    assert result.confidence == pytest.approx(96)
    assert result.engine == "azure"
    assert calls[0] == ("POST", "/documentintelligence/documentModels/prebuilt-read:analyze")
    assert len(calls) == 3


@pytest.mark.anyio
async def test_azure_failed_analysis():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, headers={"Operation-Location": f"{ENDPOINT}/operations/2"})
        return httpx.Response(200, json={"status": "failed", "error": {"message": "Corrupt file"}})

    extractor = AzureReadExtractor(
        ENDPOINT, "secret", poll_interval=0, transport=httpx.MockTransport(handler)
    )
    with pytest.raises(ExtractionFailed, match="Corrupt file"):
        await extractor.extract(png_bytes(), "image/png")


@pytest.mark.anyio
async def test_azure_rejected_request():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, text="Access denied"))
    extractor = AzureReadExtractor(ENDPOINT, "bad", transport=transport)
    with pytest.raises(ExtractionFailed, match="401"):
        await extractor.extract(png_bytes(), "image/png")


@pytest.mark.anyio
async def test_azure_connection_error():
    def handler(request):
        raise httpx.ConnectError("unreachable")

    extractor = AzureReadExtractor(ENDPOINT, "secret", transport=httpx.MockTransport(handler))
    with pytest.raises(ExtractionFailed, match="Request failed"):
        await extractor.extract(png_bytes(), "image/png")


def test_azure_requires_configuration():
    with pytest.raises(ExtractionFailed):
        AzureReadExtractor("", "")


# =============================================================================
# extract_text()
# =============================================================================

@pytest.mark.anyio
async def test_extract_text_uses_configured_engine(diploma_bytes):
    assert isinstance(get_text_extractor(), PlainTextExtractor)
    result = await extract_text(diploma_bytes, "text/plain")
    assert result.confidence == 100


@pytest.mark.anyio
async def test_extract_text_timeout():
    with pytest.raises(ExtractionTimeout) as exc_info:
        await extract_text(b"x", timeout=0.05, extractor=SlowExtractor())
    assert exc_info.value.status_code == 504
    assert get_metrics()["timeouts_total"] == 1


@pytest.mark.anyio
async def test_extract_text_counts_failures():
    with pytest.raises(ExtractionFailed):
        await extract_text(b"not an image", "application/pdf", extractor=TesseractExtractor())
    assert get_metrics()["extraction_failures_total"] == 1
