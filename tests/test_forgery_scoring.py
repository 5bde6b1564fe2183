"""
CertLedger - Forgery Scoring Engine Tests

Tests cover:
- Combination formula and the strictly-greater-than threshold
- Input validation for OCR confidence
- Each detector's deterministic signals
- Tunable weights
"""

import io
import math

import pytest
from PIL import Image

from certledger.core.errors import ExtractionFailed, InvalidInputError
from certledger.services.credentials import analyze_document
from certledger.services.extraction import PlainTextExtractor
from certledger.services.forgery_scoring import (
    NO_INDICATORS,
    Detector,
    DigitalManipulationDetector,
    DocumentSignals,
    FormattingConsistencyDetector,
    ForgeryScorer,
    OCRConfidenceDetector,
    ScoringConfig,
    TextPatternDetector,
    score,
)


class FixedDetector(Detector):
    """Detector with a preset raw score."""

    name = "fixed"
    reference_weight = 100.0
    finding = "fixed signal"

    def __init__(self, raw: float):
        super().__init__()
        self.raw = raw

    def evaluate(self, signals):
        return self.raw


def signals(text: str, confidence: float = 95.0) -> DocumentSignals:
    return DocumentSignals(text=text, ocr_confidence=confidence)


# =============================================================================
# Verdict contract
# =============================================================================

def test_empty_text_full_confidence_is_clean():
    analysis = score("", 100)
    assert analysis.is_forged is False
    assert analysis.confidence_score == 100
    assert analysis.details == [NO_INDICATORS]


def test_clean_text_is_clean():
    analysis = score("This certifies that the holder completed the course.", 95)
    assert analysis.is_forged is False
    assert analysis.forgery_likelihood == 0
    assert analysis.details == [NO_INDICATORS]


def test_likelihood_exactly_at_threshold_is_not_forged():
    # ocr 30 + long gap 5 + four whitespace run lengths 5 = 40 / 100
    analysis = score("a     b c\n\nd\t\t\te", 0)
    assert analysis.forgery_likelihood == pytest.approx(0.4)
    assert analysis.is_forged is False
    assert analysis.confidence_score == pytest.approx(60)
    assert len(analysis.details) == 2


@pytest.mark.parametrize("raw,forged", [(40, False), (41, True)])
def test_threshold_is_strictly_greater(raw, forged):
    scorer = ForgeryScorer([FixedDetector(raw)], threshold=0.4)
    analysis = scorer.score("anything", 90)
    assert analysis.forgery_likelihood == pytest.approx(raw / 100)
    assert analysis.is_forged is forged


def test_confidence_is_complement_of_likelihood():
    analysis = ForgeryScorer([FixedDetector(25)]).score("x", 90)
    assert analysis.confidence_score == pytest.approx(75)


@pytest.mark.parametrize("confidence", [150, -1, math.nan, True, "90"])
def test_invalid_confidence_is_rejected(confidence):
    with pytest.raises(InvalidInputError):
        score("text", confidence)


def test_non_string_text_is_rejected():
    with pytest.raises(InvalidInputError):
        score(None, 90)


def test_analysis_serializes():
    data = score("", 100).to_dict()
    assert set(data) == {"is_forged", "confidence_score", "forgery_likelihood", "details", "sub_scores"}
    assert set(data["sub_scores"]) == {
        "ocr_confidence",
        "formatting_consistency",
        "text_patterns",
        "digital_manipulation",
    }


# =============================================================================
# Detectors
# =============================================================================

def test_ocr_detector_only_below_seventy():
    detector = OCRConfidenceDetector()
    assert detector.evaluate(signals("", 70)) == 0
    assert detector.evaluate(signals("", 60)) == pytest.approx(12)
    assert "60.0%" in detector.describe(12, signals("", 60))


def test_formatting_detector_flags_irregular_case():
    detector = FormattingConsistencyDetector()
    assert detector.evaluate(signals("Diploma awarded to Jane")) == 0
    assert detector.evaluate(signals("CertIfiCate awarDed")) == 10


def test_formatting_detector_flags_lookalike_glyphs():
    detector = FormattingConsistencyDetector()
    assert detector.evaluate(signals("Grade: \uff21")) == 5


def test_formatting_detector_flags_indentation_variety():
    text = "a\n b\n  c\n   d\n"
    assert FormattingConsistencyDetector().evaluate(signals(text)) == 5


def test_text_pattern_detector_signals():
    detector = TextPatternDetector()
    assert detector.evaluate(signals("plain text")) == 0
    assert detector.evaluate(signals("CERTIFICATION")) == 3
    assert detector.evaluate(signals("Section \u00a7 4")) == 2


def test_manipulation_detector_text_artifacts():
    detector = DigitalManipulationDetector()
    assert detector.evaluate(signals("John\u200bDoe")) == 10
    assert detector.evaluate(signals("broken \ufffd char")) == 5
    # Cyrillic o (U+043E) inside a Latin word
    assert detector.evaluate(signals("J\u043ehn")) == 10
    assert detector.evaluate(signals("J\u043ehn\u200b \ufffd")) == 25


def test_manipulation_detector_uses_image_signal():
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), (255, 255, 255)).save(buffer, "PNG")
    detector = DigitalManipulationDetector()
    value = detector.evaluate(DocumentSignals(text="", ocr_confidence=95, image=buffer.getvalue()))
    assert 0 <= value <= 25


def test_low_raw_scores_are_not_reported():
    analysis = score("UNIVERSITY diploma", 95)
    assert analysis.forgery_likelihood == pytest.approx(0.03)
    assert analysis.details == [NO_INDICATORS]


# =============================================================================
# Configuration
# =============================================================================

def test_zero_weight_removes_detector_influence():
    config = ScoringConfig(weight_ocr_confidence=0)
    scorer = ForgeryScorer.from_config(config)
    analysis = scorer.score("", 0)
    assert analysis.forgery_likelihood == 0
    assert analysis.details == [NO_INDICATORS]


def test_weights_rescale_sub_scores():
    scorer = ForgeryScorer.from_config(ScoringConfig(weight_ocr_confidence=60))
    analysis = scorer.score("", 0)
    assert analysis.sub_scores["ocr_confidence"] == pytest.approx(60)
    assert analysis.forgery_likelihood == pytest.approx(60 / 130)


def test_invalid_threshold_rejected():
    with pytest.raises(InvalidInputError):
        ForgeryScorer(threshold=1.5)


def test_all_zero_weights_rejected():
    with pytest.raises(InvalidInputError):
        ForgeryScorer.from_config(ScoringConfig(0, 0, 0, 0))


def test_settings_drive_default_scorer(monkeypatch):
    from certledger.core.config import get_settings
    from certledger.services.forgery_scoring import get_forgery_scorer

    monkeypatch.setenv("FORGERY_THRESHOLD", "0.2")
    get_settings.cache_clear()
    get_forgery_scorer.cache_clear()

    assert get_forgery_scorer().threshold == 0.2


# =============================================================================
# Document analysis (extract, then score)
# =============================================================================

class _FailingExtractor(PlainTextExtractor):
    async def extract(self, content, mime_type=None):
        raise ExtractionFailed("plain", "engine crashed")


@pytest.mark.anyio
async def test_analyze_document_scores_extracted_text(diploma_bytes):
    result = await analyze_document(diploma_bytes, "text/plain", extractor=PlainTextExtractor())

    assert result.extraction.confidence == 100.0
    assert result.analysis.is_forged is False
    assert result.analysis.details == [NO_INDICATORS]


@pytest.mark.anyio
async def test_analyze_document_propagates_extraction_failure(diploma_bytes):
    with pytest.raises(ExtractionFailed):
        await analyze_document(diploma_bytes, extractor=_FailingExtractor())
