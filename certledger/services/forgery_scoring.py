"""
Forgery Scoring Engine

Weighted multi-detector heuristic that turns OCR output into an
authenticity confidence and a binary forgery verdict.

Each detector produces a raw sub-score on its reference scale and owns a
fixed slot (max weight) in the denominator:

    likelihood = sum(sub_scores) / sum(max_weights)
    confidence = 100 * (1 - likelihood)
    is_forged  = likelihood > threshold          (strictly greater)

Reference calibration: weights 30/20/25/25, threshold 0.4. Both are
tunable through ScoringConfig (see Settings.weight_* / forgery_threshold).

The verdict is advisory evidence. It is never linked to, or compared
against, a ledger record.
"""

import logging
import math
import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Sequence

from certledger.core.config import Settings, get_settings
from certledger.core.errors import InvalidInputError
from certledger.core.metrics import incr_metric

logger = logging.getLogger(__name__)

NO_INDICATORS = "no indicators detected"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class DocumentSignals:
    """Everything a detector may look at for one analysis call."""
    text: str
    ocr_confidence: float
    image: Optional[bytes] = None


@dataclass
class ForgeryAnalysis:
    """Result of one scoring call. Never persisted."""
    is_forged: bool
    confidence_score: float  # 0-100, higher = more likely authentic
    details: list[str]
    forgery_likelihood: float = 0.0
    sub_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "is_forged": self.is_forged,
            "confidence_score": round(self.confidence_score, 2),
            "forgery_likelihood": round(self.forgery_likelihood, 4),
            "details": list(self.details),
            "sub_scores": {k: round(v, 2) for k, v in self.sub_scores.items()},
        }


# =============================================================================
# DETECTORS
# =============================================================================

class Detector(ABC):
    """
    One independent forgery signal.

    evaluate() returns a raw score on the reference scale
    (0..reference_weight). The scorer rescales it to max_weight, so changing
    a weight changes the detector's influence without touching its logic.
    """

    name: str = "detector"
    reference_weight: float = 0.0
    report_threshold: float = 0.0
    finding: str = ""

    def __init__(self, max_weight: Optional[float] = None):
        self.max_weight = self.reference_weight if max_weight is None else float(max_weight)
        if self.max_weight < 0:
            raise InvalidInputError(f"{self.name} weight must be non-negative", field=self.name)

    @abstractmethod
    def evaluate(self, signals: DocumentSignals) -> float:
        """Raw sub-score in [0, reference_weight]."""

    def describe(self, raw: float, signals: DocumentSignals) -> str:
        return self.finding

    def weighted(self, raw: float) -> float:
        if not self.reference_weight:
            return 0.0
        return raw * self.max_weight / self.reference_weight


class OCRConfidenceDetector(Detector):
    """Heavy tampering degrades OCR legibility."""

    name = "ocr_confidence"
    reference_weight = 30.0
    report_threshold = 0.0
    finding = "Low text recognition confidence"

    CONFIDENCE_FLOOR = 70.0

    def evaluate(self, signals: DocumentSignals) -> float:
        if signals.ocr_confidence < self.CONFIDENCE_FLOOR:
            return self.reference_weight * (1 - signals.ocr_confidence / 100)
        return 0.0

    def describe(self, raw: float, signals: DocumentSignals) -> str:
        return f"{self.finding} ({signals.ocr_confidence:.1f}%)"


class FormattingConsistencyDetector(Detector):
    """
    Font/formatting irregularities visible in the recognized text shape.

    - irregular mid-word casing ("CertIfiCate"), scaled by its share of words
    - more than 3 distinct line indentation widths
    - full-width or mathematical-alphanumeric lookalike glyphs
    """

    name = "formatting_consistency"
    reference_weight = 20.0
    report_threshold = 5.0
    finding = "Potential inconsistent fonts or formatting detected"

    _WORD_RE = re.compile(r"[^\W\d_]{3,}")
    _LOOKALIKE_RE = re.compile("[\uff01-\uff5e\U0001d400-\U0001d7ff]")

    def evaluate(self, signals: DocumentSignals) -> float:
        text = signals.text
        score = 0.0

        words = self._WORD_RE.findall(text)
        if words:
            irregular = sum(
                1 for w in words
                if not (w.islower() or w.isupper() or w.istitle())
            )
            score += min(10.0, 40.0 * irregular / len(words))

        widths = {
            len(line.expandtabs(4)) - len(line.expandtabs(4).lstrip(" "))
            for line in text.splitlines()
            if line.strip()
        }
        if len(widths) > 3:
            score += 5

        if self._LOOKALIKE_RE.search(text):
            score += 5

        return min(score, self.reference_weight)


class TextPatternDetector(Detector):
    """Regex-detectable layout anomalies."""

    name = "text_patterns"
    reference_weight = 25.0
    report_threshold = 5.0
    finding = "Suspicious text patterns detected"

    _LONG_GAP_RE = re.compile(r"\s{5,}")
    _SHOUTING_RE = re.compile(r"[A-Z]{10,}")
    _WHITESPACE_RE = re.compile(r"\s+")
    _SYMBOL_RE = re.compile(r"[§¶†‡]")

    def evaluate(self, signals: DocumentSignals) -> float:
        text = signals.text
        score = 0.0

        # Misaligned text
        if self._LONG_GAP_RE.search(text):
            score += 5

        # Unusual character runs
        if self._SHOUTING_RE.search(text):
            score += 3

        # Inconsistent spacing
        run_lengths = {len(run) for run in self._WHITESPACE_RE.findall(text)}
        if len(run_lengths) > 3:
            score += 5

        # Copy-paste symbols
        if self._SYMBOL_RE.search(text):
            score += 2

        return min(score, self.reference_weight)


class DigitalManipulationDetector(Detector):
    """
    Digital editing artifacts.

    Text-level: invisible/bidi control characters, U+FFFD replacement
    characters left by re-encoding, and words mixing Latin with Cyrillic or
    Greek letters (homoglyph substitution). Image-level (when the raster is
    available): Error Level Analysis. The larger signal wins.
    """

    name = "digital_manipulation"
    reference_weight = 25.0
    report_threshold = 5.0
    finding = "Potential digital manipulation detected"

    _INVISIBLE_RE = re.compile("[\u200b-\u200f\u202a-\u202e\u2060-\u2064\ufeff]")
    _WORD_RE = re.compile(r"[^\W\d_]+")

    def evaluate(self, signals: DocumentSignals) -> float:
        text_score = self._text_artifacts(signals.text)
        image_score = 0.0
        if signals.image is not None:
            # Local import keeps Pillow off the text-only path
            from certledger.services.image_forensics import error_level_suspicion

            image_score = self.reference_weight * error_level_suspicion(signals.image)
        return min(max(text_score, image_score), self.reference_weight)

    def _text_artifacts(self, text: str) -> float:
        score = 0.0
        if self._INVISIBLE_RE.search(text):
            score += 10
        if "\ufffd" in text:
            score += 5
        if any(self._mixes_scripts(w) for w in self._WORD_RE.findall(text)):
            score += 10
        return score

    @staticmethod
    def _mixes_scripts(word: str) -> bool:
        scripts = set()
        for ch in word:
            script = unicodedata.name(ch, "").split(" ", 1)[0]
            if script in ("LATIN", "CYRILLIC", "GREEK"):
                scripts.add(script)
        return "LATIN" in scripts and len(scripts) > 1


# =============================================================================
# SCORER
# =============================================================================

@dataclass(frozen=True)
class ScoringConfig:
    """Tunable weights and verdict threshold."""
    weight_ocr_confidence: float = 30.0
    weight_formatting: float = 20.0
    weight_text_patterns: float = 25.0
    weight_manipulation: float = 25.0
    threshold: float = 0.4

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringConfig":
        return cls(
            weight_ocr_confidence=settings.weight_ocr_confidence,
            weight_formatting=settings.weight_formatting,
            weight_text_patterns=settings.weight_text_patterns,
            weight_manipulation=settings.weight_manipulation,
            threshold=settings.forgery_threshold,
        )

    def build_detectors(self) -> list[Detector]:
        return [
            OCRConfidenceDetector(self.weight_ocr_confidence),
            FormattingConsistencyDetector(self.weight_formatting),
            TextPatternDetector(self.weight_text_patterns),
            DigitalManipulationDetector(self.weight_manipulation),
        ]


class ForgeryScorer:
    """Runs the detectors and combines them into a ForgeryAnalysis."""

    def __init__(
        self,
        detectors: Optional[Sequence[Detector]] = None,
        threshold: float = 0.4,
    ):
        self.detectors = list(detectors) if detectors is not None else ScoringConfig().build_detectors()
        if not 0 <= threshold <= 1:
            raise InvalidInputError("Forgery threshold must be within [0, 1]", field="threshold")
        self.threshold = threshold
        self.total_weight = sum(d.max_weight for d in self.detectors)
        if self.total_weight <= 0:
            raise InvalidInputError("Detector weights must sum to more than zero", field="weights")

    @classmethod
    def from_config(cls, config: ScoringConfig) -> "ForgeryScorer":
        return cls(config.build_detectors(), threshold=config.threshold)

    def score(self, text: str, ocr_confidence: float, image: Optional[bytes] = None) -> ForgeryAnalysis:
        """
        Score extracted text and OCR confidence.

        Raises InvalidInputError if ocr_confidence is not a number in
        [0, 100]; out-of-range values are never clamped.
        """
        if not isinstance(text, str):
            raise InvalidInputError("Text must be a string", field="text")
        _validate_confidence(ocr_confidence)

        signals = DocumentSignals(text=text, ocr_confidence=float(ocr_confidence), image=image)

        details: list[str] = []
        sub_scores: dict[str, float] = {}
        total = 0.0
        for detector in self.detectors:
            raw = detector.evaluate(signals)
            weighted = detector.weighted(raw)
            sub_scores[detector.name] = weighted
            total += weighted
            if detector.max_weight > 0 and raw > detector.report_threshold:
                details.append(detector.describe(raw, signals))

        likelihood = total / self.total_weight
        analysis = ForgeryAnalysis(
            is_forged=likelihood > self.threshold,
            confidence_score=100 * (1 - likelihood),
            details=details or [NO_INDICATORS],
            forgery_likelihood=likelihood,
            sub_scores=sub_scores,
        )

        incr_metric("analyses_total")
        if analysis.is_forged:
            incr_metric("analyses_forged_total")
        logger.debug(
            "Forgery analysis: likelihood=%.3f forged=%s",
            likelihood,
            analysis.is_forged,
            extra={"sub_scores": sub_scores},
        )
        return analysis


def _validate_confidence(value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError("OCR confidence must be a number", field="ocr_confidence")
    if math.isnan(value) or not 0 <= value <= 100:
        raise InvalidInputError(
            f"OCR confidence must be within [0, 100], got {value}",
            field="ocr_confidence",
        )


@lru_cache
def get_forgery_scorer() -> ForgeryScorer:
    """Scorer built from the configured weights and threshold."""
    return ForgeryScorer.from_config(ScoringConfig.from_settings(get_settings()))


def score(text: str, ocr_confidence: float) -> ForgeryAnalysis:
    """Score text + OCR confidence with the configured scorer."""
    return get_forgery_scorer().score(text, ocr_confidence)
