"""
Image-level forensic signals.

Error Level Analysis (ELA): re-save the raster as JPEG at a known quality
and measure how much each pixel changes. Untouched regions share one
compression history and settle to a uniform, low error level; pasted or
re-edited regions stand out. The signal is deterministic for a given input.
"""

import io
import logging

from PIL import Image, ImageChops, UnidentifiedImageError

from certledger.core.errors import DocumentReadError

logger = logging.getLogger(__name__)

ELA_QUALITY = 95
# Error level (0-255) at which suspicion saturates to 1.0
ELA_SATURATION = 48
# Fraction of the brightest ELA pixels used as the error level
ELA_PERCENTILE = 0.99


def is_raster_image(content: bytes) -> bool:
    """True if Pillow recognizes content as a raster image."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            img.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False


def error_level_image(content: bytes) -> Image.Image:
    """Grayscale ELA difference image for content."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            original = img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise DocumentReadError(reason=f"is not a decodable image: {e}") from e

    buffer = io.BytesIO()
    original.save(buffer, "JPEG", quality=ELA_QUALITY)
    buffer.seek(0)
    with Image.open(buffer) as resaved:
        diff = ImageChops.difference(original, resaved.convert("RGB"))
    return diff.convert("L")


def error_level(content: bytes, percentile: float = ELA_PERCENTILE) -> int:
    """Error level (0-255) at the given percentile of the ELA histogram."""
    histogram = error_level_image(content).histogram()
    total = sum(histogram)
    if not total:
        return 0
    cutoff = total * percentile
    running = 0
    for level, count in enumerate(histogram):
        running += count
        if running >= cutoff:
            return level
    return 255


def error_level_suspicion(content: bytes) -> float:
    """ELA suspicion in [0, 1]; 0 = uniform compression history."""
    level = error_level(content)
    suspicion = min(1.0, level / ELA_SATURATION)
    logger.debug("ELA level=%d suspicion=%.3f", level, suspicion)
    return suspicion
