"""
Fingerprint Engine

SHA-256 content digests used as ledger keys. A fingerprint depends only on
the exact document bytes: filename, metadata and upload time play no part.
"""

import hashlib
import re
from pathlib import Path
from typing import BinaryIO, Union

from certledger.core.errors import DocumentReadError, InvalidInputError

FINGERPRINT_LENGTH = 64
CHUNK_SIZE = 1024 * 1024

_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


def fingerprint(data: bytes) -> str:
    """Return the lowercase SHA-256 hex digest of data (empty input allowed)."""
    return hashlib.sha256(data).hexdigest()


def fingerprint_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Fingerprint a binary file-like object without loading it whole.

    Raises DocumentReadError if the stream cannot be read.
    """
    digest = hashlib.sha256()
    try:
        for chunk in iter(lambda: stream.read(chunk_size), b""):
            digest.update(chunk)
    except OSError as e:
        raise DocumentReadError(getattr(stream, "name", None), f"could not be read: {e}") from e
    return digest.hexdigest()


def fingerprint_file(path: Union[str, Path]) -> str:
    """Fingerprint a file on disk."""
    try:
        with open(path, "rb") as f:
            return fingerprint_stream(f)
    except DocumentReadError:
        raise
    except OSError as e:
        raise DocumentReadError(path, f"could not be opened: {e.strerror or e}") from e


def is_fingerprint(value: str) -> bool:
    """True if value has the 64-character lowercase hex shape."""
    return bool(_FINGERPRINT_RE.match(value or ""))


def normalize_fingerprint(value: str) -> str:
    """
    Canonical form of a caller-supplied fingerprint (trimmed, lowercase).

    Only emptiness is rejected: an unknown or odd-looking value is a
    legitimate lookup that simply finds nothing.
    """
    if not isinstance(value, str):
        raise InvalidInputError("Fingerprint must be a string", field="fingerprint")
    normalized = value.strip().lower()
    if not normalized:
        raise InvalidInputError("Fingerprint must not be empty", field="fingerprint")
    return normalized


def short_fingerprint(value: str, size: int = 10) -> str:
    """Display form: first and last `size` characters joined by '...'."""
    if len(value) <= size * 2:
        return value
    return f"{value[:size]}...{value[-size:]}"
