"""Content fingerprints for files and analysis units."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Optional

DEFAULT_ALGORITHM = "sha256"

_WHITESPACE_RE = re.compile(r"\s+")


def compute_file_hash(file_path: Path | str, algorithm: str = DEFAULT_ALGORITHM) -> Optional[str]:
    """Compute the hash of a file's raw bytes.

    Args:
        file_path: Path to the file.
        algorithm: Any name accepted by ``hashlib.new``.

    Returns:
        Hex digest, or None if the file does not exist.

    Raises:
        OSError: If the file exists but cannot be read.
    """
    file_path = Path(file_path)

    if not file_path.exists():
        return None

    hasher = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        # Read in chunks for memory efficiency on large files
        for chunk in iter(lambda: f.read(8192), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def normalize_source(source: str) -> str:
    """Collapse every whitespace run to one space and trim the ends."""
    return _WHITESPACE_RE.sub(" ", source).strip()


def hash_unit_source(source: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Hash a unit's source after whitespace normalization.

    Reformatting that only moves whitespace leaves the hash unchanged.
    """
    return hashlib.new(algorithm, normalize_source(source).encode("utf-8")).hexdigest()


def compute_similarity(a: str, b: str) -> float:
    """Positional character-match ratio of two sources.

    Both sides are normalized first. Characters are compared index by index
    over the shorter string and the match count is divided by the longer
    length, so an insertion near the start lowers the score sharply.

    Returns:
        Score in [0, 1]; 1.0 for identical text (including two empty strings).
    """
    a = normalize_source(a)
    b = normalize_source(b)

    if a == b:
        return 1.0

    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0

    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / longest
