"""File extension to language mapping."""

from __future__ import annotations

import os
from collections import Counter
from typing import Iterable, Optional

EXTENSION_MAP = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".py": "python",
    ".pyw": "python",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".rb": "ruby",
    ".php": "php",
    ".sh": "bash",
    ".bash": "bash",
    ".zsh": "bash",
}


def detect_language(file_path: str) -> Optional[str]:
    """Return the language name for a path, or None if the extension is unknown."""
    ext = os.path.splitext(file_path)[1].lower()
    return EXTENSION_MAP.get(ext)


def language_breakdown(file_paths: Iterable[str]) -> dict[str, int]:
    """Count files per detected language, most common first."""
    counts = Counter(lang for lang in map(detect_language, file_paths) if lang)
    return dict(counts.most_common())
