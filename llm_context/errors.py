"""Exception types shared across the analysis pipeline."""

from __future__ import annotations

from typing import Any, Optional


class LlmContextError(Exception):
    """Base error with a machine-readable JSON form."""

    error_type = "error"

    def __init__(self, message: str, file: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.file = file

    def to_json(self) -> dict[str, Any]:
        """Serialize error to JSON format for machine parsing."""
        result: dict[str, Any] = {
            "error": self.error_type,
            "message": self.message,
        }
        if self.file:
            result["file"] = self.file
        return result

    def __str__(self) -> str:
        if self.file:
            return f"{self.message} | file: {self.file}"
        return self.message


class UnparseableFileError(LlmContextError):
    """A parser could not extract units from one file.

    Recovered per file: the file is skipped for the current pass.
    """

    error_type = "unparseable_file"

    def __init__(self, file: str, reason: str):
        super().__init__(f"Could not parse {file}: {reason}", file=file)
        self.reason = reason


class AnalysisIOError(LlmContextError):
    """Run-level I/O failure. Nothing is persisted when this is raised."""

    error_type = "io_failure"
