"""File-level change detection against the manifest."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from llm_context.config import LlmContextConfig
from llm_context.errors import AnalysisIOError
from llm_context.hashing import compute_file_hash
from llm_context.ignore import IgnoreMatcher, iter_source_files
from llm_context.manifest import Manifest

logger = logging.getLogger(__name__)


@dataclass
class ChangeReport:
    """Three-way comparison of the current tree against the manifest."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    hashes: dict[str, str] = field(default_factory=dict)  # current path -> hash

    @property
    def changed(self) -> list[str]:
        """Files whose records must be recomputed (added + modified)."""
        return self.added + self.modified

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)

    @property
    def total_files(self) -> int:
        return len(self.added) + len(self.modified) + len(self.unchanged)

    @property
    def percent_skipped(self) -> float:
        """Share of current files that need no re-analysis, in percent."""
        total = self.total_files
        if total == 0:
            return 100.0
        return round(len(self.unchanged) / total * 100, 1)

    def summary(self) -> dict[str, object]:
        return {
            "added": len(self.added),
            "modified": len(self.modified),
            "deleted": len(self.deleted),
            "unchanged": len(self.unchanged),
            "percentSkipped": self.percent_skipped,
        }


def hash_files(root: Path, file_paths: list[str], algorithm: str) -> dict[str, str]:
    """Hash each file; files that vanished since discovery are left out.

    Raises:
        AnalysisIOError: If a file exists but cannot be read.
    """
    hashes: dict[str, str] = {}
    for rel_path in file_paths:
        try:
            file_hash = compute_file_hash(root / rel_path, algorithm)
        except OSError as e:
            raise AnalysisIOError(f"Cannot read {rel_path}: {e}", file=rel_path) from e
        if file_hash is None:
            logger.debug(f"{rel_path} disappeared during the scan")
            continue
        hashes[rel_path] = file_hash
    return hashes


def detect_changes(
    root: Path | str,
    manifest: Manifest,
    config: LlmContextConfig,
    matcher: Optional[IgnoreMatcher] = None,
) -> ChangeReport:
    """Classify every tracked path as added, modified, deleted or unchanged.

    Hashes are compared byte for byte; modification times are not used.

    Args:
        root: Tree root.
        manifest: Manifest from the previous run.
        config: Project configuration.
        matcher: Precompiled ignore matcher (built from config if None).

    Returns:
        ChangeReport with sorted path lists and the current hashes.

    Raises:
        AnalysisIOError: If a tracked file cannot be read.
    """
    root = Path(root)
    current = iter_source_files(root, config, matcher)
    hashes = hash_files(root, current, config.incremental.hash_algorithm)

    report = ChangeReport(hashes=hashes)
    for rel_path, file_hash in hashes.items():
        previous = manifest.files.get(rel_path)
        if previous is None:
            report.added.append(rel_path)
        elif previous.hash != file_hash:
            report.modified.append(rel_path)
        else:
            report.unchanged.append(rel_path)

    report.deleted = sorted(path for path in manifest.files if path not in hashes)
    report.added.sort()
    report.modified.sort()
    report.unchanged.sort()

    logger.info(
        f"Changes: {len(report.added)} added, {len(report.modified)} modified, "
        f"{len(report.deleted)} deleted, {len(report.unchanged)} unchanged"
    )
    return report
