"""Unit-level change detection for modified files.

Current units are re-extracted by the parser and diffed by unit key against
the fingerprints stored in the manifest. With rename detection enabled, a
deleted unit whose stored source is similar enough to an added unit's source
is reported as a rename instead of a delete plus an add.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from llm_context.config import LlmContextConfig
from llm_context.hashing import compute_similarity
from llm_context.manifest import FileEntry, UnitFingerprint
from llm_context.parsers.base import ParsedFile, ParsedUnit
from llm_context.parsers.registry import ParserRegistry

logger = logging.getLogger(__name__)


@dataclass
class AddedUnit:
    name: str
    hash: str
    line: int
    size: int


@dataclass
class ModifiedUnit:
    name: str
    old_hash: str
    new_hash: str
    old_line: int
    new_line: int
    size_delta: int


@dataclass
class DeletedUnit:
    name: str
    hash: str
    line: int


@dataclass
class UnitRename:
    old_name: str
    new_name: str
    old_hash: str
    new_hash: str
    similarity: float
    old_line: int
    new_line: int
    size_delta: int


@dataclass
class UnitChangeReport:
    """Per-file unit diff. ``parsed`` holds the parse the diff was built from."""

    file_path: str
    parsed: ParsedFile
    added: list[AddedUnit] = field(default_factory=list)
    modified: list[ModifiedUnit] = field(default_factory=list)
    deleted: list[DeletedUnit] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    renames: list[UnitRename] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted or self.renames)

    @property
    def stale_keys(self) -> set[str]:
        """Unit keys whose records must be removed."""
        keys = {m.name for m in self.modified}
        keys.update(d.name for d in self.deleted)
        keys.update(r.old_name for r in self.renames)
        return keys

    @property
    def fresh_keys(self) -> set[str]:
        """Unit keys whose records must be (re)computed."""
        keys = {m.name for m in self.modified}
        keys.update(a.name for a in self.added)
        keys.update(r.new_name for r in self.renames)
        return keys

    @property
    def total_units(self) -> int:
        return len(self.parsed.units)

    def counts(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "modified": len(self.modified),
            "deleted": len(self.deleted),
            "renamed": len(self.renames),
            "unchanged": len(self.unchanged),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file_path,
            "added": [asdict(a) for a in self.added],
            "modified": [asdict(m) for m in self.modified],
            "deleted": [asdict(d) for d in self.deleted],
            "unchanged": list(self.unchanged),
            "renames": [asdict(r) for r in self.renames],
        }


def diff_units(
    file_path: str,
    parsed: ParsedFile,
    previous: Optional[dict[str, UnitFingerprint]],
) -> UnitChangeReport:
    """Diff current units against stored fingerprints by unit key."""
    report = UnitChangeReport(file_path=file_path, parsed=parsed)
    current = parsed.unit_map()

    if previous is None:
        # No prior unit data: everything is new
        report.added = [_added(unit) for unit in current.values()]
        return report

    for key, unit in current.items():
        old = previous.get(key)
        if old is None:
            report.added.append(_added(unit))
        elif old.hash != unit.normalized_hash:
            report.modified.append(
                ModifiedUnit(
                    name=key,
                    old_hash=old.hash,
                    new_hash=unit.normalized_hash,
                    old_line=old.line,
                    new_line=unit.start_line,
                    size_delta=unit.size - old.size,
                )
            )
        else:
            report.unchanged.append(key)

    for key, old in previous.items():
        if key not in current:
            report.deleted.append(DeletedUnit(name=key, hash=old.hash, line=old.line))

    return report


def _added(unit: ParsedUnit) -> AddedUnit:
    return AddedUnit(name=unit.key, hash=unit.normalized_hash, line=unit.start_line, size=unit.size)


def match_renames(
    report: UnitChangeReport,
    previous: dict[str, UnitFingerprint],
    threshold: float,
) -> None:
    """Pair deleted and added units whose sources are similar.

    Each deleted unit with stored source is compared with every remaining
    added unit in order; the first pair scoring at least ``threshold`` is a
    rename and both sides leave the deleted/added lists.
    """
    current = report.parsed.unit_map()

    for deleted in list(report.deleted):
        old = previous[deleted.name]
        old_source = old.source
        if not old_source:
            continue
        for added in report.added:
            new_unit = current.get(added.name)
            if new_unit is None or not new_unit.source:
                continue
            similarity = compute_similarity(old_source, new_unit.source)
            if similarity >= threshold:
                report.renames.append(
                    UnitRename(
                        old_name=deleted.name,
                        new_name=added.name,
                        old_hash=deleted.hash,
                        new_hash=added.hash,
                        similarity=round(similarity, 3),
                        old_line=deleted.line,
                        new_line=added.line,
                        size_delta=added.size - old.size,
                    )
                )
                report.deleted.remove(deleted)
                report.added.remove(added)
                logger.debug(f"{report.file_path}: {deleted.name} renamed to {added.name} ({similarity:.3f})")
                break


def detect_unit_changes(
    root: Path | str,
    file_path: str,
    entry: Optional[FileEntry],
    registry: ParserRegistry,
    config: LlmContextConfig,
) -> Optional[UnitChangeReport]:
    """Diff one file's units against its manifest entry.

    Args:
        root: Tree root.
        file_path: Path relative to the root.
        entry: Previous manifest entry, or None for a new file.
        registry: Parser registry of the current run.
        config: Project configuration (rename detection, threshold).

    Returns:
        UnitChangeReport, or None if no parser handles the file.

    Raises:
        UnparseableFileError: If the file cannot be parsed.
    """
    parsed = registry.parse_file(Path(root), file_path)
    if parsed is None:
        return None

    previous = entry.unit_fingerprints if entry is not None else None
    report = diff_units(file_path, parsed, previous)

    if config.incremental.detect_renames and previous and report.deleted and report.added:
        match_renames(report, previous, config.incremental.similarity_threshold)

    return report


def summarize_unit_changes(reports: list[UnitChangeReport]) -> dict[str, Any]:
    """Totals across files plus the share of units that were skipped."""
    totals = {"added": 0, "modified": 0, "deleted": 0, "renamed": 0, "unchanged": 0}
    for report in reports:
        for kind, count in report.counts().items():
            totals[kind] += count

    current_units = sum(report.total_units for report in reports)
    skipped = totals["unchanged"]
    percent = 100.0 if current_units == 0 else round(skipped / current_units * 100, 1)

    return {
        **totals,
        "files": len(reports),
        "percentSkipped": percent,
    }
