"""Analysis runs: full rebuilds and incremental updates.

Every run computes the new graph, manifest and dependency index in memory
and persists them only once computation has succeeded. A run that raises
leaves the previous artifacts untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from llm_context.analyzer import analyze_files, analyze_parsed
from llm_context.changes import ChangeReport, detect_changes, hash_files
from llm_context.config import LlmContextConfig
from llm_context.dependencies import (
    build_dependency_graph,
    build_dependency_index,
    dump_dependency_index,
)
from llm_context.errors import AnalysisIOError, UnparseableFileError
from llm_context.fileio import write_texts_atomic
from llm_context.graph_store import GraphRecord, dedupe_records, dump_graph, load_graph
from llm_context.ignore import build_matcher, iter_source_files
from llm_context.manifest import (
    FileEntry,
    Manifest,
    build_file_entry,
    compute_global_stats,
    dump_manifest,
    load_manifest,
)
from llm_context.parsers.base import ParsedFile
from llm_context.parsers.registry import ParserRegistry
from llm_context.unit_changes import (
    UnitChangeReport,
    detect_unit_changes,
    summarize_unit_changes,
)
from llm_context.updater import keys_to_analyze, update_file_level, update_unit_level

logger = logging.getLogger(__name__)

MODE_FULL = "full"
MODE_INCREMENTAL = "incremental"


@dataclass
class RunResult:
    """Outcome of one analysis run."""

    mode: str
    granularity: str
    reason: Optional[str] = None  # why a full run was chosen
    changes: Optional[ChangeReport] = None
    unit_reports: list[UnitChangeReport] = field(default_factory=list)
    analyzed: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # path -> reason
    unsupported: list[str] = field(default_factory=list)
    total_records: int = 0
    global_stats: dict[str, int] = field(default_factory=dict)
    dependency_stats: Optional[dict[str, int]] = None
    written: bool = False
    duration: float = 0.0

    @property
    def partial(self) -> bool:
        """True if some files could not be parsed."""
        return bool(self.failures)

    @property
    def unit_summary(self) -> Optional[dict[str, Any]]:
        if not self.unit_reports:
            return None
        return summarize_unit_changes(self.unit_reports)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mode": self.mode,
            "granularity": self.granularity,
            "analyzed": len(self.analyzed),
            "failed": len(self.failures),
            "records": self.total_records,
            "written": self.written,
            "duration": round(self.duration, 3),
            "globalStats": dict(self.global_stats),
        }
        if self.reason:
            data["reason"] = self.reason
        if self.changes is not None:
            data["changes"] = self.changes.summary()
        if self.unit_reports:
            data["unitChanges"] = self.unit_summary
        if self.failures:
            data["failures"] = dict(self.failures)
        if self.dependency_stats is not None:
            data["dependencies"] = dict(self.dependency_stats)
        return data


def _file_entry(
    root: Path,
    rel_path: str,
    file_hash: str,
    unit_ids: list[str],
    parsed: Optional[ParsedFile],
    config: LlmContextConfig,
) -> FileEntry:
    try:
        return build_file_entry(
            root,
            rel_path,
            file_hash,
            unit_ids,
            parsed=parsed if config.unit_granularity else None,
            keep_source=config.keep_unit_source,
        )
    except OSError as e:
        raise AnalysisIOError(f"Cannot stat {rel_path}: {e}", file=rel_path) from e


def _persist(
    root: Path,
    config: LlmContextConfig,
    manifest: Manifest,
    records: list[GraphRecord],
    result: RunResult,
) -> None:
    """Write graph, manifest and (optionally) the dependency index together.

    Either every artifact is replaced or, on failure, none is.
    """
    output_dir = config.output_dir(root)
    try:
        # Broken symlink in place of the output directory
        if output_dir.is_symlink() and not output_dir.exists():
            output_dir.unlink()
        output_dir.mkdir(parents=True, exist_ok=True)

        dependency_index = None
        if config.analysis.track_dependencies:
            graph = build_dependency_graph(records)
            dependency_index = build_dependency_index(
                graph, len(records), config.analysis.entry_point_max_callers
            )

        contents = {
            config.graph_path(root): dump_graph(records),
            config.manifest_path(root): dump_manifest(manifest),
        }
        if dependency_index is not None:
            contents[config.dependencies_path(root)] = dump_dependency_index(dependency_index)
        write_texts_atomic(contents)
    except OSError as e:
        raise AnalysisIOError(f"Cannot write analysis output to {output_dir}: {e}") from e

    if dependency_index is not None:
        result.dependency_stats = dependency_index["stats"]
    result.written = True
    logger.info(f"Wrote {len(records)} records to {config.graph_path(root)}")


def run_full(
    root: Path | str,
    config: LlmContextConfig,
    reason: Optional[str] = None,
) -> RunResult:
    """Analyze every tracked file and rewrite all artifacts.

    Files that fail to parse keep their records and manifest entries from
    the previous run, when there is one.

    Raises:
        AnalysisIOError: If a file or an output artifact cannot be read or written.
    """
    root = Path(root)
    start_time = time.time()
    result = RunResult(mode=MODE_FULL, granularity=config.granularity, reason=reason)
    logger.info(f"Full analysis of {root} ({config.granularity} granularity)")

    matcher = build_matcher(root, config)
    paths = iter_source_files(root, config, matcher)
    hashes = hash_files(root, paths, config.incremental.hash_algorithm)

    registry = ParserRegistry(config.incremental.hash_algorithm)
    batch = analyze_files(
        root,
        list(hashes),
        registry,
        max_calls=config.analysis.max_calls,
        workers=config.analysis.workers,
    )

    previous_manifest = load_manifest(config.manifest_path(root)) if batch.failures else None
    previous_records = (load_graph(config.graph_path(root)) or []) if batch.failures else []

    records: list[GraphRecord] = []
    files: dict[str, FileEntry] = {}
    for rel_path in hashes:
        if rel_path in batch.results:
            analysis = batch.results[rel_path]
            records.extend(analysis.records)
            files[rel_path] = _file_entry(
                root, rel_path, hashes[rel_path], [r.id for r in analysis.records], analysis.parsed, config
            )
        elif rel_path in batch.failures:
            old_entry = previous_manifest.files.get(rel_path) if previous_manifest else None
            if old_entry is not None:
                files[rel_path] = old_entry
            records.extend(r for r in previous_records if r.file == rel_path)
        else:
            # Tracked extension without a parser: hashed, no units
            files[rel_path] = _file_entry(root, rel_path, hashes[rel_path], [], None, config)

    records = dedupe_records(records)

    result.analyzed = list(batch.results)
    result.failures = dict(batch.failures)
    result.unsupported = list(batch.unsupported)
    result.total_records = len(records)
    result.global_stats = compute_global_stats(files, records)

    manifest = Manifest(
        granularity=config.granularity,
        files=files,
        global_stats=result.global_stats,
    )
    _persist(root, config, manifest, records, result)

    result.duration = time.time() - start_time
    return result


def _update_file_granularity(
    root: Path,
    config: LlmContextConfig,
    manifest: Manifest,
    records: list[GraphRecord],
    report: ChangeReport,
    registry: ParserRegistry,
    result: RunResult,
) -> tuple[dict[str, FileEntry], list[GraphRecord]]:
    batch = analyze_files(
        root,
        report.changed,
        registry,
        max_calls=config.analysis.max_calls,
        workers=config.analysis.workers,
    )

    files = {path: entry for path, entry in manifest.files.items() if path not in report.deleted}
    reanalyzed: dict[str, list[GraphRecord]] = {}

    for rel_path, analysis in batch.results.items():
        reanalyzed[rel_path] = analysis.records
        files[rel_path] = _file_entry(
            root, rel_path, report.hashes[rel_path], [r.id for r in analysis.records], None, config
        )
    for rel_path in batch.unsupported:
        reanalyzed[rel_path] = []
        files[rel_path] = _file_entry(root, rel_path, report.hashes[rel_path], [], None, config)

    result.analyzed = list(batch.results)
    result.failures = dict(batch.failures)
    result.unsupported = list(batch.unsupported)
    return files, update_file_level(records, reanalyzed, report.deleted)


def _update_unit_granularity(
    root: Path,
    config: LlmContextConfig,
    manifest: Manifest,
    records: list[GraphRecord],
    report: ChangeReport,
    registry: ParserRegistry,
    result: RunResult,
) -> tuple[dict[str, FileEntry], list[GraphRecord]]:
    files = {path: entry for path, entry in manifest.files.items() if path not in report.deleted}
    reports: dict[str, UnitChangeReport] = {}
    fresh: dict[str, list[GraphRecord]] = {}

    for rel_path in report.changed:
        try:
            unit_report = detect_unit_changes(root, rel_path, manifest.files.get(rel_path), registry, config)
        except UnparseableFileError as e:
            logger.warning(f"Skipping {rel_path}: {e.reason}")
            result.failures[rel_path] = e.reason
            continue

        if unit_report is None:
            result.unsupported.append(rel_path)
            files[rel_path] = _file_entry(root, rel_path, report.hashes[rel_path], [], None, config)
            continue

        parsed = unit_report.parsed
        keys = keys_to_analyze(unit_report, records)
        fresh[rel_path] = analyze_parsed(parsed, config.analysis.max_calls, keys)
        reports[rel_path] = unit_report
        result.unit_reports.append(unit_report)
        result.analyzed.append(rel_path)
        files[rel_path] = _file_entry(
            root,
            rel_path,
            report.hashes[rel_path],
            [unit.identifier for unit in parsed.units],
            parsed,
            config,
        )
        logger.debug(f"{rel_path}: {unit_report.counts()}, {len(fresh[rel_path])} records recomputed")

    return files, update_unit_level(records, reports, fresh, report.deleted)


def run_incremental(root: Path | str, config: LlmContextConfig) -> RunResult:
    """Re-analyze only what changed since the last completed run.

    Falls back to a full run when there is no usable manifest, when the
    granularity changed, or when the graph file is missing or malformed.

    Raises:
        AnalysisIOError: If a file or an output artifact cannot be read or written.
    """
    root = Path(root)
    start_time = time.time()

    manifest = load_manifest(config.manifest_path(root))
    if manifest is None:
        return run_full(root, config, reason="no prior analysis")
    if manifest.granularity != config.granularity:
        return run_full(
            root,
            config,
            reason=f"granularity changed from {manifest.granularity} to {config.granularity}",
        )

    records = load_graph(config.graph_path(root))
    if records is None:
        return run_full(root, config, reason="graph missing or malformed")

    result = RunResult(mode=MODE_INCREMENTAL, granularity=config.granularity)
    report = detect_changes(root, manifest, config, build_matcher(root, config))
    result.changes = report

    if not report.has_changes:
        logger.info("No changes since last analysis")
        result.total_records = len(records)
        result.global_stats = dict(manifest.global_stats)
        if config.analysis.track_dependencies and not config.dependencies_path(root).exists():
            _persist(root, config, manifest, records, result)
        result.duration = time.time() - start_time
        return result

    registry = ParserRegistry(config.incremental.hash_algorithm)
    if config.unit_granularity:
        files, records = _update_unit_granularity(root, config, manifest, records, report, registry, result)
    else:
        files, records = _update_file_granularity(root, config, manifest, records, report, registry, result)

    result.total_records = len(records)
    result.global_stats = compute_global_stats(files, records)

    updated = Manifest(
        granularity=config.granularity,
        files=files,
        global_stats=result.global_stats,
    )
    _persist(root, config, updated, records, result)

    result.duration = time.time() - start_time
    return result


def run_analysis(root: Path | str, config: LlmContextConfig, full: bool = False) -> RunResult:
    """Entry point for the ``analyze`` command."""
    if full:
        return run_full(root, config, reason="full analysis requested")
    if not config.incremental.enabled:
        return run_full(root, config, reason="incremental analysis disabled")
    return run_incremental(root, config)


def preview_changes(
    root: Path | str,
    config: LlmContextConfig,
) -> Optional[tuple[ChangeReport, list[UnitChangeReport]]]:
    """Report pending changes without analyzing or writing anything.

    Returns:
        (file report, unit reports for changed files in unit granularity),
        or None if there is no prior analysis.

    Raises:
        AnalysisIOError: If a tracked file cannot be read.
    """
    root = Path(root)
    manifest = load_manifest(config.manifest_path(root))
    if manifest is None:
        return None

    report = detect_changes(root, manifest, config, build_matcher(root, config))
    unit_reports: list[UnitChangeReport] = []

    if config.unit_granularity and manifest.granularity == config.granularity:
        registry = ParserRegistry(config.incremental.hash_algorithm)
        for rel_path in report.modified:
            try:
                unit_report = detect_unit_changes(root, rel_path, manifest.files.get(rel_path), registry, config)
            except UnparseableFileError as e:
                logger.warning(f"Skipping {rel_path}: {e.reason}")
                continue
            if unit_report is not None:
                unit_reports.append(unit_report)

    return report, unit_reports
