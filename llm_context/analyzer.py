"""Turn parsed units into graph records."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from llm_context.effects import SideEffectAnalyzer, detect_patterns, effect_types, semantic_tags
from llm_context.errors import UnparseableFileError
from llm_context.graph_store import GraphRecord
from llm_context.parsers.base import ParsedFile, ParsedUnit
from llm_context.parsers.registry import ParserRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_CALLS = 50


@dataclass
class FileAnalysis:
    """Parse result and graph records for one file."""

    path: str
    parsed: ParsedFile
    records: list[GraphRecord] = field(default_factory=list)


@dataclass
class AnalysisBatch:
    """Results of analyzing several files, in input order."""

    results: dict[str, FileAnalysis] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)  # path -> reason
    unsupported: list[str] = field(default_factory=list)


def analyze_unit(
    unit: ParsedUnit,
    parsed: ParsedFile,
    effects_analyzer: SideEffectAnalyzer,
    max_calls: int = DEFAULT_MAX_CALLS,
) -> GraphRecord:
    """Build the graph record for one unit."""
    calls = [c for c in dict.fromkeys(unit.called_names) if c != unit.name][:max_calls]
    effects = effects_analyzer.analyze(calls, unit.source)
    return GraphRecord(
        id=unit.identifier,
        name=unit.name,
        file=parsed.path,
        line=unit.start_line,
        sig=unit.parameters or "()",
        is_async=unit.is_async,
        calls=calls,
        effects=effect_types(effects),
        tags=semantic_tags(unit.source),
        patterns=detect_patterns(calls, effects),
        language=parsed.language,
    )


def analyze_parsed(
    parsed: ParsedFile,
    max_calls: int = DEFAULT_MAX_CALLS,
    keys: Optional[Iterable[str]] = None,
) -> list[GraphRecord]:
    """Records for a parsed file, in source order.

    Args:
        parsed: Parse result.
        max_calls: Cap on recorded calls per unit.
        keys: Restrict to these unit keys; all units if None.
    """
    wanted = set(keys) if keys is not None else None
    effects_analyzer = SideEffectAnalyzer(parsed.language, parsed.imports)
    return [
        analyze_unit(unit, parsed, effects_analyzer, max_calls)
        for unit in parsed.units
        if wanted is None or unit.key in wanted
    ]


def analyze_file(
    root: Path,
    rel_path: str,
    registry: ParserRegistry,
    max_calls: int = DEFAULT_MAX_CALLS,
) -> Optional[FileAnalysis]:
    """Parse and analyze one file.

    Returns:
        FileAnalysis, or None if no parser handles the file.

    Raises:
        UnparseableFileError: If the file cannot be parsed.
        AnalysisIOError: If the file cannot be read.
    """
    parsed = registry.parse_file(root, rel_path)
    if parsed is None:
        return None
    return FileAnalysis(path=rel_path, parsed=parsed, records=analyze_parsed(parsed, max_calls))


def analyze_files(
    root: Path | str,
    file_paths: list[str],
    registry: ParserRegistry,
    max_calls: int = DEFAULT_MAX_CALLS,
    workers: int = 1,
) -> AnalysisBatch:
    """Analyze files, optionally across a thread pool.

    Unparseable files are logged and listed in ``failures``; I/O failures
    propagate. Results are merged in input order regardless of completion
    order.

    Args:
        root: Tree root.
        file_paths: Paths relative to the root.
        registry: Parser registry of the current run.
        max_calls: Cap on recorded calls per unit.
        workers: Thread count; 1 analyzes serially.
    """
    root = Path(root)
    start_time = time.time()
    outcomes: dict[str, Optional[FileAnalysis] | UnparseableFileError] = {}

    def run(rel_path: str) -> Optional[FileAnalysis] | UnparseableFileError:
        try:
            return analyze_file(root, rel_path, registry, max_calls)
        except UnparseableFileError as e:
            return e

    if workers > 1 and len(file_paths) > 1:
        logger.info(f"Analyzing {len(file_paths)} files with {workers} workers")
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(run, path): path for path in file_paths}
            for future in as_completed(futures):
                outcomes[futures[future]] = future.result()
    else:
        for path in file_paths:
            outcomes[path] = run(path)

    batch = AnalysisBatch()
    for path in file_paths:
        outcome = outcomes[path]
        if isinstance(outcome, UnparseableFileError):
            logger.warning(f"Skipping {path}: {outcome.reason}")
            batch.failures[path] = outcome.reason
        elif outcome is None:
            batch.unsupported.append(path)
        else:
            batch.results[path] = outcome

    elapsed = time.time() - start_time
    logger.debug(
        f"Analyzed {len(batch.results)}/{len(file_paths)} files in {elapsed:.2f}s "
        f"({len(batch.failures)} failed)"
    )
    return batch
