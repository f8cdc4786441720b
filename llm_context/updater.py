"""Splice freshly computed records into the persisted graph.

Two granularities are supported:

- file: every record owned by a re-analyzed or deleted file is dropped and
  the file's fresh records are appended
- unit: only records of modified, deleted and renamed-away units are
  dropped; fresh records for modified, added and renamed-to units are
  appended. Records of unchanged units are passed through untouched.

Either way the result holds exactly one record per live unit.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from llm_context.graph_store import GraphRecord, dedupe_records
from llm_context.parsers.base import unit_identifier
from llm_context.unit_changes import UnitChangeReport

logger = logging.getLogger(__name__)


def _identifier(file_path: str, key: str) -> str:
    # Anonymous keys are already "L<line>", so the line is never needed here
    return unit_identifier(file_path, key, 0)


def update_file_level(
    records: Iterable[GraphRecord],
    reanalyzed: dict[str, list[GraphRecord]],
    deleted: Iterable[str],
) -> list[GraphRecord]:
    """Replace all records of re-analyzed files and drop deleted files.

    Args:
        records: Current graph, in order.
        reanalyzed: Fresh records per successfully re-analyzed file.
        deleted: Files that no longer exist.

    Returns:
        Updated graph: retained records in original order, then fresh ones.
    """
    dropped_files = set(reanalyzed) | set(deleted)

    updated: list[GraphRecord] = []
    dropped = 0
    for record in records:
        if record.file in dropped_files:
            dropped += 1
        else:
            updated.append(record)

    kept = len(updated)
    for fresh in reanalyzed.values():
        updated.extend(fresh)

    logger.debug(f"File-level update: kept {kept}, dropped {dropped}, appended {len(updated) - kept}")
    return dedupe_records(updated)


def keys_to_analyze(report: UnitChangeReport, records: Iterable[GraphRecord]) -> set[str]:
    """Unit keys needing fresh records.

    Modified, added and renamed-to units, plus unchanged units that have no
    record yet (e.g. after an earlier partial run).
    """
    existing = {r.id for r in records if r.file == report.file_path}
    keys = set(report.fresh_keys)
    for key in report.unchanged:
        if _identifier(report.file_path, key) not in existing:
            keys.add(key)
    return keys


def update_unit_level(
    records: Iterable[GraphRecord],
    reports: dict[str, UnitChangeReport],
    fresh: dict[str, list[GraphRecord]],
    deleted: Iterable[str],
) -> list[GraphRecord]:
    """Splice per-unit changes into the graph.

    Args:
        records: Current graph, in order.
        reports: Unit change report per re-parsed file.
        fresh: Fresh records per re-parsed file.
        deleted: Files that no longer exist.

    Returns:
        Updated graph. Retained records are the same objects as the input
        and keep their original order.
    """
    deleted_files = set(deleted)

    live_ids: dict[str, set[str]] = {}
    replaced_ids: dict[str, set[str]] = defaultdict(set)
    for file_path, report in reports.items():
        live_ids[file_path] = {unit.identifier for unit in report.parsed.units}
        replaced_ids[file_path].update(_identifier(file_path, key) for key in report.stale_keys)
    for file_path, file_records in fresh.items():
        replaced_ids[file_path].update(r.id for r in file_records)

    updated: list[GraphRecord] = []
    dropped = 0
    for record in records:
        if record.file in deleted_files:
            dropped += 1
            continue
        if record.file in reports:
            if record.id not in live_ids[record.file] or record.id in replaced_ids[record.file]:
                dropped += 1
                continue
        updated.append(record)

    appended = 0
    for file_path in reports:
        for record in fresh.get(file_path, []):
            updated.append(record)
            appended += 1

    logger.debug(f"Unit-level update: kept {len(updated) - appended}, dropped {dropped}, appended {appended}")
    return dedupe_records(updated)
