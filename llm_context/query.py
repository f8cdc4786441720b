"""Read-only queries over the persisted graph and manifest."""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from typing import Any, Optional

from llm_context.graph_store import GraphRecord
from llm_context.manifest import Manifest, load_manifest

DEFAULT_TRACE_DEPTH = 3
TRACE_FANOUT = 10


def read_manifest(manifest_path: Path | str) -> Optional[Manifest]:
    """Load the manifest, or None if there is no usable prior analysis."""
    return load_manifest(manifest_path)


def _name(record: GraphRecord) -> str:
    return record.name or record.id


class GraphIndex:
    """Lookup tables built once over a list of graph records."""

    def __init__(self, records: list[GraphRecord]):
        self.records = records
        self.by_name: dict[str, list[GraphRecord]] = defaultdict(list)
        self.by_file: dict[str, list[GraphRecord]] = defaultdict(list)
        self.callers: dict[str, list[str]] = defaultdict(list)  # called name -> caller names

        for record in records:
            name = _name(record)
            self.by_name[name].append(record)
            self.by_file[record.file].append(record)
            for called in record.calls:
                if name not in self.callers[called]:
                    self.callers[called].append(name)

    def first(self, name: str) -> Optional[GraphRecord]:
        matches = self.by_name.get(name)
        return matches[0] if matches else None


def functions_in_file(index: GraphIndex, file_path: str) -> list[GraphRecord]:
    """Records owned by a file, in graph order."""
    return list(index.by_file.get(file_path, []))


def calls_to(index: GraphIndex, name: str) -> list[str]:
    """Names of units that call ``name``."""
    return list(index.callers.get(name, []))


def called_by(index: GraphIndex, name: str) -> list[str]:
    """Names ``name`` calls (from its first record)."""
    record = index.first(name)
    return list(record.calls) if record else []


def with_side_effects(index: GraphIndex, effect: Optional[str] = None) -> list[GraphRecord]:
    """Records with any side effect, or with the given effect type."""
    if effect:
        return [r for r in index.records if effect in r.effects]
    return [r for r in index.records if r.effects]


def find_function(
    index: GraphIndex,
    name: str,
    file_filter: Optional[str] = None,
) -> list[GraphRecord]:
    """Find units by name.

    Exact name matches come first, followed by case-insensitive substring
    matches. ``file_filter`` keeps only records whose path contains it.
    """
    needle = name.lower()
    exact = [r for r in index.records if _name(r) == name]
    fuzzy = [r for r in index.records if _name(r) != name and needle in _name(r).lower()]
    matches = exact + fuzzy
    if file_filter:
        matches = [r for r in matches if file_filter in r.file]
    return matches


def trace(
    index: GraphIndex,
    name: str,
    depth: int = DEFAULT_TRACE_DEPTH,
    _visited: Optional[set[str]] = None,
) -> Optional[dict[str, Any]]:
    """Call tree rooted at ``name``.

    Each unit is expanded at most once per trace. Calls to unknown names are
    left out, and only the first few calls of each unit are followed.

    Returns:
        Nested ``{function, file, line, calls}`` dicts, or None if ``name``
        is unknown.
    """
    visited = _visited if _visited is not None else set()
    if depth <= 0 or name in visited:
        return None
    visited.add(name)

    record = index.first(name)
    if record is None:
        return None

    children = []
    for called in record.calls[:TRACE_FANOUT]:
        child = trace(index, called, depth - 1, visited)
        if child is not None:
            children.append(child)

    return {
        "function": name,
        "file": record.file,
        "line": record.line,
        "calls": children,
    }


def get_stats(index: GraphIndex) -> dict[str, Any]:
    """Summary counters over the graph."""
    effect_types: list[str] = []
    for record in index.records:
        for effect in record.effects:
            if effect not in effect_types:
                effect_types.append(effect)

    return {
        "totalFunctions": len(index.records),
        "filesAnalyzed": len(index.by_file),
        "totalCalls": sum(len(r.calls) for r in index.records),
        "withSideEffects": sum(1 for r in index.records if r.effects),
        "effectTypes": effect_types,
    }
