"""JSON Lines store for graph records, one record per analysis unit."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from llm_context.errors import LlmContextError
from llm_context.fileio import write_text_atomic

logger = logging.getLogger(__name__)

# Serialized key order; retained records round-trip byte-identically
_RECORD_KEYS = (
    "id", "name", "type", "file", "line", "sig", "async",
    "calls", "effects", "tags", "patterns", "language",
)


class GraphStoreError(LlmContextError):
    """A graph line could not be decoded into a record."""

    error_type = "graph_invalid"


@dataclass
class GraphRecord:
    """One analyzed unit as persisted in graph.jsonl."""

    id: str
    name: str
    file: str
    line: int
    sig: str = "()"
    is_async: bool = False
    calls: list[str] = field(default_factory=list)
    effects: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    patterns: list[dict[str, Any]] = field(default_factory=list)
    language: Optional[str] = None
    type: str = "function"
    extra: dict[str, Any] = field(default_factory=dict)  # unknown keys, preserved

    @property
    def key(self) -> tuple[str, str]:
        """Uniqueness key: (owning file, identifier)."""
        return self.file, self.id

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "file": self.file,
            "line": self.line,
            "sig": self.sig,
            "async": self.is_async,
            "calls": list(self.calls),
            "effects": list(self.effects),
            "tags": list(self.tags),
        }
        if self.patterns:
            data["patterns"] = [dict(p) for p in self.patterns]
        data["language"] = self.language
        data.update(self.extra)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GraphRecord":
        try:
            return cls(
                id=str(data["id"]),
                name=str(data.get("name", "")),
                file=str(data["file"]),
                line=int(data.get("line", 0)),
                sig=str(data.get("sig", "()")),
                is_async=bool(data.get("async", False)),
                calls=list(data.get("calls") or []),
                effects=list(data.get("effects") or []),
                tags=list(data.get("tags") or []),
                patterns=list(data.get("patterns") or []),
                language=data.get("language"),
                type=str(data.get("type", "function")),
                extra={k: v for k, v in data.items() if k not in _RECORD_KEYS},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GraphStoreError(f"Invalid graph record: {e}") from e


def parse_graph_lines(lines: Iterable[str]) -> list[GraphRecord]:
    """Decode JSONL text lines, skipping blanks.

    Raises:
        GraphStoreError: On the first undecodable line.
    """
    records = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise GraphStoreError(f"line {number}: {e}") from e
        if not isinstance(data, dict):
            raise GraphStoreError(f"line {number}: expected an object")
        records.append(GraphRecord.from_dict(data))
    return records


def read_graph(graph_path: Path | str) -> list[GraphRecord]:
    """Read all records in file order.

    Args:
        graph_path: Path to graph.jsonl.

    Returns:
        Records, or an empty list if the file does not exist.

    Raises:
        GraphStoreError: If the file exists but is malformed.
    """
    graph_path = Path(graph_path)
    if not graph_path.exists():
        return []
    try:
        text = graph_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise GraphStoreError(f"Cannot read graph: {e}", file=str(graph_path)) from e
    try:
        return parse_graph_lines(text.splitlines())
    except GraphStoreError as e:
        raise GraphStoreError(e.message, file=str(graph_path)) from e


def load_graph(graph_path: Path | str) -> Optional[list[GraphRecord]]:
    """Like read_graph, but None for a missing or malformed file."""
    graph_path = Path(graph_path)
    if not graph_path.exists():
        return None
    try:
        return read_graph(graph_path)
    except GraphStoreError as e:
        logger.warning(f"Ignoring malformed graph {graph_path}: {e}")
        return None


def dump_graph(records: Iterable[GraphRecord]) -> str:
    """Serialize records to JSONL text (trailing newline when non-empty)."""
    lines = [record.to_json() for record in records]
    return "\n".join(lines) + ("\n" if lines else "")


def write_graph(records: Iterable[GraphRecord], graph_path: Path | str) -> None:
    """Rewrite the whole graph file atomically."""
    write_text_atomic(graph_path, dump_graph(records))


def dedupe_records(records: Iterable[GraphRecord]) -> list[GraphRecord]:
    """Keep the first record for each (file, identifier)."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for record in records:
        if record.key in seen:
            continue
        seen.add(record.key)
        unique.append(record)
    return unique
