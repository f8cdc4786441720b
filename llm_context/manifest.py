"""Fingerprint store: per-file hashes and optional per-unit fingerprints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from llm_context.fileio import write_text_atomic
from llm_context.parsers.base import ParsedFile, ParsedUnit

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "2.0.0"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UnitFingerprint:
    """Fingerprint of one unit, keyed by unit key inside its FileEntry."""

    hash: str
    line: int
    end_line: int
    size: int
    is_async: bool = False
    source: Optional[str] = None  # only kept when source storage is enabled

    @classmethod
    def from_unit(cls, unit: ParsedUnit, keep_source: bool = False) -> "UnitFingerprint":
        return cls(
            hash=unit.normalized_hash,
            line=unit.start_line,
            end_line=unit.end_line,
            size=unit.size,
            is_async=unit.is_async,
            source=unit.source if keep_source else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "hash": self.hash,
            "line": self.line,
            "endLine": self.end_line,
            "size": self.size,
            "async": self.is_async,
        }
        if self.source is not None:
            data["source"] = self.source
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnitFingerprint":
        return cls(
            hash=str(data["hash"]),
            line=int(data.get("line", 0)),
            end_line=int(data.get("endLine", data.get("line", 0))),
            size=int(data.get("size", 0)),
            is_async=bool(data.get("async", False)),
            source=data.get("source"),
        )


@dataclass
class FileEntry:
    """Manifest entry for one tracked file."""

    hash: str
    size: int
    last_modified: str
    units: list[str] = field(default_factory=list)  # unit identifiers, source order
    unit_fingerprints: Optional[dict[str, UnitFingerprint]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "hash": self.hash,
            "size": self.size,
            "lastModified": self.last_modified,
            "units": list(self.units),
        }
        if self.unit_fingerprints is not None:
            data["unitFingerprints"] = {
                key: fp.to_dict() for key, fp in self.unit_fingerprints.items()
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileEntry":
        fingerprints = data.get("unitFingerprints")
        return cls(
            hash=str(data["hash"]),
            size=int(data.get("size", 0)),
            last_modified=str(data.get("lastModified", "")),
            units=[str(u) for u in data.get("units", [])],
            unit_fingerprints=(
                {key: UnitFingerprint.from_dict(fp) for key, fp in fingerprints.items()}
                if isinstance(fingerprints, dict)
                else None
            ),
        )


@dataclass
class Manifest:
    """Versioned record of every tracked file from the last completed run."""

    granularity: str
    files: dict[str, FileEntry] = field(default_factory=dict)
    global_stats: dict[str, int] = field(default_factory=dict)
    generated: str = field(default_factory=utc_now)
    version: str = MANIFEST_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "granularity": self.granularity,
            "generated": self.generated,
            "files": {path: entry.to_dict() for path, entry in sorted(self.files.items())},
            "globalStats": dict(self.global_stats),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        files = data["files"]
        if not isinstance(files, dict):
            raise ValueError("'files' must be a mapping")
        return cls(
            version=str(data["version"]),
            granularity=str(data["granularity"]),
            generated=str(data.get("generated", "")),
            files={str(path): FileEntry.from_dict(entry) for path, entry in files.items()},
            global_stats=dict(data.get("globalStats") or {}),
        )


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def load_manifest(manifest_path: Path | str) -> Optional[Manifest]:
    """Load the manifest from disk.

    Args:
        manifest_path: Path to manifest.json.

    Returns:
        Manifest, or None if the file is missing, malformed, or written by an
        incompatible major version. None means "no prior analysis".
    """
    manifest_path = Path(manifest_path)

    if not manifest_path.exists():
        return None

    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
        manifest = Manifest.from_dict(data)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Ignoring malformed manifest {manifest_path}: {e}")
        return None

    if _major(manifest.version) != _major(MANIFEST_VERSION):
        logger.warning(
            f"Ignoring manifest version {manifest.version} (expected {MANIFEST_VERSION})"
        )
        return None

    return manifest


def dump_manifest(manifest: Manifest) -> str:
    """Serialize the manifest as indented JSON."""
    return json.dumps(manifest.to_dict(), indent=2) + "\n"


def save_manifest(manifest: Manifest, manifest_path: Path | str) -> None:
    """Write the manifest atomically."""
    write_text_atomic(manifest_path, dump_manifest(manifest))


def file_metadata(file_path: Path) -> tuple[int, str]:
    """Return (size in bytes, mtime as ISO-8601 UTC)."""
    st = file_path.stat()
    mtime = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat()
    return st.st_size, mtime


def build_file_entry(
    root: Path,
    rel_path: str,
    file_hash: str,
    unit_ids: Iterable[str],
    parsed: Optional[ParsedFile] = None,
    keep_source: bool = False,
) -> FileEntry:
    """Build a FileEntry for a freshly analyzed file.

    Args:
        root: Tree root.
        rel_path: Path relative to the root.
        file_hash: Whole-file content hash.
        unit_ids: Identifiers of the file's graph records.
        parsed: Parse result; when given, unit fingerprints are recorded.
        keep_source: Store each unit's verbatim source in its fingerprint.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    size, mtime = file_metadata(root / rel_path)
    fingerprints = None
    if parsed is not None:
        fingerprints = {
            unit.key: UnitFingerprint.from_unit(unit, keep_source) for unit in parsed.units
        }
    return FileEntry(
        hash=file_hash,
        size=size,
        last_modified=mtime,
        units=list(unit_ids),
        unit_fingerprints=fingerprints,
    )


def compute_global_stats(files: dict[str, FileEntry], records: Iterable[Any]) -> dict[str, int]:
    """Summary counters stored in the manifest.

    Args:
        files: Manifest file entries.
        records: Graph records (anything with a ``calls`` list).
    """
    total_functions = 0
    total_calls = 0
    for record in records:
        total_functions += 1
        total_calls += len(record.calls)
    return {
        "totalFunctions": total_functions,
        "totalCalls": total_calls,
        "totalFiles": len(files),
        "totalSize": sum(entry.size for entry in files.values()),
    }
