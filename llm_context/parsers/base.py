"""Parser-facing data types shared by every language parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


def unit_identifier(file_path: str, key: Optional[str], line: int) -> str:
    """Build a unit identifier: ``path#name`` or ``path#L<line>`` if anonymous."""
    if key:
        return f"{file_path}#{key}"
    return f"{file_path}#L{line}"


@dataclass
class ParsedUnit:
    """One analysis unit (function, method, lambda) extracted from a file.

    ``name`` is the simple name shown to users. ``key`` identifies the unit
    within its file (qualified for methods and nested functions, suffixed
    with ``@L<line>`` when a name repeats) and is what fingerprints and the
    unit diff are keyed by.
    """

    identifier: str
    name: str
    key: str
    start_line: int
    end_line: int
    source: str
    normalized_hash: str
    parameters: str = "()"
    is_async: bool = False
    called_names: list[str] = field(default_factory=list)
    imported_modules: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        """Byte size of the unit's source text."""
        return len(self.source.encode("utf-8"))


@dataclass
class ParsedFile:
    """Result of parsing one file."""

    path: str
    language: str
    units: list[ParsedUnit] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)

    def unit_map(self) -> dict[str, ParsedUnit]:
        """Units keyed by ``key``, in source order."""
        return {unit.key: unit for unit in self.units}


class UnitParser(Protocol):
    """Turns source text into units. One instance may be reused across files."""

    language: str

    def parse(self, file_path: str, source: str) -> ParsedFile:
        """Parse ``source`` (the content of ``file_path``).

        Raises:
            UnparseableFileError: If no units can be extracted.
        """
        ...


class UnitKeyAllocator:
    """Hands out per-file unit keys, disambiguating repeats by line."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def allocate(self, qualified: Optional[str], line: int) -> str:
        if not qualified:
            key = f"L{line}"
        elif qualified in self._seen:
            key = f"{qualified}@L{line}"
        else:
            key = qualified
        self._seen.add(key)
        return key
