"""Language parsers that turn source text into analysis units."""

from llm_context.parsers.base import ParsedFile, ParsedUnit, UnitParser, unit_identifier
from llm_context.parsers.registry import ParserRegistry

__all__ = [
    "ParsedFile",
    "ParsedUnit",
    "ParserRegistry",
    "UnitParser",
    "unit_identifier",
]
