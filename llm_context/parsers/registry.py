"""Per-run parser cache keyed by language."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from llm_context.errors import AnalysisIOError, UnparseableFileError
from llm_context.hashing import DEFAULT_ALGORITHM
from llm_context.languages import detect_language
from llm_context.parsers.base import ParsedFile, UnitParser
from llm_context.parsers.javascript import JavaScriptParser
from llm_context.parsers.python import PythonParser

logger = logging.getLogger(__name__)

# language -> factory(hash_algorithm)
PARSER_FACTORIES: dict[str, Callable[[str], UnitParser]] = {
    "python": lambda algorithm: PythonParser(algorithm),
    "javascript": lambda algorithm: JavaScriptParser("javascript", algorithm),
    "typescript": lambda algorithm: JavaScriptParser("typescript", algorithm),
    "tsx": lambda algorithm: JavaScriptParser("tsx", algorithm),
}


class ParserRegistry:
    """Creates parsers lazily and keeps one instance per language.

    A registry is owned by a single run; nothing is shared between runs.
    """

    def __init__(self, hash_algorithm: str = DEFAULT_ALGORITHM):
        self.hash_algorithm = hash_algorithm
        self._parsers: dict[str, UnitParser] = {}

    def get(self, language: str) -> Optional[UnitParser]:
        """Return the parser for a language, or None if unsupported."""
        parser = self._parsers.get(language)
        if parser is None:
            factory = PARSER_FACTORIES.get(language)
            if factory is None:
                return None
            parser = factory(self.hash_algorithm)
            self._parsers[language] = parser
            logger.debug(f"Created {language} parser")
        return parser

    def for_path(self, file_path: str) -> Optional[UnitParser]:
        """Return the parser for a file based on its extension."""
        language = detect_language(file_path)
        if language is None:
            return None
        return self.get(language)

    def parse_file(self, root: Path, rel_path: str) -> Optional[ParsedFile]:
        """Read and parse one file.

        Returns:
            ParsedFile, or None if no parser handles the file's language.

        Raises:
            UnparseableFileError: If the file is not valid UTF-8 or cannot be parsed.
            AnalysisIOError: If the file cannot be read.
        """
        parser = self.for_path(rel_path)
        if parser is None:
            return None
        try:
            source = (root / rel_path).read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise UnparseableFileError(rel_path, f"not valid UTF-8 ({e.reason})")
        except OSError as e:
            raise AnalysisIOError(f"Cannot read {rel_path}: {e}", file=rel_path) from e
        return parser.parse(rel_path, source)
