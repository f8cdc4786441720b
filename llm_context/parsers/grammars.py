"""Tree-sitter grammar loading for the JavaScript family of languages.

Grammars come from pre-compiled language packages (tree-sitter 0.25+ API)
rather than runtime compilation.
"""

from __future__ import annotations

import importlib
import logging

from tree_sitter import Language, Parser

logger = logging.getLogger(__name__)

# language -> (module name, function returning the grammar)
LANGUAGE_MODULES: dict[str, tuple[str, str]] = {
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
}

_language_cache: dict[str, Language] = {}


def get_language(language: str) -> Language:
    """Load the tree-sitter ``Language`` for a language name.

    Raises:
        ValueError: If no grammar is registered for the language.
    """
    if language in _language_cache:
        return _language_cache[language]

    module_info = LANGUAGE_MODULES.get(language)
    if not module_info:
        raise ValueError(f"Unsupported language for tree-sitter: {language}")

    module_name, func_name = module_info
    language_module = importlib.import_module(module_name)
    lang_obj = getattr(language_module, func_name)()
    # Grammar packages return a PyCapsule that Language wraps
    lang = Language(lang_obj) if not isinstance(lang_obj, Language) else lang_obj

    _language_cache[language] = lang
    logger.debug(f"Loaded tree-sitter grammar for {language} from {module_name}")
    return lang


def new_parser(language: str) -> Parser:
    """Return a fresh tree-sitter ``Parser`` for a language.

    Parsers keep internal state while parsing, so each parse gets its own
    instance; only the ``Language`` objects are cached.
    """
    return Parser(get_language(language))
