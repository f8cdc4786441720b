"""Side-effect classification, semantic tags and pattern annotations.

Side effects are driven by a declarative table: for each language, each
effect category lists the imports that confirm it, the call names and
builtins it covers, receiver namespaces, globals, and fallback regexes.
Confidence is derived from what matched:

- high: a listed call (or namespace call) in a file importing the category's
  library, a builtin, or a call on a known global
- medium: a listed call name or namespace without import confirmation
- low: only a regex pattern matched
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

EFFECT_TYPES = ("file_io", "network", "logging", "database", "dom", "mutation")

CONFIDENCE_ORDER = {"low": 1, "medium": 2, "high": 3}


@dataclass(frozen=True)
class EffectSpec:
    """Matching rules for one effect category in one language."""

    imports: tuple[str, ...] = ()
    calls: tuple[str, ...] = ()
    builtins: tuple[str, ...] = ()
    globals: tuple[str, ...] = ()
    namespaces: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    source_patterns: tuple[str, ...] = ()  # matched against the unit source


PYTHON_EFFECTS: dict[str, EffectSpec] = {
    "file_io": EffectSpec(
        imports=("os", "shutil", "pathlib", "tempfile", "io", "glob"),
        calls=(
            "remove", "unlink", "rename", "replace", "makedirs", "mkdir", "rmdir",
            "rmtree", "copy", "copy2", "copyfile", "copytree", "move", "write_text",
            "write_bytes", "read_text", "read_bytes", "touch", "mkstemp", "mkdtemp",
            "NamedTemporaryFile", "TemporaryDirectory",
        ),
        builtins=("open",),
        namespaces=("shutil", "tempfile"),
        patterns=(r"(read|write|save|load)_?(file|text|bytes|json)",),
    ),
    "network": EffectSpec(
        imports=("requests", "httpx", "aiohttp", "urllib", "http.client", "socket", "websockets"),
        calls=("urlopen", "create_connection", "sendall", "recv", "getaddrinfo"),
        namespaces=("requests", "httpx", "aiohttp", "socket", "urllib.request", "http.client"),
        patterns=(r"download|upload|https?_",),
    ),
    "logging": EffectSpec(
        imports=("logging", "loguru", "structlog"),
        calls=("debug", "info", "warning", "warn", "error", "exception", "critical", "log"),
        builtins=("print",),
        namespaces=("logging", "logger", "log", "structlog"),
        patterns=(r"^log_|_log$",),
    ),
    "database": EffectSpec(
        imports=("sqlite3", "sqlalchemy", "psycopg2", "psycopg", "pymysql", "pymongo", "redis", "peewee", "django.db"),
        calls=(
            "execute", "executemany", "executescript", "commit", "rollback", "fetchone",
            "fetchall", "fetchmany", "insert_one", "insert_many", "update_one",
            "update_many", "delete_one", "delete_many", "find_one",
        ),
        namespaces=("sqlite3", "cursor", "cur", "conn", "connection", "session", "db"),
        patterns=(r"(^|\.)(save|persist|flush)$",),
    ),
    "mutation": EffectSpec(
        builtins=("setattr", "delattr"),
        patterns=(
            r"\.(append|extend|insert|pop|remove|clear|update|setdefault|popitem|add|discard|sort|reverse)$",
        ),
        source_patterns=(r"^[ \t]*(?:global|nonlocal)[ \t]+\w+",),
    ),
}

JAVASCRIPT_EFFECTS: dict[str, EffectSpec] = {
    "file_io": EffectSpec(
        imports=("fs", "fs/promises", "node:fs", "node:fs/promises", "fs-extra"),
        calls=(
            "readFile", "readFileSync", "writeFile", "writeFileSync", "appendFile",
            "appendFileSync", "unlink", "unlinkSync", "mkdir", "mkdirSync", "rmdir",
            "rmSync", "readdir", "readdirSync", "createReadStream", "createWriteStream",
            "copyFile", "copyFileSync", "renameSync", "existsSync", "statSync",
        ),
        namespaces=("fs", "fsp", "fsPromises"),
        patterns=(r"(read|write)File",),
    ),
    "network": EffectSpec(
        imports=("axios", "node-fetch", "http", "https", "got", "superagent", "ws"),
        calls=("request", "ajax", "sendBeacon"),
        builtins=("fetch", "XMLHttpRequest"),
        namespaces=("axios", "http", "https", "got", "superagent", "socket"),
        patterns=(r"fetch|http",),
    ),
    "logging": EffectSpec(
        imports=("winston", "pino", "loglevel", "debug"),
        calls=("log", "info", "warn", "error", "debug", "trace"),
        globals=("console",),
        namespaces=("console", "logger"),
    ),
    "database": EffectSpec(
        imports=(
            "mongoose", "sequelize", "pg", "mysql", "mysql2", "sqlite3", "better-sqlite3",
            "knex", "@prisma/client", "redis", "ioredis", "mongodb",
        ),
        calls=(
            "query", "execute", "findOne", "findMany", "findById", "insertOne",
            "insertMany", "updateOne", "deleteOne", "destroy",
        ),
        namespaces=("db", "prisma", "knex", "mongoose", "pool", "collection"),
        patterns=(r"(^|\.)(query|exec)$",),
    ),
    "dom": EffectSpec(
        calls=(
            "querySelector", "querySelectorAll", "getElementById", "getElementsByClassName",
            "appendChild", "removeChild", "insertBefore", "setAttribute", "removeAttribute",
            "addEventListener", "removeEventListener", "createElement",
        ),
        globals=("document", "window"),
        namespaces=("element", "el", "node"),
        patterns=(r"innerHTML|classList|style\.",),
    ),
    "mutation": EffectSpec(
        patterns=(
            r"(^|\.)set(?-i:[A-Z])",
            r"\.(push|pop|shift|unshift|splice|sort|reverse|fill)$",
            r"Object\.assign",
        ),
    ),
}

EFFECT_TABLES: dict[str, dict[str, EffectSpec]] = {
    "python": PYTHON_EFFECTS,
    "javascript": JAVASCRIPT_EFFECTS,
    "typescript": JAVASCRIPT_EFFECTS,
    "tsx": JAVASCRIPT_EFFECTS,
}


@dataclass
class Effect:
    """One detected side effect."""

    type: str
    at: str
    confidence: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "at": self.at, "confidence": self.confidence}


def _matches_call(call: str, names: Iterable[str]) -> bool:
    return any(call == name or call.endswith("." + name) for name in names)


def _in_namespace(call: str, namespaces: Iterable[str]) -> bool:
    return any(call.startswith(ns + ".") for ns in namespaces)


class SideEffectAnalyzer:
    """Classifies a unit's calls using its file's imports.

    Args:
        language: Language whose table is used; unknown languages yield no effects.
        imports: Modules imported by the file.
    """

    def __init__(self, language: str, imports: Iterable[str] = ()):
        self.language = language
        self.imports = set(imports)
        self.table = EFFECT_TABLES.get(language, {})
        self._patterns = {
            effect_type: [re.compile(p, re.IGNORECASE) for p in spec.patterns]
            for effect_type, spec in self.table.items()
        }
        self._source_patterns = {
            effect_type: [re.compile(p, re.MULTILINE) for p in spec.source_patterns]
            for effect_type, spec in self.table.items()
        }

    def has_import(self, required: Iterable[str]) -> bool:
        """True if any required module (or one of its submodules) is imported."""
        for name in required:
            for imported in self.imports:
                if imported == name or imported.startswith(name + ".") or imported.startswith(name + "/"):
                    return True
        return False

    def _confidence(self, effect_type: str, call: str) -> Optional[str]:
        spec = self.table[effect_type]
        head = call.split(".", 1)[0]

        if spec.imports and self.has_import(spec.imports):
            if _matches_call(call, spec.calls) or _in_namespace(call, spec.namespaces):
                return "high"
        if call in spec.builtins:
            return "high"
        if head in spec.globals and "." in call:
            return "high"
        if _matches_call(call, spec.calls) or _in_namespace(call, spec.namespaces):
            return "medium"
        if any(p.search(call) for p in self._patterns[effect_type]):
            return "low"
        return None

    def analyze(self, calls: Iterable[str], source: str = "") -> list[Effect]:
        """Detect effects for one unit.

        Args:
            calls: Called names of the unit.
            source: Unit source, scanned by source-level patterns.

        Returns:
            Effects deduplicated on (type, at), keeping the highest confidence.
        """
        effects: list[Effect] = []
        for call in calls:
            for effect_type in EFFECT_TYPES:
                if effect_type not in self.table:
                    continue
                confidence = self._confidence(effect_type, call)
                if confidence:
                    effects.append(Effect(type=effect_type, at=call, confidence=confidence))

        if source:
            for effect_type, patterns in self._source_patterns.items():
                for pattern in patterns:
                    for match in pattern.finditer(source):
                        effects.append(Effect(type=effect_type, at=match.group(0).strip(), confidence="medium"))

        return deduplicate_effects(effects)


def deduplicate_effects(effects: Iterable[Effect]) -> list[Effect]:
    """Keep one effect per (type, at), preferring higher confidence."""
    seen: dict[tuple[str, str], Effect] = {}
    for effect in effects:
        key = (effect.type, effect.at)
        existing = seen.get(key)
        if existing is None or CONFIDENCE_ORDER[effect.confidence] > CONFIDENCE_ORDER[existing.confidence]:
            seen[key] = effect
    return list(seen.values())


def effect_types(effects: Iterable[Effect]) -> list[str]:
    """Unique effect types in first-seen order."""
    return list(dict.fromkeys(effect.type for effect in effects))


def filter_by_confidence(effects: Iterable[Effect], min_confidence: str = "low") -> list[Effect]:
    """Drop effects below ``min_confidence``."""
    minimum = CONFIDENCE_ORDER.get(min_confidence, 1)
    return [e for e in effects if CONFIDENCE_ORDER[e.confidence] >= minimum]


# Semantic tags scanned over the unit source (comments included)
SEMANTIC_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # Timing / performance
    ("debounce", re.compile(r"debounce", re.IGNORECASE)),
    ("throttle", re.compile(r"throttle", re.IGNORECASE)),
    ("batch", re.compile(r"batch", re.IGNORECASE)),
    ("cache", re.compile(r"cache|memoiz", re.IGNORECASE)),
    ("optimization", re.compile(r"optimiz|perf", re.IGNORECASE)),
    # UI / animation
    ("animation", re.compile(r"animat|transition", re.IGNORECASE)),
    ("scroll", re.compile(r"scroll", re.IGNORECASE)),
    ("layout", re.compile(r"layout|reflow", re.IGNORECASE)),
    ("render", re.compile(r"render|paint", re.IGNORECASE)),
    # State / effects
    ("state-mutation", re.compile(r"mutat|setstate|reset!|swap!", re.IGNORECASE)),
    ("side-effect", re.compile(r"side-effect|api call|fetch", re.IGNORECASE)),
    ("event-handler", re.compile(r"handle|on[A-Z]")),
    # Code quality
    ("hack", re.compile(r"hack|workaround|fixme", re.IGNORECASE)),
    ("todo", re.compile(r"todo", re.IGNORECASE)),
    ("deprecated", re.compile(r"deprecated", re.IGNORECASE)),
    # React
    ("react-hook", re.compile(r"use[A-Z]")),
    ("context", re.compile(r"provider|context", re.IGNORECASE)),
]


def semantic_tags(source: str) -> list[str]:
    """Tags whose pattern appears anywhere in the unit source."""
    if not source:
        return []
    return [tag for tag, regex in SEMANTIC_PATTERNS if regex.search(source)]


_HASH_CALL_RE = re.compile(r"hash|md5|sha|digest|crypto", re.IGNORECASE)
_HASH_METHOD_RE = re.compile(r"md5|sha", re.IGNORECASE)
_COLLECTION_CALL_RE = re.compile(r"map|filter|reduce|forEach", re.IGNORECASE)
_GRAPH_CALL_RE = re.compile(r"graph|entries|functions", re.IGNORECASE)


def detect_patterns(calls: list[str], effects: list[Effect]) -> list[dict[str, Any]]:
    """Pattern annotations derived from a unit's calls and effects."""
    patterns: list[dict[str, Any]] = []

    if any("parse" in c for c in calls):
        tool = "ast" if any(c.startswith("ast.") or "parser" in c for c in calls) else "unknown"
        patterns.append({
            "type": "parsing",
            "tool": tool,
            "description": "Parses source code into AST",
        })

    if any(_HASH_CALL_RE.search(c) for c in calls):
        method = next((c for c in calls if _HASH_METHOD_RE.search(c)), "hash")
        patterns.append({
            "type": "hashing",
            "method": method,
            "description": "Computes file/content hash for change detection",
        })

    if effects:
        patterns.append({
            "type": "side-effect-detection",
            "method": "ast-analysis",
            "description": "Detects side effects via AST analysis with import tracking",
        })

    if any(_COLLECTION_CALL_RE.search(c) for c in calls) and any(_GRAPH_CALL_RE.search(c) for c in calls):
        patterns.append({
            "type": "graph-transformation",
            "description": "Transforms or filters call graph data",
        })

    return patterns
