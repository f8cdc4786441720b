"""Configuration loading and validation for llm-context."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from fnmatch import translate as glob_translate
from pathlib import Path
from typing import Any, Optional

import yaml

from llm_context.errors import LlmContextError


class ConfigError(LlmContextError):
    """Error in llm-context configuration."""

    def __init__(
        self,
        message: str,
        file: Optional[str] = None,
        error_type: str = "config_invalid",
    ):
        super().__init__(message, file=file)
        self.error_type = error_type


# Default paths
DEFAULT_CONFIG_PATH = "llm-context.yaml"
DEFAULT_OUTPUT_DIR = ".llm-context"

GRANULARITY_FILE = "file"
GRANULARITY_UNIT = "unit"
# "function" is accepted as an alias of "unit"
GRANULARITY_ALIASES = {
    "file": GRANULARITY_FILE,
    "unit": GRANULARITY_UNIT,
    "function": GRANULARITY_UNIT,
}

DEFAULT_EXTENSIONS = [
    ".py", ".pyw",
    ".js", ".mjs", ".cjs", ".jsx",
    ".ts", ".mts", ".cts", ".tsx",
]


@dataclass
class IncrementalConfig:
    """Fingerprinting and change-detection settings."""

    enabled: bool = True
    hash_algorithm: str = "sha256"
    store_source: bool = False
    detect_renames: bool = False
    similarity_threshold: float = 0.85


@dataclass
class AnalysisConfig:
    """Graph construction and dependency settings."""

    track_dependencies: bool = False
    max_call_depth: int = 10
    entry_point_max_callers: int = 2
    max_calls: int = 50  # calls kept per graph record
    workers: int = 1


@dataclass
class PatternsConfig:
    """Which files are tracked."""

    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude: list[str] = field(default_factory=list)
    use_gitignore: bool = True
    follow_symlinks: bool = False
    max_file_size: int = 1048576  # 1MB


@dataclass
class OutputConfig:
    """Output configuration."""

    directory: str = DEFAULT_OUTPUT_DIR
    manifest_file: str = "manifest.json"
    graph_file: str = "graph.jsonl"
    dependencies_file: str = "dependencies.json"


@dataclass
class LlmContextConfig:
    """Complete llm-context configuration."""

    version: str = "1.0"
    granularity: str = GRANULARITY_FILE
    incremental: IncrementalConfig = field(default_factory=IncrementalConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    patterns: PatternsConfig = field(default_factory=PatternsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @property
    def unit_granularity(self) -> bool:
        return self.granularity == GRANULARITY_UNIT

    @property
    def keep_unit_source(self) -> bool:
        """Rename detection compares stored source, so it implies storing it."""
        return self.incremental.store_source or self.incremental.detect_renames

    def output_dir(self, root: Path) -> Path:
        return root / self.output.directory

    def manifest_path(self, root: Path) -> Path:
        return self.output_dir(root) / self.output.manifest_file

    def graph_path(self, root: Path) -> Path:
        return self.output_dir(root) / self.output.graph_file

    def dependencies_path(self, root: Path) -> Path:
        return self.output_dir(root) / self.output.dependencies_file


def get_default_config() -> LlmContextConfig:
    """Return the default configuration."""
    return LlmContextConfig()


def _section(data: dict[str, Any], key: str, config_file: Optional[str]) -> dict[str, Any]:
    """Return a nested mapping, rejecting non-mapping values."""
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(
            f"Section '{key}' must be a mapping",
            file=config_file,
        )
    return value


def _parse_incremental(section: dict[str, Any]) -> IncrementalConfig:
    defaults = IncrementalConfig()
    return IncrementalConfig(
        enabled=section.get("enabled", defaults.enabled),
        hash_algorithm=section.get("hash_algorithm", defaults.hash_algorithm),
        store_source=section.get("store_source", defaults.store_source),
        detect_renames=section.get("detect_renames", defaults.detect_renames),
        similarity_threshold=section.get("similarity_threshold", defaults.similarity_threshold),
    )


def _parse_analysis(section: dict[str, Any]) -> AnalysisConfig:
    defaults = AnalysisConfig()
    return AnalysisConfig(
        track_dependencies=section.get("track_dependencies", defaults.track_dependencies),
        max_call_depth=section.get("max_call_depth", defaults.max_call_depth),
        entry_point_max_callers=section.get(
            "entry_point_max_callers", defaults.entry_point_max_callers
        ),
        max_calls=section.get("max_calls", defaults.max_calls),
        workers=section.get("workers", defaults.workers),
    )


def _parse_patterns(section: dict[str, Any]) -> PatternsConfig:
    defaults = PatternsConfig()
    extensions = section.get("extensions", defaults.extensions)
    return PatternsConfig(
        # Accept "py" as well as ".py"
        extensions=[ext if ext.startswith(".") else f".{ext}" for ext in extensions],
        exclude=section.get("exclude", defaults.exclude),
        use_gitignore=section.get("use_gitignore", defaults.use_gitignore),
        follow_symlinks=section.get("follow_symlinks", defaults.follow_symlinks),
        max_file_size=section.get("max_file_size", defaults.max_file_size),
    )


def _parse_output(section: dict[str, Any]) -> OutputConfig:
    defaults = OutputConfig()
    return OutputConfig(
        directory=section.get("directory", defaults.directory),
        manifest_file=section.get("manifest_file", defaults.manifest_file),
        graph_file=section.get("graph_file", defaults.graph_file),
        dependencies_file=section.get("dependencies_file", defaults.dependencies_file),
    )


def _validate_glob(pattern: str, config_file: Optional[str] = None) -> None:
    """Validate a glob pattern."""
    try:
        glob_translate(pattern)
    except Exception as e:
        raise ConfigError(
            f"Invalid glob pattern '{pattern}': {e}",
            file=config_file,
        )
    if pattern.count("[") != pattern.count("]"):
        raise ConfigError(
            f"Invalid glob pattern '{pattern}': unclosed bracket",
            file=config_file,
        )


def _validate_positive_int(name: str, value: Any, config_file: Optional[str]) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(
            f"{name} must be a positive integer, got {value!r}",
            file=config_file,
        )


def validate_config(config: LlmContextConfig, config_file: Optional[str] = None) -> None:
    """Validate configuration values.

    Raises:
        ConfigError: If configuration is invalid.
    """
    if config.granularity not in (GRANULARITY_FILE, GRANULARITY_UNIT):
        raise ConfigError(
            f"Unknown granularity '{config.granularity}'. Must be one of: file, unit",
            file=config_file,
        )

    algorithm = config.incremental.hash_algorithm
    if algorithm not in hashlib.algorithms_available:
        raise ConfigError(
            f"Unsupported hash algorithm '{algorithm}'",
            file=config_file,
        )

    threshold = config.incremental.similarity_threshold
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 < threshold <= 1:
        raise ConfigError(
            f"similarity_threshold must be in (0, 1], got {threshold!r}",
            file=config_file,
        )

    _validate_positive_int("max_call_depth", config.analysis.max_call_depth, config_file)
    _validate_positive_int("max_calls", config.analysis.max_calls, config_file)
    _validate_positive_int("workers", config.analysis.workers, config_file)
    _validate_positive_int("max_file_size", config.patterns.max_file_size, config_file)

    callers = config.analysis.entry_point_max_callers
    if isinstance(callers, bool) or not isinstance(callers, int) or callers < 0:
        raise ConfigError(
            f"entry_point_max_callers must be a non-negative integer, got {callers!r}",
            file=config_file,
        )

    for pattern in config.patterns.exclude:
        _validate_glob(pattern, config_file)


def load_config(config_path: Path | str) -> LlmContextConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the llm-context.yaml file.

    Returns:
        LlmContextConfig with loaded values merged with defaults.

    Raises:
        ConfigError: If the file exists but contains invalid configuration.
    """
    config_path = Path(config_path)
    config_file = str(config_path)

    defaults = get_default_config()

    if not config_path.exists():
        return defaults

    try:
        content = config_path.read_text(encoding="utf-8")
        if not content.strip():
            return defaults

        data = yaml.safe_load(content)
        if not data:
            return defaults
        if not isinstance(data, dict):
            raise ConfigError(
                "Top-level llm-context config must be a mapping",
                file=config_file,
            )

    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML: {e}",
            file=config_file,
        )

    granularity = str(data.get("granularity", defaults.granularity)).lower()

    config = LlmContextConfig(
        version=str(data.get("version", defaults.version)),
        granularity=GRANULARITY_ALIASES.get(granularity, granularity),
        incremental=_parse_incremental(_section(data, "incremental", config_file)),
        analysis=_parse_analysis(_section(data, "analysis", config_file)),
        patterns=_parse_patterns(_section(data, "patterns", config_file)),
        output=_parse_output(_section(data, "output", config_file)),
    )

    validate_config(config, config_file)

    return config
