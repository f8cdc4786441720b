"""Ignore rules and source tree discovery.

Rules come from a built-in default list (VCS metadata, dependency folders,
build outputs, tool caches), the project's ``.gitignore`` and the configured
exclude globs. Supported syntax:

- ``#`` comments and blank lines are skipped
- ``!pattern`` re-includes a path ignored by an earlier rule
- ``dir/`` only matches directories
- ``*`` and ``?`` never cross ``/``; ``**/`` and ``/**`` span directories
- a leading or inner ``/`` anchors the pattern at the tree root

The last matching rule wins.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from llm_context.config import LlmContextConfig

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = [
    # Version control
    ".git",
    ".svn",
    ".hg",
    # Dependencies
    "node_modules",
    "vendor",
    "venv",
    ".venv",
    "virtualenv",
    "__pycache__",
    # Build artifacts
    "dist",
    "build",
    "target",
    "out",
    ".output",
    # Language-specific build dirs
    ".shadow-cljs",
    ".cljs_cache",
    ".cpcache",
    "elm-stuff",
    "jpm_tree",
    ".tox",
    ".pytest_cache",
    ".mypy_cache",
    # Tool-specific
    ".llm-context",
    ".deciduous",
    ".beads",
    # OS
    ".DS_Store",
    "Thumbs.db",
]


def pattern_to_regex(pattern: str) -> str:
    """Convert a gitignore pattern (without ``!`` or trailing ``/``) to a regex.

    Args:
        pattern: Pattern such as ``*.log``, ``/build`` or ``docs/**/tmp``.

    Returns:
        Regex string suitable for ``re.search``.
    """
    # A slash at the start or in the middle anchors the pattern at the root
    anchored = "/" in pattern
    body = pattern[1:] if pattern.startswith("/") else pattern

    parts: list[str] = []
    i = 0
    while i < len(body):
        if body.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif body.startswith("/**", i):
            parts.append("(?:/.*)?")
            i += 3
        elif body.startswith("**", i):
            parts.append(".*")
            i += 2
        elif body[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif body[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(body[i]))
            i += 1

    regex = "".join(parts)
    regex = ("^" if anchored else "(?:^|/)") + regex

    # Patterns ending in a wildcard already consume the rest of the name
    if not pattern.endswith("*"):
        regex += "(?:$|/)"

    return regex


@dataclass
class IgnoreRule:
    """One compiled ignore line."""

    pattern: str
    negated: bool
    directory_only: bool
    anchored: bool
    regex: re.Pattern[str]

    @classmethod
    def from_line(cls, line: str) -> "IgnoreRule":
        negated = line.startswith("!")
        pattern = line[1:] if negated else line
        directory_only = pattern.endswith("/")
        if directory_only:
            pattern = pattern[:-1]
        return cls(
            pattern=pattern,
            negated=negated,
            directory_only=directory_only,
            anchored="/" in pattern,
            regex=re.compile(pattern_to_regex(pattern)),
        )

    def matches(self, path: str, parts: list[str]) -> bool:
        """Test the full path, then each segment, then each path suffix."""
        if self.regex.search(path):
            return True
        if self.anchored:
            return False
        if any(self.regex.search(part) for part in parts):
            return True
        return any(self.regex.search("/".join(parts[i:])) for i in range(1, len(parts)))


class IgnoreMatcher:
    """Precompiled set of ignore rules evaluated in order."""

    def __init__(self, patterns: Iterable[str]):
        self.rules = [IgnoreRule.from_line(p) for p in patterns if p]

    def is_ignored(self, path: str, is_dir: bool = False) -> bool:
        """Decide whether a relative path is ignored.

        Args:
            path: Path relative to the tree root (``/`` or ``\\`` separators).
            is_dir: Whether the path names a directory.

        Returns:
            True if the last matching rule is a positive (non-negated) rule.
        """
        normalized = path.replace("\\", "/")
        parts = [p for p in normalized.split("/") if p and p != "."]
        normalized = "/".join(parts)

        ignored = False
        for rule in self.rules:
            if rule.directory_only and not is_dir:
                continue
            if rule.matches(normalized, parts):
                ignored = not rule.negated
        return ignored


def read_gitignore_lines(gitignore_path: Path | str) -> list[str]:
    """Read non-comment, non-blank lines from a .gitignore file."""
    gitignore_path = Path(gitignore_path)
    if not gitignore_path.is_file():
        return []

    lines = []
    for line in gitignore_path.read_text(encoding="utf-8", errors="replace").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        lines.append(stripped)
    return lines


def parse_gitignore(
    gitignore_path: Optional[Path | str] = None,
    extra_patterns: Optional[Iterable[str]] = None,
) -> IgnoreMatcher:
    """Build a matcher from the defaults, a .gitignore file and extra globs.

    Args:
        gitignore_path: Path to a .gitignore; skipped if None or missing.
        extra_patterns: Additional patterns appended after the gitignore lines.

    Returns:
        IgnoreMatcher.
    """
    patterns = list(DEFAULT_IGNORE_PATTERNS)
    if gitignore_path is not None:
        patterns.extend(read_gitignore_lines(gitignore_path))
    if extra_patterns:
        patterns.extend(extra_patterns)
    return IgnoreMatcher(patterns)


def build_matcher(root: Path, config: LlmContextConfig) -> IgnoreMatcher:
    """Matcher for a project: defaults, optional .gitignore, excludes, output dir."""
    extra = list(config.patterns.exclude)
    extra.append(config.output.directory.rstrip("/"))
    gitignore = root / ".gitignore" if config.patterns.use_gitignore else None
    return parse_gitignore(gitignore, extra)


def iter_source_files(
    root: Path | str,
    config: LlmContextConfig,
    matcher: Optional[IgnoreMatcher] = None,
) -> list[str]:
    """Enumerate tracked source files under ``root``.

    Walks with an explicit directory stack. Ignored directories are not
    descended into. Symlinks are skipped unless ``follow_symlinks`` is set,
    in which case already-visited directories are detected by inode.

    Args:
        root: Tree root.
        config: Project configuration (extensions, size limit, symlinks).
        matcher: Precompiled matcher; built from ``config`` if None.

    Returns:
        Sorted list of POSIX-style paths relative to ``root``.
    """
    root = Path(root)
    if matcher is None:
        matcher = build_matcher(root, config)

    extensions = {ext.lower() for ext in config.patterns.extensions}
    follow = config.patterns.follow_symlinks
    max_size = config.patterns.max_file_size

    found: list[str] = []
    visited_inodes: set[tuple[int, int]] = set()  # (device, inode) pairs
    stack: list[tuple[Path, str]] = [(root, "")]

    while stack:
        current, rel_dir = stack.pop()

        if follow:
            try:
                st = current.stat()
            except OSError as e:
                logger.warning(f"Cannot stat {rel_dir or '.'}: {e}")
                continue
            inode = (st.st_dev, st.st_ino)
            if inode in visited_inodes:
                logger.warning(f"Circular symlink detected, skipping: {rel_dir}")
                continue
            visited_inodes.add(inode)

        try:
            entries = sorted(os.scandir(current), key=lambda e: e.name)
        except OSError as e:
            logger.warning(f"Cannot list {rel_dir or '.'}: {e}")
            continue

        subdirs: list[tuple[Path, str]] = []
        for entry in entries:
            rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name

            if entry.is_symlink() and not follow:
                continue

            try:
                is_dir = entry.is_dir(follow_symlinks=follow)
            except OSError:
                continue

            if is_dir:
                if not matcher.is_ignored(rel_path, is_dir=True):
                    subdirs.append((Path(entry.path), rel_path))
                continue

            if os.path.splitext(entry.name)[1].lower() not in extensions:
                continue
            if matcher.is_ignored(rel_path):
                continue
            try:
                if entry.stat(follow_symlinks=follow).st_size > max_size:
                    logger.debug(f"Skipping {rel_path}: larger than {max_size} bytes")
                    continue
            except OSError:
                continue

            found.append(rel_path)

        # Reverse so the stack pops directories in name order
        stack.extend(reversed(subdirs))

    return sorted(found)
