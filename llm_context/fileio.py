"""Atomic writes for persisted artifacts."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def write_text_atomic(path: Path | str, content: str) -> None:
    """Write text so readers see either the old file or the new one.

    The content goes to a temporary file in the same directory, which is
    then moved over the target with ``os.replace``.

    Args:
        path: Destination file. Parent directories are created.
        content: Text to write (UTF-8).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_texts_atomic(contents: dict[Path, str]) -> None:
    """Write several files so that either all of them or none are replaced.

    Every file is staged to a temporary sibling first. Targets are only
    replaced once all staging writes succeeded; if a replace fails, the
    targets already replaced get their previous content back.

    Args:
        contents: Destination path -> text (UTF-8), replaced in this order.
    """
    staged: list[tuple[Path, str]] = []
    try:
        for path, content in contents.items():
            path = Path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            staged.append((path, tmp_name))
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)

        previous: list[tuple[Path, bytes | None]] = []
        try:
            for path, tmp_name in staged:
                old = path.read_bytes() if path.is_file() else None
                os.replace(tmp_name, path)
                previous.append((path, old))
        except BaseException:
            for path, old in reversed(previous):
                if old is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(old)
            raise
    finally:
        for _, tmp_name in staged:
            Path(tmp_name).unlink(missing_ok=True)
