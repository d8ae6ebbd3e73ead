"""
Small file helpers shared by the manifest store and the config composer.

All rewrites go through ``atomic_write_text``: the new content is written to
a temporary file beside the target and moved over it with ``os.replace``, so
an interrupted run never leaves a half-written openmw.cfg or manifest.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_text(path: Path, text: str) -> None:
    ensure_parent(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            tmp_path.unlink()
        raise


def read_lines(path: Path) -> list[str]:
    """Return the lines of a text file without line terminators."""
    return path.read_text(encoding="utf-8-sig").splitlines()


def write_lines(path: Path, lines: list[str]) -> None:
    atomic_write_text(path, "".join(f"{line}\n" for line in lines))


def dedupe(lines: list[str]) -> list[str]:
    """Drop repeated lines, keeping the first occurrence of each."""
    return list(dict.fromkeys(lines))
