"""
Download resume tracking.

Given the manifest from a previous run and the downloads directory, work out
which download steps are already satisfied so a re-run only fetches what is
missing, and a re-run with nothing missing fetches nothing at all.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from preset_schema import DownloadStep, Manifest

_log = logging.getLogger(__name__)


def _file_present(path: Path) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        _log.warning("Could not check %s, treating it as not downloaded: %s", path, exc)
        return False
    return path.is_file()


def resume(manifest: Manifest, download_dir: str | Path) -> set[str]:
    """Return the display names of manifest records whose file is on disk."""
    download_dir = Path(download_dir)
    satisfied: set[str] = set()
    for rec in manifest.records:
        if not rec.file_name:
            continue
        if _file_present(download_dir / rec.file_name):
            satisfied.add(rec.file_display_name)
    return satisfied


def pending_steps(steps: list[DownloadStep], satisfied: set[str]) -> list[DownloadStep]:
    """Download steps still to fetch, in preset order."""
    return [step for step in steps if step.site_file_name not in satisfied]
