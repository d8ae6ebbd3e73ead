"""
Download drivers.

The pipeline only needs something that, given a ``DownloadStep``, returns
the name of the finished file in the downloads folder (or ``""`` when
nothing arrived).  ``BrowserDownloadDriver`` does this with the user's own
browser: it opens the mod's Nexus Mods files tab and then watches the
downloads folder until a new, complete file shows up.
"""

from __future__ import annotations

import logging
import time
import webbrowser
from pathlib import Path
from typing import Callable, Optional, Protocol

from errors import DownloadError, UnknownInstructionError
from preset_schema import DownloadStep

NEXUS_MODS_URL = "https://www.nexusmods.com/morrowind/mods/"

# Browsers write to these while a download is still running
IN_PROGRESS_SUFFIXES = {".crdownload", ".part", ".partial", ".download", ".tmp"}

_log = logging.getLogger(__name__)


class DownloadDriver(Protocol):
    def download(self, step: DownloadStep) -> str: ...


def nexus_files_url(mod_id: int) -> str:
    return f"{NEXUS_MODS_URL}{mod_id}?tab=files"


def _is_in_progress(path: Path) -> bool:
    return path.suffix.lower() in IN_PROGRESS_SUFFIXES


def snapshot(download_dir: Path) -> set[str]:
    """Names of finished files currently in ``download_dir``."""
    if not download_dir.is_dir():
        return set()
    return {
        p.name for p in download_dir.iterdir()
        if p.is_file() and not _is_in_progress(p)
    }


def wait_for_download(
    download_dir: Path,
    known: set[str],
    timeout: float,
    poll_interval: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Block until a file not in ``known`` has finished downloading.

    A new file only counts once no in-progress browser file is left in the
    folder.  Raises ``DownloadError`` after ``timeout`` seconds.
    """
    deadline = clock() + timeout
    while True:
        new = snapshot(download_dir) - known
        busy = download_dir.is_dir() and any(
            _is_in_progress(p) for p in download_dir.iterdir() if p.is_file()
        )
        if new and not busy:
            return max(new, key=lambda name: (download_dir / name).stat().st_mtime)
        if clock() >= deadline:
            raise DownloadError(
                f"No finished download appeared in {download_dir} within {timeout:.0f}s",
                context={"download_dir": str(download_dir)},
            )
        sleep(poll_interval)


class BrowserDownloadDriver:
    def __init__(
        self,
        download_dir: str | Path,
        timeout: float = 900,
        poll_interval: float = 1.0,
        opener: Callable[[str], object] = webbrowser.open,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.download_dir = Path(download_dir)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._opener = opener
        self._log_cb = log_callback or _log.info

    def log(self, msg: str):
        self._log_cb(msg)

    def download(self, step: DownloadStep) -> str:
        if step.type.lower() != "nexus":
            raise UnknownInstructionError(
                f"Unsupported download source: {step.type!r}",
                context={"mod_id": step.mod_id},
            )

        known = snapshot(self.download_dir)
        url = nexus_files_url(step.mod_id)
        self.log(f"  Opening {url}")
        self.log(f"  Download the file named '{step.site_file_name}' (manual download)")
        self._opener(url)

        try:
            name = wait_for_download(
                self.download_dir, known, self.timeout, self.poll_interval
            )
        except DownloadError as exc:
            self.log(f"  WARNING: {exc.message}")
            return ""
        self.log(f"  Received: {name}")
        return name
