"""
Runner for DeltaPlugin, the external plugin-merge tool.

``delta_plugin --openmw-cfg <cfg> merge <out>`` reads every plugin enabled in
openmw.cfg and writes a single merged plugin.  The configured path may point
at the executable itself, at a folder containing it, or at a downloaded
release archive, which is extracted beside itself on first use.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional

from archive_extractor import artifact_folder_name, extract, is_supported_archive
from config_document import CONFIG_FILENAME
from errors import ExternalToolError

DELTA_EXE_STEM = "delta_plugin"
DELTA_FOLDER_NAME = "DeltaPlugin"
MERGED_PLUGIN_NAME = "DeltaPluginMerged.omwaddon"

_log = logging.getLogger(__name__)


def _find_in_folder(folder: Path) -> Path | None:
    candidates = sorted(
        p for p in folder.rglob(f"{DELTA_EXE_STEM}*")
        if p.is_file() and p.suffix.lower() in ("", ".exe")
    )
    return candidates[0] if candidates else None


class DeltaPlugin:
    def __init__(
        self,
        path: str | Path,
        timeout: int = 600,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.path = Path(path)
        self.timeout = timeout
        self._log_cb = log_callback or _log.info

    def log(self, msg: str):
        self._log_cb(msg)

    def resolve_executable(self) -> Path:
        path = self.path
        if not path.exists():
            raise ExternalToolError(f"Delta Plugin not found: {path}")

        if path.is_dir():
            exe = _find_in_folder(path)
        elif is_supported_archive(path):
            folder = path.parent / artifact_folder_name(path.name)
            extract(path, folder)
            exe = _find_in_folder(folder)
        else:
            exe = path

        if exe is None:
            raise ExternalToolError(f"Delta Plugin not found in {path}")
        return exe

    def run(self, config_path: Path, output_path: Path) -> tuple[bool, str]:
        """Run the merge; returns (success, combined output)."""
        exe = self.resolve_executable()
        cmd = [str(exe), "--openmw-cfg", str(config_path), "merge", str(output_path)]
        self.log(f"Running Delta Plugin: {exe}")

        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return False, f"Delta Plugin timed out after {self.timeout} seconds"
        except OSError as exc:
            return False, f"Error running Delta Plugin: {exc}"

        output = proc.stdout or ""
        self.log(f"  Delta Plugin exited with code {proc.returncode}")
        for line in output.strip().split("\n")[-10:]:
            if line:
                self.log(f"  [delta] {line}")
        return proc.returncode == 0, output

    def merge(self, config_dir: Path, output_dir: Path) -> Path:
        """Merge all enabled plugins into ``output_dir``; returns the plugin path."""
        output_dir.mkdir(parents=True, exist_ok=True)
        merged = output_dir / MERGED_PLUGIN_NAME
        success, output = self.run(config_dir / CONFIG_FILENAME, merged)
        if not success:
            raise ExternalToolError(
                f"Delta Plugin merge failed: {output.strip()[-500:]}",
                context={"config_dir": str(config_dir), "output": str(merged)},
            )
        return merged
