#!/usr/bin/env python3
"""Aradir - OpenMW mod list installer, entry point"""

from __future__ import annotations

import argparse
import faulthandler
import logging
import os
import subprocess
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from errors import AradirError
from instructions import StepType
from pipeline import InstallPipeline
from preferences import PREFERENCES_FILENAME, Preferences, load_preferences
from preset_schema import list_presets, load_preset, reset_manifest

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(message)s"
LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUPS = 2
FILE_HANDLER = "aradir-file"
CONSOLE_HANDLER = "aradir-console"


def _log_dir() -> Path:
    return Path(os.environ.get("APPDATA") or Path.home()) / "Aradir"


def setup_logging(verbose: bool = False) -> tuple[logging.Logger, Path]:
    """Send every module's records to aradir.log and the console.

    Handlers from an earlier call are replaced rather than stacked.
    """
    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_dir / "aradir.log", maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    file_handler.set_name(FILE_HANDLER)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console = logging.StreamHandler(sys.stderr)
    console.set_name(CONSOLE_HANDLER)
    console.setFormatter(logging.Formatter("%(message)s"))
    console.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Library modules log under their own names, so attach at the root
    root = logging.getLogger()
    for old in [h for h in root.handlers if h.get_name() in (FILE_HANDLER, CONSOLE_HANDLER)]:
        root.removeHandler(old)
        old.close()
    root.setLevel(logging.DEBUG)
    root.addHandler(file_handler)
    root.addHandler(console)
    return logging.getLogger("aradir"), log_dir


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    def log_unhandled(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))

    sys.excepthook = log_unhandled

    # Native crashes never reach logging
    if not faulthandler.is_enabled():
        faulthandler.enable((log_dir / "crash.log").open("w"), all_threads=True)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Download and install an OpenMW mod list")
    parser.add_argument("--workspace", default=".", help="Folder holding presets/ and manifests/")
    parser.add_argument("--preferences", help=f"Preferences file (default: <workspace>/{PREFERENCES_FILENAME})")
    parser.add_argument("--preset", help="Preset name")
    parser.add_argument("--downloads", help="Downloads folder path")
    parser.add_argument("--modinstall", help="Mods install folder path")
    parser.add_argument("--gamedata", help="Game data folder path")
    parser.add_argument("--settings", help="OpenMW settings folder path")
    parser.add_argument("--openmw", help="OpenMW install folder path")
    parser.add_argument("--delta", help="Delta Plugin path")
    parser.add_argument("--nodownload", action="store_true", default=None, help="Skip downloading mods")
    parser.add_argument(
        "--shared-install-folder", action="store_true", default=None,
        help="Extract every preset into one shared install folder",
    )
    parser.add_argument("--skip-extract", action="store_true", help="Don't extract archives")
    parser.add_argument("--reset", action="store_true", help="Forget downloads recorded for the preset")
    parser.add_argument("--list", action="store_true", help="List available presets and exit")
    parser.add_argument("--launch", action="store_true", help="Start OpenMW with the preset config")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def resolve_preferences(args: argparse.Namespace) -> Preferences:
    prefs_path = Path(args.preferences) if args.preferences else Path(args.workspace) / PREFERENCES_FILENAME
    return load_preferences(prefs_path).with_overrides(
        preset=args.preset,
        downloads=args.downloads,
        modinstall=args.modinstall,
        gamedata=args.gamedata,
        settings=args.settings,
        openmw=args.openmw,
        delta=args.delta,
        nodownload=args.nodownload,
        shared_install_folder=args.shared_install_folder,
    )


def launch_openmw(openmw_dir: str | Path, config_dir: Path) -> subprocess.Popen:
    exe_name = "openmw.exe" if sys.platform == "win32" else "openmw"
    exe = Path(openmw_dir) / exe_name
    return subprocess.Popen([str(exe), f"--config={config_dir}", "--replace=config"])


def run(args: argparse.Namespace, logger: logging.Logger) -> int:
    workspace = Path(args.workspace)

    if args.list:
        for name in list_presets(workspace / "presets"):
            print(name)
        return 0

    prefs = resolve_preferences(args)
    if not prefs.preset:
        logger.critical("Preset field is unset")
        return 1

    preset = load_preset(workspace / "presets", prefs.preset)
    need_delta = any(s.type == StepType.DELTA_PLUGIN.value for s in preset.unpack_steps)
    issues = prefs.validate_paths(need_delta=need_delta, need_openmw=args.launch)
    if issues:
        for issue in issues:
            logger.critical(issue)
        return 1

    if args.reset and reset_manifest(workspace / "manifests", preset.name):
        logger.info("Manifest for '%s' removed", preset.name)

    pipeline = InstallPipeline(prefs, workspace, log_callback=logger.info)
    config_dir = pipeline.run(prefs.preset, skip_extract=args.skip_extract)

    if args.launch:
        logger.info("Starting OpenMW with %s", config_dir)
        try:
            launch_openmw(prefs.openmw, config_dir)
        except OSError as exc:
            logger.error("Could not start OpenMW: %s", exc)
            return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger, log_dir = setup_logging(args.verbose)
    install_crash_handler(logger, log_dir)
    logger.debug("Starting Aradir")

    try:
        return run(args, logger)
    except AradirError as exc:
        logger.critical("%s", exc)
        logger.debug("Error details: %s", exc.to_dict())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
