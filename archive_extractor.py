"""
Archive extraction for downloaded mods.

Each downloaded archive is extracted into its own *artifact folder* under the
install root, named after the archive without its extension:

    downloads/Patch for Purists-45096-4-0-2.7z
        -> <install root>/Patch for Purists-45096-4-0-2/

Extraction is skipped when the artifact folder already exists, which makes a
re-run cheap.  A folder left behind by an interrupted extraction is not
detected; delete it by hand to force a fresh extraction.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable

import py7zr
import rarfile

from errors import ArchiveFormatError

_log = logging.getLogger(__name__)

# Bundled UnRAR.exe for Windows users without unrar/bsdtar on PATH
_unrar = Path(__file__).parent / "assets" / "UnRAR.exe"
if _unrar.exists():
    rarfile.UNRAR_TOOL = str(_unrar)

SUPPORTED_EXTENSIONS = {".zip", ".7z", ".rar"}


def is_supported_archive(path: str | Path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def artifact_folder_name(file_name: str) -> str:
    """Archive file name minus its archive extension."""
    suffix = PurePosixPath(file_name.replace("\\", "/")).suffix
    if suffix.lower() in SUPPORTED_EXTENSIONS:
        return file_name[: -len(suffix)]
    return file_name


def _member_target(dest: Path, member: str) -> Path:
    """Destination path for an archive member, refusing paths outside dest."""
    rel = PurePosixPath(member.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts:
        raise ArchiveFormatError(
            f"Archive member escapes the extraction folder: {member}",
            context={"member": member},
        )
    return dest.joinpath(*rel.parts)


# ── Per-format extractors ─────────────────────────────────────────────


def _clone_zip_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dest: Path) -> None:
    target = _member_target(dest, info.filename)
    folder = target if info.is_dir() else target.parent
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        _log.warning("Could not create %s, skipping %s: %s", folder, info.filename, exc)
        return
    if info.is_dir():
        return

    # Zip entries carry no portable permissions; files are created fresh
    try:
        with zf.open(info) as src, open(target, "xb") as dst:
            shutil.copyfileobj(src, dst)
    except FileExistsError:
        _log.debug("Already exists, keeping existing file: %s", target)


def _extract_zip(archive_path: Path, dest: Path, password: str | None) -> None:
    with zipfile.ZipFile(archive_path, "r") as zf:
        if password:
            zf.setpassword(password.encode("utf-8"))
        dest.mkdir(parents=True, exist_ok=True)
        for info in zf.infolist():
            _clone_zip_entry(zf, info, dest)


def _extract_7z(archive_path: Path, dest: Path, password: str | None) -> None:
    with py7zr.SevenZipFile(archive_path, "r", password=password) as sz:
        for name in sz.getnames():
            _member_target(dest, name)
        dest.mkdir(parents=True, exist_ok=True)
        sz.extractall(path=dest)


def _extract_rar(archive_path: Path, dest: Path, password: str | None) -> None:
    with rarfile.RarFile(archive_path, "r") as rf:
        if password:
            rf.setpassword(password)
        for info in rf.infolist():
            _member_target(dest, info.filename)
        dest.mkdir(parents=True, exist_ok=True)
        rf.extractall(dest)


_EXTRACTORS: dict[str, Callable[[Path, Path, str | None], None]] = {
    ".zip": _extract_zip,
    ".7z": _extract_7z,
    ".rar": _extract_rar,
}


# ── Public API ────────────────────────────────────────────────────────


def extract(
    archive_path: str | Path, dest_dir: str | Path, password: str | None = None
) -> bool:
    """Extract ``archive_path`` into ``dest_dir``.

    Returns True when an extraction happened and False when ``dest_dir``
    already existed.  Raises ``ArchiveFormatError`` for unsupported, missing
    or unreadable archives.
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    ext = archive_path.suffix.lower()

    extractor = _EXTRACTORS.get(ext)
    if extractor is None:
        raise ArchiveFormatError(
            f"Unsupported archive format: {ext or archive_path.name}",
            context={"archive": str(archive_path)},
        )

    if dest_dir.exists():
        _log.info("Already extracted, skipping: %s", dest_dir.name)
        return False

    if not archive_path.is_file():
        raise ArchiveFormatError(
            f"Archive not found: {archive_path}", context={"archive": str(archive_path)}
        )

    _log.info("Extracting %s -> %s", archive_path.name, dest_dir)
    try:
        extractor(archive_path, dest_dir, password)
    except FileExistsError as exc:
        _log.debug("Ignoring existing file during extraction: %s", exc)
    except ArchiveFormatError:
        raise
    except Exception as exc:
        raise ArchiveFormatError(
            f"Extraction of {archive_path.name} failed: {exc}",
            context={"archive": str(archive_path), "dest": str(dest_dir)},
        ) from exc
    return True
