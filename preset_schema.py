"""
Preset and manifest schema for Aradir.

A *preset* is an author-defined mod list stored at
``presets/<name>/<name>.yaml``.  It lists what to download and, in order,
the unpack steps that wire the extracted mods into openmw.cfg.  The keys are
camelCase because presets are authored by hand and shared between users:

    name: total-overhaul
    lastModified: 1700000000
    listUrl: https://example.org/lists/total-overhaul
    downloadSteps:
      - type: nexus
        modId: 46599
        siteFileName: Patch for Purists
    unpackSteps:
      - modId: 46599
        fileIndex: 0
        type: DATA
        data:
          - "."
      - type: CONTENT
        data:
          - Patch for Purists.esm

A *manifest* records, per preset, which archive actually landed on disk for
each download step.  It lives at ``manifests/<listName>-manifest.yaml`` and is
what makes a re-run skip work that is already done.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from errors import ManifestError, PresetError, ResolutionError
from fileio import atomic_write_text

PRESET_SUFFIX = ".yaml"
MANIFEST_SUFFIX = "-manifest.yaml"

_log = logging.getLogger(__name__)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class DownloadStep(_Record):
    """One mod file to acquire.  ``type`` names the download source."""

    type: str = "nexus"
    mod_id: int = Field(alias="modId")
    site_file_name: str = Field(alias="siteFileName")


class UnpackStep(_Record):
    """One raw instruction as written by the preset author.

    ``type`` is matched exactly (``DATA``, not ``data``).  ``data`` means
    different things for different ``type`` values; see
    ``instructions.compile_step`` for the typed view.
    """

    mod_id: int = Field(0, alias="modId")
    file_index: int = Field(0, alias="fileIndex")
    type: str
    data: list[str] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        # YAML turns bare numbers and booleans into non-strings
        if v is None:
            return []
        if isinstance(v, list):
            return [item if isinstance(item, str) else str(item) for item in v]
        return v


class Preset(_Record):
    name: str
    last_modified: int = Field(0, alias="lastModified")
    list_url: str = Field(
        "",
        validation_alias=AliasChoices("listUrl", "sourceUrl", "list_url"),
        serialization_alias="listUrl",
    )
    download_steps: list[DownloadStep] = Field(default_factory=list, alias="downloadSteps")
    unpack_steps: list[UnpackStep] = Field(default_factory=list, alias="unpackSteps")

    @field_validator("download_steps", "unpack_steps", mode="before")
    @classmethod
    def _empty_list(cls, v: Any) -> Any:
        return [] if v is None else v


class ManifestRecord(_Record):
    file_name: str = Field(alias="fileName")
    mod_id: int = Field(alias="modId")
    file_display_name: str = Field(alias="fileDisplayName")


class Manifest(BaseModel):
    """Append-only log of archives downloaded for one preset."""

    model_config = ConfigDict(populate_by_name=True)

    list_name: str = Field(alias="listName")
    created: int = Field(default_factory=lambda: int(time.time()))
    records: list[ManifestRecord] = Field(default_factory=list)

    @field_validator("records", mode="before")
    @classmethod
    def _empty_records(cls, v: Any) -> Any:
        return [] if v is None else v

    def add_record(self, record: ManifestRecord) -> None:
        self.records.append(record)

    def records_for(self, mod_id: int) -> list[ManifestRecord]:
        return [rec for rec in self.records if rec.mod_id == mod_id]

    def resolve(self, mod_id: int, file_index: int) -> ManifestRecord:
        """Return the ``file_index``-th record downloaded for ``mod_id``.

        Position is arrival order in the manifest, so re-ordering download
        steps or re-downloading only part of a mod changes what an index
        points at.
        """
        matched = self.records_for(mod_id)
        if not matched:
            raise ResolutionError(
                f"No downloaded file recorded for mod {mod_id}",
                context={"mod_id": mod_id, "file_index": file_index},
            )
        if file_index < 0 or file_index >= len(matched):
            raise ResolutionError(
                f"Mod {mod_id} has {len(matched)} recorded file(s); "
                f"fileIndex {file_index} is out of range",
                context={"mod_id": mod_id, "file_index": file_index},
            )
        return matched[file_index]


# ── Presets ───────────────────────────────────────────────────────────


def preset_dir(presets_dir: Path, name: str) -> Path:
    return Path(presets_dir) / name


def preset_path(presets_dir: Path, name: str) -> Path:
    return preset_dir(presets_dir, name) / f"{name}{PRESET_SUFFIX}"


def parse_preset(data: str | bytes) -> Preset:
    """Parse YAML text into a Preset.

    Raises ``PresetError`` when the YAML is invalid or does not match the
    schema.
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise PresetError(f"Preset is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise PresetError("Preset must be a YAML mapping")
    try:
        return Preset.model_validate(raw)
    except ValidationError as exc:
        raise PresetError(f"Invalid preset: {exc}") from exc


def load_preset(presets_dir: Path, name: str) -> Preset:
    """Load ``presets/<name>/<name>.yaml``.

    The returned preset is always named ``name``: its folder, config files and
    manifest are keyed on the name it was loaded under, whatever the file
    itself declares.
    """
    path = preset_path(presets_dir, name)
    if not path.is_file():
        raise PresetError(f"Preset not found: {path}", context={"preset": name})
    try:
        preset = parse_preset(path.read_text(encoding="utf-8"))
    except PresetError as exc:
        exc.context.setdefault("path", str(path))
        raise
    if preset.name != name:
        _log.warning("Preset file %s declares name %r, using %r", path, preset.name, name)
        preset = preset.model_copy(update={"name": name})
    return preset


def list_presets(presets_dir: Path) -> list[str]:
    """Names of all presets that have a ``<name>/<name>.yaml`` file."""
    presets_dir = Path(presets_dir)
    if not presets_dir.is_dir():
        return []
    return sorted(
        d.name for d in presets_dir.iterdir()
        if d.is_dir() and preset_path(presets_dir, d.name).is_file()
    )


# ── Manifests ─────────────────────────────────────────────────────────


def manifest_path(manifests_dir: Path, list_name: str) -> Path:
    return Path(manifests_dir) / f"{list_name}{MANIFEST_SUFFIX}"


def load_manifest(manifests_dir: Path, list_name: str) -> Manifest:
    """Load the manifest for ``list_name``, or start a fresh one."""
    path = manifest_path(manifests_dir, list_name)
    if not path.exists():
        return Manifest(list_name=list_name)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ManifestError(f"Manifest must be a YAML mapping: {path}")
        return Manifest.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as exc:
        raise ManifestError(
            f"Could not parse manifest {path}: {exc}", context={"path": str(path)}
        ) from exc


def save_manifest(manifest: Manifest, manifests_dir: Path) -> Path:
    path = manifest_path(manifests_dir, manifest.list_name)
    text = yaml.safe_dump(
        manifest.model_dump(by_alias=True), sort_keys=False, allow_unicode=True
    )
    atomic_write_text(path, text)
    return path


def reset_manifest(manifests_dir: Path, list_name: str) -> bool:
    """Forget every download recorded for ``list_name``."""
    path = manifest_path(manifests_dir, list_name)
    if path.exists():
        path.unlink()
        return True
    return False
