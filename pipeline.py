"""
Aradir - Install pipeline

Runs one preset end to end: download what is missing, extract every
downloaded archive, then compose the preset's openmw.cfg/settings.cfg from
its unpack steps.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from archive_extractor import artifact_folder_name, extract, is_supported_archive
from config_composer import ConfigComposer
from config_document import CONFIG_FILENAME, ConfigDocument
from delta_plugin import DeltaPlugin
from downloader import BrowserDownloadDriver, DownloadDriver
from errors import ConfigIOError, ManifestError
from instructions import compile_steps
from preferences import Preferences
from preset_schema import (
    Manifest,
    ManifestRecord,
    Preset,
    load_manifest,
    load_preset,
    manifest_path,
    preset_dir,
    save_manifest,
)
from resume_tracker import pending_steps, resume

PRESETS_DIRNAME = "presets"
MANIFESTS_DIRNAME = "manifests"


class InstallPipeline:
    """
    Main install controller.

    Workflow:
        1. download_phase() fetches downloads the manifest does not cover yet
        2. extract_phase() extracts each recorded archive into its artifact folder
        3. unpack_phase() copies the user's openmw.cfg into the preset folder
           and applies every unpack step to it
    """

    def __init__(
        self,
        prefs: Preferences,
        workspace: str | Path = ".",
        driver_factory: Optional[Callable[[], DownloadDriver]] = None,
        delta_plugin: DeltaPlugin | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.prefs = prefs
        self.workspace = Path(workspace)
        self.presets_dir = self.workspace / PRESETS_DIRNAME
        self.manifests_dir = self.workspace / MANIFESTS_DIRNAME
        self.download_dir = Path(prefs.downloads)
        self._log_cb = log_callback or print
        self._driver_factory = driver_factory or self._default_driver
        if delta_plugin is None and prefs.delta:
            delta_plugin = DeltaPlugin(prefs.delta, log_callback=self.log)
        self.delta_plugin = delta_plugin

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    def _default_driver(self) -> DownloadDriver:
        return BrowserDownloadDriver(self.download_dir, log_callback=self.log)

    # ── Paths ─────────────────────────────────────────────────────────

    def config_dir(self, preset: Preset) -> Path:
        return preset_dir(self.presets_dir, preset.name)

    def install_root(self, list_name: str) -> Path:
        return self.prefs.install_root(list_name)

    # ── Download ──────────────────────────────────────────────────────

    def download_phase(self, preset: Preset) -> Manifest:
        manifest = load_manifest(self.manifests_dir, preset.name)
        satisfied = resume(manifest, self.download_dir)
        pending = pending_steps(preset.download_steps, satisfied)

        total = len(preset.download_steps)
        if not pending:
            self.log(f"All {total} download(s) already present, skipping downloads")
            return manifest

        self.log(f"{len(pending)} of {total} download(s) missing")
        driver = self._driver_factory()
        for step in pending:
            self.log(f"Downloading '{step.site_file_name}' (mod {step.mod_id})...")
            file_name = driver.download(step)
            if not file_name:
                self.log(f"  WARNING: Nothing downloaded for '{step.site_file_name}', skipping")
                continue

            manifest.add_record(
                ManifestRecord(
                    file_name=file_name,
                    mod_id=step.mod_id,
                    file_display_name=step.site_file_name,
                )
            )
            save_manifest(manifest, self.manifests_dir)
            self.log(f"  Recorded {file_name}")

        return manifest

    # ── Extract ───────────────────────────────────────────────────────

    def extract_phase(self, manifest: Manifest) -> int:
        """Extract every recorded archive; returns how many were extracted."""
        root = self.install_root(manifest.list_name)
        extracted = 0
        for rec in manifest.records:
            if not is_supported_archive(rec.file_name):
                self.log(f"  {rec.file_name}: not an archive, skipping extraction")
                continue

            archive = self.download_dir / rec.file_name
            dest = root / artifact_folder_name(rec.file_name)
            if not archive.is_file() and not dest.exists():
                self.log(f"  WARNING: {rec.file_name} is missing from the downloads folder")
                continue

            if extract(archive, dest):
                extracted += 1
                self.log(f"  Extracted {rec.file_name}")

        self.log(f"Extraction complete: {extracted} new archive(s)")
        return extracted

    # ── Unpack ────────────────────────────────────────────────────────

    def _prepare_config(self, config_dir: Path) -> None:
        """Start from a fresh copy of the user's openmw.cfg."""
        source = Path(self.prefs.settings) / CONFIG_FILENAME
        if not source.is_file():
            raise ConfigIOError(f"{CONFIG_FILENAME} not found: {source}")
        ConfigDocument.load(source).save(config_dir / CONFIG_FILENAME)

    def unpack_phase(self, preset: Preset, manifest: Manifest) -> Path:
        # Every step is checked before the config is touched
        instructions = compile_steps(preset.unpack_steps)
        records = [
            manifest.resolve(ins.mod_id, ins.file_index) if ins.has_artifact else None
            for ins in instructions
        ]

        config_dir = self.config_dir(preset)
        self._prepare_config(config_dir)
        composer = ConfigComposer(
            self.install_root(manifest.list_name),
            config_dir,
            list_dir=config_dir,
            delta_plugin=self.delta_plugin,
        )

        partition = composer.load_partition()
        total = len(instructions)
        for i, (ins, rec) in enumerate(zip(instructions, records), start=1):
            label = f" {rec.file_display_name}" if rec else ""
            self.log(f"[{i}/{total}] {ins.kind.value}{label}")
            partition = composer.apply(ins, rec, partition)

        self.log(f"Unpack complete: {config_dir / CONFIG_FILENAME}")
        return config_dir

    # ── Run ───────────────────────────────────────────────────────────

    def run(self, preset_name: str | None = None, skip_extract: bool = False) -> Path:
        name = preset_name or self.prefs.preset
        preset = load_preset(self.presets_dir, name)
        self.log(f"Preset: {preset.name} ({len(preset.download_steps)} download(s), "
                 f"{len(preset.unpack_steps)} step(s))")

        if self.prefs.nodownload:
            if preset.download_steps and not manifest_path(self.manifests_dir, preset.name).exists():
                raise ManifestError(
                    f"No manifest for '{preset.name}'; run once without --nodownload first"
                )
            manifest = load_manifest(self.manifests_dir, preset.name)
        else:
            manifest = self.download_phase(preset)

        if not skip_extract:
            self.extract_phase(manifest)
        return self.unpack_phase(preset, manifest)
