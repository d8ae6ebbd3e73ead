"""
Instruction interpreter that composes openmw.cfg and settings.cfg.

The composer keeps no state between steps.  It is handed the current
``ConfigPartition`` (non-content lines and content lines, as read from
disk), applies one instruction, and for instructions that rewrite
openmw.cfg hands back a partition re-read from the file it just wrote.
Because every step starts from what is actually on disk, steps compose no
matter which of them last touched the file, and a run that died half way can
pick up from the file as it is.

Content directives always end up at the tail of the document when data-like
lines are added, so plugin load order is only ever changed by CONTENT and
DELTA_PLUGIN steps.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable

from archive_extractor import artifact_folder_name
from config_document import (
    CONFIG_FILENAME,
    SETTINGS_FILENAME,
    ConfigDocument,
    ConfigPartition,
    content_line,
    data_line,
    is_base_master,
    resources_line,
)
from delta_plugin import DELTA_FOLDER_NAME, MERGED_PLUGIN_NAME, DeltaPlugin
from errors import ConfigIOError, ExternalToolError, ResolutionError, UnknownInstructionError
from fileio import read_lines
from instructions import (
    ContentInstruction,
    DataDirectInstruction,
    DataInstruction,
    DeleteListByFileInstruction,
    DeleteListInstruction,
    DeltaPluginInstruction,
    InstallToFolderInstruction,
    Instruction,
    ResourcesInstruction,
    SettingsInstruction,
    compile_step,
)
from preset_schema import ManifestRecord, UnpackStep

_log = logging.getLogger(__name__)


class ConfigComposer:
    """
    Applies unpack instructions for one preset.

    ``install_root`` holds the extracted artifact folders, ``config_dir`` the
    preset's openmw.cfg and settings.cfg.  Relative list files for
    DELETE_LIST_BY_FILE are looked up in ``list_dir`` (the preset folder by
    default).
    """

    def __init__(
        self,
        install_root: str | Path,
        config_dir: str | Path,
        list_dir: str | Path | None = None,
        delta_plugin: DeltaPlugin | None = None,
    ):
        self.install_root = Path(install_root)
        self.config_dir = Path(config_dir)
        self.list_dir = Path(list_dir) if list_dir is not None else self.config_dir
        self.delta_plugin = delta_plugin

        self._handlers: dict[type[Instruction], Callable] = {
            DataInstruction: self._apply_data,
            DataDirectInstruction: self._apply_data_direct,
            ResourcesInstruction: self._apply_resources,
            ContentInstruction: self._apply_content,
            SettingsInstruction: self._apply_settings,
            DeleteListInstruction: self._apply_delete_list,
            DeleteListByFileInstruction: self._apply_delete_list_by_file,
            InstallToFolderInstruction: self._apply_install_to_folder,
            DeltaPluginInstruction: self._apply_delta_plugin,
        }

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    @property
    def settings_path(self) -> Path:
        return self.config_dir / SETTINGS_FILENAME

    @property
    def delta_folder(self) -> Path:
        return self.install_root / DELTA_FOLDER_NAME

    def load_partition(self) -> ConfigPartition:
        return ConfigDocument.load(self.config_path).partition()

    def artifact_dir(self, record: ManifestRecord) -> Path:
        return self.install_root / artifact_folder_name(record.file_name)

    def _artifact_path(self, record: ManifestRecord, rel: str) -> str:
        return (self.artifact_dir(record) / rel).as_posix()

    # ── Dispatch ──────────────────────────────────────────────────────

    def apply(
        self,
        instruction: Instruction,
        record: ManifestRecord | None,
        partition: ConfigPartition,
    ) -> ConfigPartition:
        """Apply one instruction and return the partition for the next step."""
        handler = self._handlers.get(type(instruction))
        if handler is None:
            raise UnknownInstructionError(
                f"No handler for instruction {type(instruction).__name__}"
            )
        if instruction.needs_artifact and record is None:
            raise ResolutionError(
                f"{instruction.kind.value} step needs a downloaded mod "
                f"(modId {instruction.mod_id}, fileIndex {instruction.file_index})",
                context={"mod_id": instruction.mod_id, "file_index": instruction.file_index},
            )

        _log.debug("Applying %s (mod %s)", instruction.kind.value, instruction.mod_id)
        handler(instruction, record, partition)

        if instruction.rewrites_config:
            return self.load_partition()
        return partition

    def apply_step(
        self,
        step: UnpackStep,
        record: ManifestRecord | None,
        partition: ConfigPartition,
    ) -> ConfigPartition:
        return self.apply(compile_step(step), record, partition)

    # ── openmw.cfg ────────────────────────────────────────────────────

    def _write_partition(self, partition: ConfigPartition, new_lines: list[str]) -> None:
        ConfigDocument(partition.joined(new_lines)).save(self.config_path)

    def _apply_data(self, ins: DataInstruction, record, partition):
        lines = [data_line(self._artifact_path(record, p)) for p in ins.paths]
        self._write_partition(partition, lines)

    def _apply_data_direct(self, ins: DataDirectInstruction, record, partition):
        self._write_partition(partition, list(ins.lines))

    def _apply_resources(self, ins: ResourcesInstruction, record, partition):
        lines = [resources_line(self._artifact_path(record, p)) for p in ins.paths]
        self._write_partition(partition, lines)

    def _apply_content(self, ins: ContentInstruction, record, partition):
        doc = ConfigDocument.load(self.config_path)
        doc.append(*(content_line(p) for p in ins.plugins))
        doc.save(self.config_path)

    def _apply_delta_plugin(self, ins: DeltaPluginInstruction, record, partition):
        if self.delta_plugin is None:
            raise ExternalToolError("DELTA_PLUGIN step found but no Delta Plugin path is set")

        merged_content = content_line(MERGED_PLUGIN_NAME)
        merged_data = data_line(self.delta_folder.as_posix())

        def is_previous_merge(line: str) -> bool:
            return line.strip() in (merged_content, merged_data)

        # The merge tool reads openmw.cfg, so masters must be loaded first
        doc = ConfigDocument.load(self.config_path)
        doc.remove_where(is_previous_merge)
        doc.normalize_base_content()
        doc.save(self.config_path)

        self.delta_plugin.merge(self.config_dir, self.delta_folder)

        # openmw --replace=config still adds the masters from the global
        # config, so they must not be listed twice
        doc = ConfigDocument.load(self.config_path)
        doc.remove_where(is_base_master)
        doc.remove_where(is_previous_merge)
        doc.append(merged_data, merged_content)
        doc.save(self.config_path)

    # ── settings.cfg ──────────────────────────────────────────────────

    def _apply_settings(self, ins: SettingsInstruction, record, partition):
        try:
            doc = ConfigDocument.load_or_empty(self.settings_path)
            doc.append(*ins.lines)
            doc.save(self.settings_path)
        except ConfigIOError as exc:
            _log.warning("Settings were not merged: %s", exc)

    # ── Artifact folder ───────────────────────────────────────────────

    @staticmethod
    def _within(base: Path, target: Path, allow_base: bool = False) -> bool:
        base, target = base.resolve(), target.resolve()
        return base in target.parents or (allow_base and target == base)

    def _delete(self, folder: Path, rel: str) -> None:
        target = folder / rel
        if not self._within(folder, target):
            _log.warning("Refusing to delete %r, it is not inside %s", rel, folder)
            return
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
            _log.debug("Deleted %s", target)
        except FileNotFoundError:
            _log.debug("Already gone: %s", target)
        except OSError as exc:
            _log.warning("Could not delete %s: %s", target, exc)

    def _apply_delete_list(self, ins: DeleteListInstruction, record, partition):
        folder = self.artifact_dir(record)
        for rel in ins.paths:
            self._delete(folder, rel)

    def _apply_delete_list_by_file(self, ins: DeleteListByFileInstruction, record, partition):
        folder = self.artifact_dir(record)
        for list_file in ins.list_files:
            path = Path(list_file)
            if not path.is_absolute():
                path = self.list_dir / path
            try:
                entries = read_lines(path)
            except OSError as exc:
                raise ConfigIOError(
                    f"Could not read delete list {path}: {exc}", context={"path": str(path)}
                ) from exc
            for rel in entries:
                rel = rel.strip()
                if rel and not rel.startswith("#"):
                    self._delete(folder, rel)

    def _apply_install_to_folder(self, ins: InstallToFolderInstruction, record, partition):
        folder = self.artifact_dir(record)
        for pair in ins.pairs:
            src = folder / pair.source
            dst = self.config_dir / pair.destination
            if not (
                self._within(folder, src, allow_base=True)
                and self._within(self.config_dir, dst, allow_base=True)
            ):
                _log.warning("Refusing to copy %s -> %s, a path leaves its folder", src, dst)
                continue
            if not src.exists():
                _log.warning("Nothing to copy, %s does not exist", src)
                continue
            try:
                if src.is_dir():
                    shutil.copytree(src, dst, dirs_exist_ok=True)
                else:
                    dst.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(src, dst)
                _log.debug("Copied %s -> %s", src, dst)
            except OSError as exc:
                _log.warning("Could not copy %s -> %s: %s", src, dst, exc)
