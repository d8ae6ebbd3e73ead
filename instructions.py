"""
Typed unpack instructions.

Preset authors write unpack steps as ``{type, modId, fileIndex, data}`` where
``data`` is a flat list of strings whose meaning depends on ``type``.  Before
anything touches openmw.cfg every step is compiled into one of the closed set
of instruction classes below, each carrying only the payload it needs.  An
unknown type or a payload that does not fit its type fails here, so a bad
preset aborts the run before the config document is modified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath, PureWindowsPath
from typing import Callable, ClassVar

from errors import MalformedInstructionError, UnknownInstructionError
from preset_schema import UnpackStep

_log = logging.getLogger(__name__)


class StepType(str, Enum):
    DATA = "DATA"  # data="<install>/<artifact>/<path>" lines
    DATA_DIRECT = "DATA_DIRECT"  # lines copied verbatim
    CONTENT = "CONTENT"  # content=<plugin> lines
    SETTINGS = "SETTINGS"  # lines merged into settings.cfg
    RESOURCES = "RESOURCES"  # resources="<install>/<artifact>/<path>" lines
    DELETE_LIST = "DELETE_LIST"
    DELETE_LIST_BY_FILE = "DELETE_LIST_BY_FILE"
    INSTALL_TO_OMW_FOLDER = "INSTALL_TO_OMW_FOLDER"
    DELTA_PLUGIN = "DELTA_PLUGIN"


@dataclass(frozen=True)
class CopyPair:
    source: str  # relative to the artifact folder
    destination: str  # relative to the preset config dir


@dataclass(frozen=True, kw_only=True)
class Instruction:
    mod_id: int = 0
    file_index: int = 0

    kind: ClassVar[StepType]
    # Needs a resolved manifest record / artifact folder to run
    needs_artifact: ClassVar[bool] = False
    # Rewrites openmw.cfg, so partitions must be re-read afterwards
    rewrites_config: ClassVar[bool] = False

    @property
    def has_artifact(self) -> bool:
        return self.mod_id > 0


@dataclass(frozen=True, kw_only=True)
class DataInstruction(Instruction):
    paths: tuple[str, ...] = ()

    kind = StepType.DATA
    needs_artifact = True
    rewrites_config = True


@dataclass(frozen=True, kw_only=True)
class DataDirectInstruction(Instruction):
    lines: tuple[str, ...] = ()

    kind = StepType.DATA_DIRECT
    rewrites_config = True


@dataclass(frozen=True, kw_only=True)
class ResourcesInstruction(Instruction):
    paths: tuple[str, ...] = ()

    kind = StepType.RESOURCES
    needs_artifact = True
    rewrites_config = True


@dataclass(frozen=True, kw_only=True)
class ContentInstruction(Instruction):
    plugins: tuple[str, ...] = ()

    kind = StepType.CONTENT
    rewrites_config = True


@dataclass(frozen=True, kw_only=True)
class SettingsInstruction(Instruction):
    lines: tuple[str, ...] = ()

    kind = StepType.SETTINGS


@dataclass(frozen=True, kw_only=True)
class DeleteListInstruction(Instruction):
    paths: tuple[str, ...] = ()

    kind = StepType.DELETE_LIST
    needs_artifact = True


@dataclass(frozen=True, kw_only=True)
class DeleteListByFileInstruction(Instruction):
    list_files: tuple[str, ...] = ()

    kind = StepType.DELETE_LIST_BY_FILE
    needs_artifact = True


@dataclass(frozen=True, kw_only=True)
class InstallToFolderInstruction(Instruction):
    pairs: tuple[CopyPair, ...] = ()

    kind = StepType.INSTALL_TO_OMW_FOLDER
    needs_artifact = True


@dataclass(frozen=True, kw_only=True)
class DeltaPluginInstruction(Instruction):
    kind = StepType.DELTA_PLUGIN
    rewrites_config = True


def _relative(step: UnpackStep, value: str, *, allow_root: bool) -> str:
    """Reject paths that would leave the folder they are relative to."""
    rel = PurePosixPath(value.strip().replace("\\", "/"))
    if rel.is_absolute() or PureWindowsPath(value).drive or ".." in rel.parts:
        problem = "must stay inside its folder"
    elif not rel.parts and not allow_root:
        problem = "must name a file or folder, not the folder itself"
    else:
        return value
    raise MalformedInstructionError(
        f"{step.type} path {value!r} {problem}",
        context={"mod_id": step.mod_id, "path": value},
    )


def _paths(step: UnpackStep) -> tuple[str, ...]:
    return tuple(_relative(step, p, allow_root=False) for p in step.data)


def _pairs(step: UnpackStep) -> tuple[CopyPair, ...]:
    if len(step.data) % 2:
        raise MalformedInstructionError(
            f"{StepType.INSTALL_TO_OMW_FOLDER.value} expects (source, destination) pairs, "
            f"got {len(step.data)} value(s)",
            context={"mod_id": step.mod_id, "data": list(step.data)},
        )
    it = iter(step.data)
    return tuple(
        CopyPair(
            source=_relative(step, src, allow_root=True),
            destination=_relative(step, dst, allow_root=True),
        )
        for src, dst in zip(it, it)
    )


_BUILDERS: dict[StepType, Callable[[UnpackStep, dict], Instruction]] = {
    StepType.DATA: lambda s, ids: DataInstruction(paths=tuple(s.data), **ids),
    StepType.DATA_DIRECT: lambda s, ids: DataDirectInstruction(lines=tuple(s.data), **ids),
    StepType.RESOURCES: lambda s, ids: ResourcesInstruction(paths=tuple(s.data), **ids),
    StepType.CONTENT: lambda s, ids: ContentInstruction(plugins=tuple(s.data), **ids),
    StepType.SETTINGS: lambda s, ids: SettingsInstruction(lines=tuple(s.data), **ids),
    StepType.DELETE_LIST: lambda s, ids: DeleteListInstruction(paths=_paths(s), **ids),
    StepType.DELETE_LIST_BY_FILE: lambda s, ids: DeleteListByFileInstruction(
        list_files=tuple(s.data), **ids
    ),
    StepType.INSTALL_TO_OMW_FOLDER: lambda s, ids: InstallToFolderInstruction(
        pairs=_pairs(s), **ids
    ),
    StepType.DELTA_PLUGIN: lambda s, ids: DeltaPluginInstruction(**ids),
}


def compile_step(step: UnpackStep) -> Instruction:
    """Turn a raw unpack step into its typed instruction.

    ``type`` must match a ``StepType`` value exactly, case included.
    Raises ``UnknownInstructionError`` for an unrecognised ``type`` and
    ``MalformedInstructionError`` when ``data`` does not fit the type.
    """
    try:
        kind = StepType(step.type)
    except ValueError:
        raise UnknownInstructionError(
            f"Unknown instruction type: {step.type!r}",
            context={"mod_id": step.mod_id, "type": step.type},
        ) from None
    ids = {"mod_id": step.mod_id, "file_index": step.file_index}
    return _BUILDERS[kind](step, ids)


def compile_steps(steps: list[UnpackStep]) -> list[Instruction]:
    """Compile a whole step list, failing on the first bad step."""
    instructions = [compile_step(step) for step in steps]

    delta_positions = [
        i for i, ins in enumerate(instructions) if isinstance(ins, DeltaPluginInstruction)
    ]
    if delta_positions:
        late_content = [
            i for i, ins in enumerate(instructions)
            if isinstance(ins, ContentInstruction) and i > delta_positions[0]
        ]
        if late_content:
            _log.warning(
                "CONTENT step(s) at position(s) %s come after DELTA_PLUGIN and "
                "will not be part of the merged plugin",
                late_content,
            )
    return instructions
