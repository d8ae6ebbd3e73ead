"""
Line-oriented view of an OpenMW configuration file.

openmw.cfg is never parsed into a model.  It is an ordered list of opaque
lines; the installer only cares about three kinds of them:

    data="C:/Games/Morrowind/Data Files"     <- path directive (data=, resources=)
    content=Morrowind.esm                    <- content directive (load order!)
    fallback=Weather_Clear_Cloud_Texture,... <- anything else, passed through

Lines the engine or the user wrote that we don't understand survive every
rewrite unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator

from errors import ConfigIOError
from fileio import dedupe, read_lines, write_lines

CONFIG_FILENAME = "openmw.cfg"
SETTINGS_FILENAME = "settings.cfg"

CONTENT_PREFIX = "content="
DATA_PREFIX = "data="
RESOURCES_PREFIX = "resources="
PATH_PREFIXES = (DATA_PREFIX, RESOURCES_PREFIX)

# Load order of the base game masters; they must come before any mod plugin
BASE_MASTERS = ("Morrowind.esm", "Tribunal.esm", "Bloodmoon.esm")

_log = logging.getLogger(__name__)


def content_line(plugin: str) -> str:
    return f"{CONTENT_PREFIX}{plugin}"


def data_line(path: str) -> str:
    return f'{DATA_PREFIX}"{path}"'


def resources_line(path: str) -> str:
    return f'{RESOURCES_PREFIX}"{path}"'


def is_content(line: str) -> bool:
    return line.lstrip().startswith(CONTENT_PREFIX)


def is_path_directive(line: str) -> bool:
    return line.lstrip().startswith(PATH_PREFIXES)


def is_base_master(line: str) -> bool:
    if not is_content(line):
        return False
    plugin = line.strip()[len(CONTENT_PREFIX):].strip()
    return plugin.casefold() in {m.casefold() for m in BASE_MASTERS}


@dataclass(frozen=True)
class ConfigPartition:
    """The two working sets the composer threads between steps.

    ``config_lines`` is every non-content line, ``content_lines`` every
    content directive; both deduplicated, both in document order.
    """

    config_lines: tuple[str, ...] = ()
    content_lines: tuple[str, ...] = ()

    def joined(self, extra: Iterable[str] = ()) -> list[str]:
        """config lines, then ``extra``, then content lines at the tail."""
        return [*self.config_lines, *extra, *self.content_lines]


class ConfigDocument:
    def __init__(self, lines: Iterable[str] = ()):
        self._lines: list[str] = list(lines)

    # ── Storage ───────────────────────────────────────────────────────

    @classmethod
    def load(cls, path: Path) -> ConfigDocument:
        try:
            return cls(read_lines(Path(path)))
        except OSError as exc:
            raise ConfigIOError(
                f"Could not read {path}: {exc}", context={"path": str(path)}
            ) from exc

    @classmethod
    def load_or_empty(cls, path: Path) -> ConfigDocument:
        if not Path(path).exists():
            return cls()
        return cls.load(path)

    def save(self, path: Path) -> None:
        """Write the document back, dropping verbatim duplicates."""
        try:
            write_lines(Path(path), dedupe(self._lines))
        except OSError as exc:
            raise ConfigIOError(
                f"Could not write {path}: {exc}", context={"path": str(path)}
            ) from exc

    # ── Accessors ─────────────────────────────────────────────────────

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, line: object) -> bool:
        return line in self._lines

    def data_lines(self) -> list[str]:
        return [line for line in self._lines if is_path_directive(line)]

    def content_lines(self) -> list[str]:
        return [line for line in self._lines if is_content(line)]

    def other_lines(self) -> list[str]:
        return [
            line for line in self._lines
            if not is_content(line) and not is_path_directive(line)
        ]

    def partition(self) -> ConfigPartition:
        return ConfigPartition(
            config_lines=tuple(dedupe([l for l in self._lines if not is_content(l)])),
            content_lines=tuple(dedupe(self.content_lines())),
        )

    # ── Mutation ──────────────────────────────────────────────────────

    def append(self, *lines: str) -> None:
        self._lines.extend(lines)

    def remove_where(self, predicate: Callable[[str], bool]) -> int:
        before = len(self._lines)
        self._lines = [line for line in self._lines if not predicate(line)]
        return before - len(self._lines)

    def normalize_base_content(self) -> None:
        """Put the three base masters, in order, above every other plugin.

        Masters are pulled out from wherever they sit and re-inserted just
        above the first remaining content directive, or at the end of the
        document when there is none.
        """
        self.remove_where(is_base_master)
        masters = [content_line(m) for m in BASE_MASTERS]
        index = next(
            (i for i, line in enumerate(self._lines) if is_content(line)),
            len(self._lines),
        )
        self._lines[index:index] = masters
        _log.debug("Base masters placed at line %d", index)
