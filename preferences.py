"""
User preferences.

``preferences.yaml`` in the workspace holds the per-machine paths; any of
them can be overridden from the command line.

    preset: total-overhaul
    downloads: D:/downloads/openmw
    modinstall: D:/games/openmw-mods
    gamedata: D:/games/Morrowind
    settings: C:/Users/me/Documents/My Games/OpenMW
    openmw: D:/games/OpenMW
    delta: C:/tools/delta-plugin
    nodownload: false
    sharedInstallFolder: false
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config_document import CONFIG_FILENAME
from errors import PreferencesError

PREFERENCES_FILENAME = "preferences.yaml"
SHARED_INSTALL_FOLDER = "shared"


class Preferences(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    preset: str = ""  # preset name
    downloads: str = ""  # browser downloads folder
    modinstall: str = ""  # where archives are extracted
    gamedata: str = ""  # Morrowind installation
    settings: str = ""  # OpenMW user config folder (holds openmw.cfg)
    openmw: str = ""  # OpenMW installation
    delta: str = ""  # Delta Plugin executable, folder or archive
    nodownload: bool = False
    shared_install_folder: bool = Field(False, alias="sharedInstallFolder")

    def with_overrides(self, **overrides: Any) -> Preferences:
        """Copy with every override that is not None applied."""
        return self.model_copy(
            update={k: v for k, v in overrides.items() if v is not None}
        )

    def install_root(self, list_name: str) -> Path:
        folder = SHARED_INSTALL_FOLDER if self.shared_install_folder else list_name
        return Path(self.modinstall) / folder

    def validate_paths(self, *, need_delta: bool = False, need_openmw: bool = False) -> list[str]:
        issues = []

        if not self.preset:
            issues.append("Preset field is unset")

        if not self.downloads:
            issues.append("Downloads folder is unset")
        elif not Path(self.downloads).is_dir():
            issues.append(f"Downloads folder does not exist: {self.downloads}")

        if not self.modinstall:
            issues.append("Mod install folder is unset")

        if not self.settings:
            issues.append("OpenMW settings folder is unset")
        elif not (Path(self.settings) / CONFIG_FILENAME).is_file():
            issues.append(f"{CONFIG_FILENAME} not found in settings folder: {self.settings}")

        if self.gamedata and not Path(self.gamedata).is_dir():
            issues.append(f"Game data folder does not exist: {self.gamedata}")

        if need_openmw and not (self.openmw and Path(self.openmw).is_dir()):
            issues.append(f"OpenMW folder does not exist: {self.openmw or '(unset)'}")

        if need_delta and not (self.delta and Path(self.delta).exists()):
            issues.append(f"Delta Plugin not found: {self.delta or '(unset)'}")

        return issues


def load_preferences(path: str | Path) -> Preferences:
    """Read preferences.yaml; a missing file yields empty preferences."""
    path = Path(path)
    if not path.exists():
        return Preferences()
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise PreferencesError(f"{path.name} must be a YAML mapping")
        return Preferences.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as exc:
        raise PreferencesError(f"Could not read {path}: {exc}") from exc
