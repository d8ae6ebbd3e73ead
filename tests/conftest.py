"""
Shared fixtures and helpers for the Aradir test suite.
"""

import zipfile
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import yaml

from preferences import Preferences

BASE_CONFIG = [
    'data="C:/Games/Morrowind/Data Files"',
    "content=Morrowind.esm",
    "content=Tribunal.esm",
    "content=Bloodmoon.esm",
    "fallback=LightAttenuation_UseConstant,0",
]


def _make_zip(path: Path, members: dict[str, str | bytes]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


@pytest.fixture
def make_zip():
    """Return a helper that writes {member: data} into a zip at path."""
    return _make_zip


@pytest.fixture
def env(tmp_path):
    """Fresh workspace, downloads, install and OpenMW settings folders."""
    workspace = tmp_path / "workspace"
    downloads = tmp_path / "downloads"
    modinstall = tmp_path / "mods"
    settings = tmp_path / "openmw"
    for d in (workspace / "presets", downloads, modinstall, settings):
        d.mkdir(parents=True)
    (settings / "openmw.cfg").write_text("\n".join(BASE_CONFIG) + "\n", encoding="utf-8")

    prefs = Preferences(
        preset="test-list",
        downloads=str(downloads),
        modinstall=str(modinstall),
        settings=str(settings),
    )
    return SimpleNamespace(
        workspace=workspace,
        downloads=downloads,
        modinstall=modinstall,
        settings=settings,
        prefs=prefs,
    )


@pytest.fixture
def write_preset():
    """Return a helper that writes a preset dict to <workspace>/presets/<name>/<name>.yaml."""

    def _write(workspace: Path, preset: dict) -> Path:
        folder = workspace / "presets" / preset["name"]
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / f"{preset['name']}.yaml"
        path.write_text(yaml.safe_dump(preset, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def mock_delta():
    """Patch DeltaPlugin.run to succeed without running the real tool."""
    with patch("delta_plugin.DeltaPlugin.run", return_value=(True, "ok")) as m:
        yield m
