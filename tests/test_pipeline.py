import pytest

from config_document import ConfigDocument
from errors import ManifestError, ResolutionError, UnknownInstructionError
from pipeline import InstallPipeline
from preset_schema import load_manifest, load_preset, manifest_path

from tests.conftest import BASE_CONFIG, _make_zip

PRESET = {
    "name": "test-list",
    "lastModified": 1700000000,
    "listUrl": "https://example.org/test-list",
    "downloadSteps": [
        {"type": "nexus", "modId": 100, "siteFileName": "Main File"},
        {"type": "nexus", "modId": 100, "siteFileName": "Patch"},
        {"type": "nexus", "modId": 200, "siteFileName": "Other Mod"},
    ],
    "unpackSteps": [
        {"modId": 100, "fileIndex": 0, "type": "DATA", "data": ["Data Files"]},
        {"modId": 100, "fileIndex": 1, "type": "DATA", "data": ["."]},
        {"modId": 200, "fileIndex": 0, "type": "DATA", "data": ["."]},
        {"type": "CONTENT", "data": ["Main.esp", "Patch.esp", "Other.esp"]},
        {"type": "SETTINGS", "data": ["[Camera]", "viewing distance = 7168"]},
    ],
}

ARCHIVES = {
    "Main File": ("main-100.zip", {"Data Files/Main.esp": b"main"}),
    "Patch": ("patch-100.zip", {"Patch.esp": b"patch"}),
    "Other Mod": ("other-200.zip", {"Other.esp": b"other"}),
}


class FakeDriver:
    """Drops the requested archive into the downloads folder."""

    def __init__(self, download_dir, missing=()):
        self.download_dir = download_dir
        self.missing = set(missing)
        self.requested = []

    def download(self, step):
        self.requested.append(step.site_file_name)
        if step.site_file_name in self.missing:
            return ""
        name, members = ARCHIVES[step.site_file_name]
        _make_zip(self.download_dir / name, members)
        return name


def make_pipeline(env, driver=None, **overrides):
    driver = driver or FakeDriver(env.downloads)
    prefs = env.prefs.with_overrides(**overrides)
    pipeline = InstallPipeline(
        prefs, workspace=env.workspace, driver_factory=lambda: driver, log_callback=lambda msg: None
    )
    return pipeline, driver


def test_full_install(env, write_preset):
    write_preset(env.workspace, PRESET)
    pipeline, driver = make_pipeline(env)

    config_dir = pipeline.run()

    assert driver.requested == ["Main File", "Patch", "Other Mod"]
    root = env.modinstall / "test-list"
    assert (root / "main-100" / "Data Files" / "Main.esp").read_bytes() == b"main"
    assert (root / "other-200" / "Other.esp").is_file()

    lines = ConfigDocument.load(config_dir / "openmw.cfg").lines
    assert lines == [
        *(l for l in BASE_CONFIG if not l.startswith("content=")),
        f'data="{(root / "main-100" / "Data Files").as_posix()}"',
        f'data="{(root / "patch-100").as_posix()}"',
        f'data="{(root / "other-200").as_posix()}"',
        *(l for l in BASE_CONFIG if l.startswith("content=")),
        "content=Main.esp",
        "content=Patch.esp",
        "content=Other.esp",
    ]
    assert (config_dir / "settings.cfg").read_text(encoding="utf-8").splitlines() == [
        "[Camera]", "viewing distance = 7168",
    ]
    # the user's own openmw.cfg is never modified
    assert (env.settings / "openmw.cfg").read_text(encoding="utf-8").splitlines() == BASE_CONFIG


def test_second_run_does_no_work(env, write_preset):
    write_preset(env.workspace, PRESET)
    pipeline, _ = make_pipeline(env)
    config_dir = pipeline.run()

    manifest_file = manifest_path(pipeline.manifests_dir, "test-list")
    manifest_bytes = manifest_file.read_bytes()
    cfg_bytes = (config_dir / "openmw.cfg").read_bytes()

    pipeline, driver = make_pipeline(env)
    pipeline.run()

    assert driver.requested == []
    assert manifest_file.read_bytes() == manifest_bytes
    assert (config_dir / "openmw.cfg").read_bytes() == cfg_bytes
    assert pipeline.extract_phase(load_manifest(pipeline.manifests_dir, "test-list")) == 0


def test_deleted_download_is_fetched_again(env, write_preset):
    write_preset(env.workspace, PRESET)
    pipeline, _ = make_pipeline(env)
    pipeline.run()

    (env.downloads / "other-200.zip").unlink()
    pipeline, driver = make_pipeline(env)
    pipeline.download_phase(load_preset(pipeline.presets_dir, "test-list"))

    assert driver.requested == ["Other Mod"]


def test_unknown_step_leaves_config_untouched(env, write_preset):
    bad = dict(PRESET, unpackSteps=PRESET["unpackSteps"] + [{"type": "BOGUS", "data": []}])
    write_preset(env.workspace, bad)
    pipeline, _ = make_pipeline(env)

    with pytest.raises(UnknownInstructionError):
        pipeline.run()

    assert not (env.workspace / "presets" / "test-list" / "openmw.cfg").exists()


def test_unknown_step_does_not_overwrite_previous_result(env, write_preset):
    write_preset(env.workspace, PRESET)
    pipeline, _ = make_pipeline(env)
    config_dir = pipeline.run()
    before = (config_dir / "openmw.cfg").read_bytes()

    write_preset(env.workspace, dict(PRESET, unpackSteps=[{"type": "BOGUS"}] + PRESET["unpackSteps"]))
    with pytest.raises(UnknownInstructionError):
        make_pipeline(env)[0].run()

    assert (config_dir / "openmw.cfg").read_bytes() == before


def test_empty_download_is_not_recorded(env, write_preset):
    write_preset(env.workspace, PRESET)
    driver = FakeDriver(env.downloads, missing={"Patch"})
    pipeline, _ = make_pipeline(env, driver=driver)

    # the DATA step for the patch cannot be resolved
    with pytest.raises(ResolutionError):
        pipeline.run()

    manifest = load_manifest(pipeline.manifests_dir, "test-list")
    assert [r.file_display_name for r in manifest.records] == ["Main File", "Other Mod"]


def test_nodownload_needs_a_manifest(env, write_preset):
    write_preset(env.workspace, PRESET)
    pipeline, driver = make_pipeline(env, nodownload=True)

    with pytest.raises(ManifestError):
        pipeline.run()
    assert driver.requested == []


def test_nodownload_uses_existing_manifest(env, write_preset):
    write_preset(env.workspace, PRESET)
    make_pipeline(env)[0].run()

    pipeline, driver = make_pipeline(env, nodownload=True)
    config_dir = pipeline.run()

    assert driver.requested == []
    assert "content=Other.esp" in ConfigDocument.load(config_dir / "openmw.cfg")


def test_shared_install_folder(env, write_preset):
    write_preset(env.workspace, PRESET)
    pipeline, _ = make_pipeline(env, shared_install_folder=True)
    pipeline.run()

    assert (env.modinstall / "shared" / "main-100").is_dir()
    assert not (env.modinstall / "test-list").exists()
