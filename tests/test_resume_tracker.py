from unittest.mock import patch

from preset_schema import DownloadStep, Manifest, ManifestRecord
from resume_tracker import pending_steps, resume


def make_manifest(*records):
    return Manifest(
        list_name="test-list",
        records=[
            ManifestRecord(file_name=f, mod_id=m, file_display_name=d) for f, m, d in records
        ],
    )


def test_resume_reports_present_files(tmp_path):
    (tmp_path / "main-1.zip").write_bytes(b"zip")
    manifest = make_manifest(
        ("main-1.zip", 1, "Main File"),
        ("gone-2.7z", 2, "Deleted File"),
    )
    assert resume(manifest, tmp_path) == {"Main File"}


def test_resume_ignores_empty_file_names(tmp_path):
    manifest = make_manifest(("", 1, "Never Finished"))
    assert resume(manifest, tmp_path) == set()


def test_resume_treats_stat_errors_as_missing(tmp_path):
    (tmp_path / "main-1.zip").write_bytes(b"zip")
    manifest = make_manifest(("main-1.zip", 1, "Main File"))
    with patch("resume_tracker.os.stat", side_effect=PermissionError("denied")):
        assert resume(manifest, tmp_path) == set()


def test_pending_steps_keeps_order():
    steps = [
        DownloadStep(mod_id=1, site_file_name="A"),
        DownloadStep(mod_id=2, site_file_name="B"),
        DownloadStep(mod_id=3, site_file_name="C"),
    ]
    assert [s.site_file_name for s in pending_steps(steps, {"B"})] == ["A", "C"]
    assert pending_steps(steps, {"A", "B", "C"}) == []
