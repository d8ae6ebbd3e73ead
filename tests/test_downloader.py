from unittest.mock import Mock

import pytest

from downloader import BrowserDownloadDriver, nexus_files_url, snapshot, wait_for_download
from errors import DownloadError, UnknownInstructionError
from preset_schema import DownloadStep


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self):
        self.now = 0.0
        self.on_sleep = None

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds
        if self.on_sleep:
            self.on_sleep(self.now)


def test_nexus_files_url():
    assert nexus_files_url(46599) == "https://www.nexusmods.com/morrowind/mods/46599?tab=files"


def test_snapshot_ignores_partial_downloads(tmp_path):
    (tmp_path / "done.zip").write_bytes(b"")
    (tmp_path / "busy.7z.crdownload").write_bytes(b"")
    (tmp_path / "folder").mkdir()
    assert snapshot(tmp_path) == {"done.zip"}
    assert snapshot(tmp_path / "missing") == set()


def test_wait_returns_new_file(tmp_path):
    (tmp_path / "old.zip").write_bytes(b"")
    clock = FakeClock()

    def arrive(now):
        if now >= 3:
            (tmp_path / "new.zip").write_bytes(b"")

    clock.on_sleep = arrive
    name = wait_for_download(tmp_path, {"old.zip"}, timeout=60, clock=clock, sleep=clock.sleep)

    assert name == "new.zip"
    assert clock.now == 3


def test_wait_holds_while_browser_is_still_writing(tmp_path):
    clock = FakeClock()
    (tmp_path / "first.zip").write_bytes(b"")
    (tmp_path / "second.zip.part").write_bytes(b"")

    def finish(now):
        if now >= 2:
            (tmp_path / "second.zip.part").rename(tmp_path / "second.zip")

    clock.on_sleep = finish
    name = wait_for_download(tmp_path, set(), timeout=60, clock=clock, sleep=clock.sleep)

    assert clock.now == 2
    assert name in {"first.zip", "second.zip"}


def test_wait_times_out(tmp_path):
    clock = FakeClock()
    with pytest.raises(DownloadError):
        wait_for_download(tmp_path, set(), timeout=5, poll_interval=1, clock=clock, sleep=clock.sleep)
    assert clock.now == 5


def test_browser_driver_opens_files_tab_and_waits(tmp_path):
    opener = Mock(side_effect=lambda url: (tmp_path / "Patch-46599.7z").write_bytes(b""))
    driver = BrowserDownloadDriver(tmp_path, timeout=1, poll_interval=0, opener=opener,
                                   log_callback=lambda msg: None)

    name = driver.download(DownloadStep(mod_id=46599, site_file_name="Patch for Purists"))

    assert name == "Patch-46599.7z"
    opener.assert_called_once_with(nexus_files_url(46599))


def test_browser_driver_returns_empty_on_timeout(tmp_path):
    messages = []
    driver = BrowserDownloadDriver(tmp_path, timeout=0, poll_interval=0, opener=Mock(),
                                   log_callback=messages.append)

    assert driver.download(DownloadStep(mod_id=1, site_file_name="Never")) == ""
    assert any("WARNING" in m for m in messages)


def test_browser_driver_rejects_other_sources(tmp_path):
    driver = BrowserDownloadDriver(tmp_path, opener=Mock())
    with pytest.raises(UnknownInstructionError):
        driver.download(DownloadStep(type="moddb", mod_id=1, site_file_name="X"))
    driver._opener.assert_not_called()
