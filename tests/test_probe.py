"""
Free-space probes and platform dispatch.
"""

import os
from types import SimpleNamespace

import pytest

import udisk_endurance as ue

posix_only = pytest.mark.skipif(os.name != "posix", reason="statvfs probe")


class TestSelectProbe:

    def test_dispatch_by_os_name(self):
        assert ue.select_probe("posix") is ue.posix_free_space
        assert ue.select_probe("nt") is ue.windows_free_space

    def test_defaults_to_host(self):
        assert ue.select_probe() is ue.select_probe(os.name)

    def test_unknown_platform(self):
        with pytest.raises(ValueError):
            ue.select_probe("java")


@posix_only
class TestPosixFreeSpace:

    def test_reports_free_and_total(self, tmp_path):
        space = ue.posix_free_space(str(tmp_path))
        assert isinstance(space.free, int)
        assert 0 <= space.free <= space.total

    def test_relative_path_rejected(self):
        with pytest.raises(ue.SpaceQueryError) as exc_info:
            ue.posix_free_space("mnt/udisk")
        assert exc_info.value.phase is ue.Phase.PROBING

    def test_missing_path(self, tmp_path):
        with pytest.raises(ue.SpaceQueryError):
            ue.posix_free_space(str(tmp_path / "not-mounted"))

    def test_os_error_is_wrapped(self, tmp_path, monkeypatch):
        def broken(path):
            raise OSError(5, "Input/output error")

        monkeypatch.setattr(ue.os, "statvfs", broken)
        with pytest.raises(ue.SpaceQueryError) as exc_info:
            ue.posix_free_space(str(tmp_path))
        assert isinstance(exc_info.value.__cause__, OSError)
        assert "Input/output error" in str(exc_info.value)

    def test_zero_free_is_not_an_error(self, tmp_path, monkeypatch):
        fake = SimpleNamespace(f_bavail=0, f_frsize=4096, f_blocks=10)
        monkeypatch.setattr(ue.os, "statvfs", lambda path: fake)
        assert ue.posix_free_space(str(tmp_path)) == ue.FreeSpace(free=0, total=40960)


class TestWindowsDrive:

    @pytest.mark.parametrize(
        "given, expected",
        [
            ("e", "E:\\"),
            ("E:", "E:\\"),
            ("e:\\", "E:\\"),
            ("E:/", "E:\\"),
            ('"F:"', "F:\\"),
            ("D:\\data", "D:\\data\\"),
        ],
    )
    def test_normalize(self, given, expected):
        assert ue.normalize_drive(given) == expected

    @pytest.mark.parametrize("bad", ["", "relative\\dir", "EE:"])
    def test_normalize_rejects(self, bad):
        with pytest.raises(ue.SpaceQueryError):
            ue.normalize_drive(bad)

    @posix_only
    def test_missing_drive(self):
        with pytest.raises(ue.SpaceQueryError):
            ue.windows_free_space("Q:")
