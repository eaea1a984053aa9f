import os
from pathlib import Path
from unittest.mock import MagicMock, patch

from deckpt.config import SpaceConfig
from deckpt.space import MIB, FilesystemProbe, SpaceBudget, format_mb


def make_statvfs(available_bytes, block_size=4096):
    stat = MagicMock()
    stat.f_frsize = block_size
    stat.f_bavail = available_bytes // block_size
    return stat


@patch("os.statvfs")
def test_free_space_uses_blocks_available_to_users(mock_statvfs):
    mock_statvfs.return_value = make_statvfs(3 * 1024 * MIB)
    assert FilesystemProbe().free_space_mb(Path("/")) == 3 * 1024
    mock_statvfs.assert_called_once_with(Path("/"))


@patch("os.statvfs")
def test_free_space_rounds_down(mock_statvfs):
    mock_statvfs.return_value = make_statvfs(MIB + MIB // 2, block_size=512)
    assert FilesystemProbe().free_space_mb(Path("/")) == 1


def test_directory_size_ignores_symlinks(tmp_path):
    (tmp_path / "sub").mkdir()
    with (tmp_path / "sub" / "big").open("wb") as f:
        f.truncate(3 * MIB)
    (tmp_path / "small").write_bytes(b"x" * 100)
    os.symlink(tmp_path / "sub" / "big", tmp_path / "link")
    assert FilesystemProbe().directory_size_mb(tmp_path) == 3


def test_directory_size_of_missing_directory(tmp_path):
    assert FilesystemProbe().directory_size_mb(tmp_path / "nope") == 0


def test_budget_from_config():
    probe = MagicMock(spec=FilesystemProbe)
    probe.free_space_mb.return_value = 700
    config = SpaceConfig(path=Path("/home"), low_watermark_mb=1000, critical_watermark_mb=500)
    budget = SpaceBudget.from_config(config, probe)
    probe.free_space_mb.assert_called_once_with(Path("/home"))
    assert budget.free_mb == 700
    assert budget.is_low
    assert not budget.is_critical


def test_watermark_boundaries():
    def budget(free):
        return SpaceBudget(Path("/"), free_mb=free, low_watermark_mb=1000, critical_watermark_mb=500)

    assert budget(499).is_critical
    assert not budget(500).is_critical
    assert budget(999).is_low
    assert not budget(1000).is_low


def test_refreshed_keeps_watermarks():
    probe = MagicMock(spec=FilesystemProbe)
    probe.free_space_mb.return_value = 2000
    budget = SpaceBudget(Path("/"), free_mb=10, low_watermark_mb=1000, critical_watermark_mb=500)
    refreshed = budget.refreshed(probe)
    assert refreshed.free_mb == 2000
    assert refreshed.critical_watermark_mb == 500
    assert budget.free_mb == 10


def test_describe():
    budget = SpaceBudget(Path("/"), free_mb=256, low_watermark_mb=1024, critical_watermark_mb=512)
    assert budget.describe() == "/: 256 MiB free (critical; low watermark 1 GiB, critical watermark 512 MiB)"


def test_format_mb():
    assert format_mb(1536) == "1.5 GiB"
