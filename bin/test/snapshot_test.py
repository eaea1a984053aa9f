from pathlib import Path
from unittest.mock import MagicMock

import pytest
from deckpt.config import Config
from deckpt.snapshot import Snapshot, current_snapshot, latest_snapshot
from deckpt.system_context import SystemContext


def test_save_and_load(tmp_path):
    snapshot = Snapshot(taken="2024-05-01T10:00:00", packages=("base", "steam"), local_packages=("john",))
    path = tmp_path / "snapshots" / "first.yaml"
    snapshot.save(path)
    assert Snapshot.load(path) == snapshot


def test_load_rejects_other_files(tmp_path):
    path = tmp_path / "launchers.yaml"
    path.write_text("launchers: {}\n")
    with pytest.raises(RuntimeError, match="not a package snapshot"):
        Snapshot.load(path)


def test_added_since():
    before = Snapshot(taken="t0", packages=("base", "steam"), local_packages=("john",))
    after = Snapshot(taken="t1", packages=("base", "burpsuite", "steam", "yay"), local_packages=("john", "hashcat"))
    assert before.added_since(after) == ["hashcat", "burpsuite", "yay"]
    assert after.added_since(before) == []
    assert before.added_since(before) == []


def test_current_snapshot(tmp_path):
    config = Config.model_validate({"local": {"prefix": str(tmp_path)}})
    (tmp_path / "manifests").mkdir()
    (tmp_path / "manifests" / "hashcat.yaml").write_text("name: hashcat\n")
    context = MagicMock(spec=SystemContext)
    context.config = config
    context.check_output.return_value = "base\nsteam\n"

    snapshot = current_snapshot(context)

    context.check_output.assert_called_once_with(["pacman", "-Qqe"])
    assert snapshot.packages == ("base", "steam")
    assert snapshot.local_packages == ("hashcat",)


def test_latest_snapshot(tmp_path):
    assert latest_snapshot(tmp_path / "missing") is None
    for name in ("20240101-120000.yaml", "20240301-090000.yaml", "20240201-000000.yaml"):
        (tmp_path / name).write_text("packages: []\n")
    assert latest_snapshot(tmp_path) == Path(tmp_path / "20240301-090000.yaml")
