import subprocess
from unittest.mock import MagicMock, patch

import pytest
from deckpt.errors import EnvironmentMissing
from deckpt.preflight import check_environment, is_steamos, prepare_system, preparation_steps
from deckpt.system_context import SystemContext


@pytest.fixture(name="context")
def context_fixture():
    context = MagicMock(spec=SystemContext)
    context.which.side_effect = lambda tool: f"/usr/bin/{tool}"
    context.run.return_value = subprocess.CompletedProcess([], 0, stdout="", stderr="")
    return context


def test_is_steamos(tmp_path):
    os_release = tmp_path / "os-release"
    os_release.write_text('NAME="SteamOS"\nID=steamos\nID_LIKE=arch\n')
    assert is_steamos(os_release)
    os_release.write_text('NAME="Arch Linux"\nID=arch\n')
    assert not is_steamos(os_release)
    assert not is_steamos(tmp_path / "missing")


def test_quoted_os_release_id(tmp_path):
    os_release = tmp_path / "os-release"
    os_release.write_text('ID="steamos"\n')
    assert is_steamos(os_release)


def test_missing_pacman(context):
    context.which.side_effect = lambda tool: None if tool == "pacman" else f"/usr/bin/{tool}"
    with pytest.raises(EnvironmentMissing, match="pacman"):
        check_environment(context)


@patch("deckpt.preflight.is_root", return_value=False)
def test_missing_sudo(_is_root, context):
    context.which.side_effect = lambda tool: None if tool == "sudo" else f"/usr/bin/{tool}"
    with pytest.raises(EnvironmentMissing, match="sudo"):
        check_environment(context)


@patch("deckpt.preflight.is_root", return_value=True)
def test_root_does_not_need_sudo(_is_root, context):
    context.which.side_effect = lambda tool: None if tool == "sudo" else f"/usr/bin/{tool}"
    check_environment(context)


def test_steamos_preparation(context):
    assert preparation_steps(context, steamos=True) == [
        ["steamos-readonly", "disable"],
        ["pacman-key", "--init"],
        ["pacman-key", "--populate", "archlinux"],
        ["pacman-key", "--populate", "holo"],
        ["pacman", "-Syu", "--noconfirm"],
    ]


def test_plain_arch_preparation(context):
    assert preparation_steps(context, steamos=False) == [
        ["pacman-key", "--init"],
        ["pacman-key", "--populate", "archlinux"],
        ["pacman", "-Syu", "--noconfirm"],
    ]


def test_prepare_system_reports_failures_and_continues(context, capsys):
    context.run.side_effect = lambda step, privileged: subprocess.CompletedProcess(
        step, 1 if step[0] == "pacman" else 0, stdout="", stderr="error: failed to synchronize all databases"
    )
    failed = prepare_system(context, steamos=False)
    assert failed == ["pacman -Syu --noconfirm"]
    assert len(context.run.call_args_list) == 3
    assert all(call.kwargs["privileged"] for call in context.run.call_args_list)
    assert "  --> pacman-key --init" in capsys.readouterr().out
