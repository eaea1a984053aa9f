from __future__ import annotations

import logging
from pathlib import Path

from deckpt.errors import EnvironmentMissing
from deckpt.system_context import SystemContext, is_root

_LOGGER = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")


def is_steamos(os_release: Path = OS_RELEASE) -> bool:
    try:
        fields = dict(
            line.split("=", 1) for line in os_release.read_text(encoding="utf-8").splitlines() if "=" in line
        )
    except OSError:
        return False
    return fields.get("ID", "").strip('"') == "steamos"


def check_environment(context: SystemContext) -> None:
    """Raises EnvironmentMissing if nothing can be installed at all."""
    if not context.which("pacman"):
        raise EnvironmentMissing("pacman not found: this installer needs an Arch-based system such as SteamOS")
    if not is_root() and not context.which("sudo"):
        raise EnvironmentMissing("Not running as root and sudo is not available")
    _LOGGER.debug("Environment OK")


def preparation_steps(context: SystemContext, steamos: bool) -> list[list[str]]:
    steps = []
    if steamos and context.which("steamos-readonly"):
        steps.append(["steamos-readonly", "disable"])
    steps += [
        ["pacman-key", "--init"],
        ["pacman-key", "--populate", "archlinux"],
    ]
    if steamos:
        steps.append(["pacman-key", "--populate", "holo"])
    steps.append(["pacman", "-Syu", "--noconfirm"])
    return steps


def prepare_system(context: SystemContext, steamos: bool | None = None) -> list[str]:
    """Unlocks the root filesystem and readies pacman. Returns the steps that failed."""
    if steamos is None:
        steamos = is_steamos()
    failed = []
    for step in preparation_steps(context, steamos):
        command = " ".join(step)
        print(f"  --> {command}")
        result = context.run(step, privileged=True)
        if result.returncode != 0:
            _LOGGER.error("%s failed with exit code %d: %s", command, result.returncode, result.stderr.strip())
            failed.append(command)
    return failed
