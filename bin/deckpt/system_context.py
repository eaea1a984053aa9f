from __future__ import annotations

import contextlib
import logging
import os
import shlex
import shutil
import subprocess
import uuid
from collections.abc import Iterator, Sequence
from pathlib import Path

from deckpt.config import Config

_LOGGER = logging.getLogger(__name__)

# Messages pacman, tar and makepkg print when the disk fills up part way through.
_OUT_OF_SPACE_MARKERS = (
    "no space left on device",
    "not enough free disk space",
    "too full",
)


def is_root() -> bool:
    return os.geteuid() == 0


def mentions_out_of_space(output: str | None) -> bool:
    if not output:
        return False
    lowered = output.lower()
    return any(marker in lowered for marker in _OUT_OF_SPACE_MARKERS)


class StagingDir:
    def __init__(self, staging_dir: Path):
        self._dir = staging_dir
        _LOGGER.debug("Creating staging dir %s", self._dir)
        self._dir.mkdir(parents=True)

    @property
    def path(self) -> Path:
        return self._dir


class SystemContext:
    """Runs package-manager and housekeeping commands on the device.

    Privileged commands are prefixed with sudo unless already running as root. In dry-run
    mode mutating commands are logged and reported as successful without running.
    """

    def __init__(self, config: Config, dry_run: bool, keep_staging: bool = False):
        self.config = config
        self.dry_run = dry_run
        self._keep_staging = keep_staging
        self._staging_root = config.local.prefix / "staging"

    @property
    def local_enabled(self) -> bool:
        return self.config.local.enabled

    def which(self, tool: str) -> str | None:
        return shutil.which(tool)

    def _command(self, command: Sequence[str], privileged: bool) -> list[str]:
        if privileged and not is_root():
            return ["sudo", *command]
        return list(command)

    def run(
        self,
        command: Sequence[str],
        privileged: bool = False,
        mutating: bool = True,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess:
        full_command = self._command(command, privileged)
        if self.dry_run and mutating:
            _LOGGER.info("Would run %s but in dry-run mode", shlex.join(full_command))
            return subprocess.CompletedProcess(full_command, 0, stdout="", stderr="")
        _LOGGER.debug("Running %s", shlex.join(full_command))
        result = subprocess.run(
            full_command, capture_output=True, text=True, check=False, cwd=str(cwd) if cwd else None
        )
        if result.returncode != 0:
            _LOGGER.debug(
                "%s exited with %d: %s", shlex.join(full_command), result.returncode, result.stderr.strip()
            )
        return result

    def query(self, command: Sequence[str]) -> bool:
        """Run a read-only command, reporting whether it succeeded."""
        try:
            return self.run(command, mutating=False).returncode == 0
        except FileNotFoundError:
            _LOGGER.debug("File not found for %s", command[0])
            return False

    def check_output(self, command: Sequence[str], privileged: bool = False) -> str:
        full_command = self._command(command, privileged)
        _LOGGER.debug("Running %s", shlex.join(full_command))
        return subprocess.check_output(full_command, text=True)

    @contextlib.contextmanager
    def new_staging_dir(self) -> Iterator[StagingDir]:
        staging_dir = StagingDir(self._staging_root / str(uuid.uuid4()))
        try:
            yield staging_dir
        finally:
            if not self._keep_staging:
                shutil.rmtree(staging_dir.path, ignore_errors=True)

    def remove_path(self, path: Path) -> None:
        if self.dry_run:
            _LOGGER.info("Would remove %s but in dry-run mode", path)
            return
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path, ignore_errors=True)
        else:
            path.unlink(missing_ok=True)
        _LOGGER.debug("Removed %s", path)
