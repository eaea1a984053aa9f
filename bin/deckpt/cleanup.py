"""Frees disk space by clearing caches, logs and temporary files.

Every step only touches the locations listed in the cleanup configuration. Running the
procedure again straight away is harmless and frees (close to) nothing.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from deckpt.config import CleanupConfig
from deckpt.space import FilesystemProbe
from deckpt.system_context import SystemContext

_LOGGER = logging.getLogger(__name__)

_PROTECTED = {Path(p) for p in ("/", "/bin", "/boot", "/etc", "/home", "/opt", "/root", "/usr", "/var")}

# X server locks and the .X11-unix/.ICE-unix style socket dirs of a running session, as systemd-tmpfiles keeps them
_TEMP_KEEP = ("!", "-name", ".X*-lock", "!", "-path", "*/.*-unix", "!", "-path", "*/.*-unix/*")


def is_safe_to_clear(path: Path) -> bool:
    """Refuse the filesystem root, system directories, and home or anything above it."""
    resolved = path.expanduser().resolve()
    if resolved in _PROTECTED:
        return False
    home = Path.home().resolve()
    return resolved != home and resolved not in home.parents


@dataclass
class CleanupReport:
    aggressive: bool = False
    freed_mb: int = 0
    steps: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class Cleaner:
    def __init__(self, context: SystemContext, probe: FilesystemProbe, config: CleanupConfig, space_path: Path):
        self.context = context
        self.probe = probe
        self.config = config
        self.space_path = space_path

    def run(self, aggressive: bool = False) -> CleanupReport:
        report = CleanupReport(aggressive=aggressive)
        before = self.probe.free_space_mb(self.space_path)
        _LOGGER.info(
            "Cleaning up%s (%d MiB free on %s)", " aggressively" if aggressive else "", before, self.space_path
        )

        steps = [
            ("package cache", self._clear_package_cache),
            ("helper caches", lambda: self._clear_contents(self.config.helper_cache_dirs)),
            ("logs", self._trim_logs),
            ("journal", self._vacuum_journal),
            ("temporary files", self._clear_temp_dirs),
        ]
        if aggressive:
            steps += [
                ("datasets", lambda: self._clear_contents(self.config.dataset_dirs)),
                ("user caches", lambda: self._clear_contents(self.config.user_cache_dirs)),
            ]
        for step_name, step in steps:
            try:
                step()
                report.steps.append(step_name)
            except (OSError, subprocess.SubprocessError) as e:
                _LOGGER.warning("Cleanup of %s failed: %s", step_name, e)
                report.skipped.append(step_name)

        after = self.probe.free_space_mb(self.space_path)
        report.freed_mb = max(0, after - before)
        _LOGGER.info("Cleanup freed %d MiB (%d MiB free)", report.freed_mb, after)
        return report

    def _clear_package_cache(self) -> None:
        if self.context.which("paccache"):
            self.context.run(["paccache", "-rk0"], privileged=True)
            self.context.run(["paccache", "-ruk0"], privileged=True)
        else:
            self.context.run(["pacman", "-Sc", "--noconfirm"], privileged=True)

    def _trim_logs(self) -> None:
        for log_dir in self.config.log_dirs:
            if not is_safe_to_clear(log_dir):
                _LOGGER.warning("Refusing to trim logs in %s", log_dir)
                continue
            self.context.run(
                [
                    "find", str(log_dir), "-xdev", "-type", "f", "-name", "*.log",
                    "-exec", "truncate", "-s", "0", "{}", "+",
                ],
                privileged=True,
            )  # fmt: skip
            self.context.run(
                [
                    "find", str(log_dir), "-xdev", "-type", "f",
                    "(", "-name", "*.gz", "-o", "-name", "*.old", "-o", "-regex", r".*\.[0-9]+", ")",
                    "-delete",
                ],
                privileged=True,
            )  # fmt: skip

    def _vacuum_journal(self) -> None:
        if not self.context.which("journalctl"):
            _LOGGER.debug("No journalctl, skipping journal vacuum")
            return
        self.context.run(["journalctl", f"--vacuum-time={self.config.journal_vacuum_time}"], privileged=True)

    def _clear_temp_dirs(self) -> None:
        for temp_dir in self.config.temp_dirs:
            if not temp_dir.is_dir():
                continue
            if not is_safe_to_clear(temp_dir):
                _LOGGER.warning("Refusing to clear %s", temp_dir)
                continue
            self.context.run(
                [
                    "find", str(temp_dir), "-xdev", "-mindepth", "1",
                    "-mmin", f"+{self.config.temp_min_age_minutes}", "!", "-type", "s", *_TEMP_KEEP,
                    "-delete",
                ],
                privileged=True,
            )  # fmt: skip

    def _clear_contents(self, directories: tuple[Path, ...]) -> None:
        for directory in directories:
            if not directory.is_dir():
                continue
            if not is_safe_to_clear(directory):
                _LOGGER.warning("Refusing to clear %s", directory)
                continue
            for child in directory.iterdir():
                self.context.remove_path(child)
            _LOGGER.debug("Cleared %s", directory)
