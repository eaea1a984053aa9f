from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable
from pathlib import Path

import yaml

from deckpt.catalog import CatalogEntry
from deckpt.environment import EnvironmentConfig
from deckpt.yaml_loader import load_yaml

_LOGGER = logging.getLogger(__name__)

GENERATED_MARKER = "# generated by deck-install"


def is_generated_script(script: Path) -> bool:
    """True only for wrappers written by write_scripts; anything else in bin_dir belongs to the user."""
    if not script.is_file() or script.is_symlink():
        return False
    try:
        with script.open(encoding="utf-8") as script_file:
            lines = [script_file.readline().rstrip("\n") for _ in range(2)]
    except (OSError, UnicodeDecodeError):
        return False
    return lines == ["#!/bin/sh", GENERATED_MARKER]


class LauncherRegistry:
    """Maps a tool's launcher name to the executable it resolved to when the registry was built."""

    def __init__(self, launchers: dict[str, Path] | None = None):
        self.launchers = dict(launchers or {})

    @classmethod
    def build(
        cls, entries: Iterable[CatalogEntry], environment: EnvironmentConfig, bin_dir: Path | None = None
    ) -> tuple[LauncherRegistry, list[str]]:
        # our own wrapper scripts must not shadow the executables they wrap
        search_path = os.pathsep.join(
            directory
            for directory in environment.apply(os.environ).get("PATH", "").split(os.pathsep)
            if directory and (bin_dir is None or Path(directory) != bin_dir)
        )
        launchers = {}
        missing = []
        for entry in entries:
            if not entry.launcher:
                continue
            resolved = shutil.which(entry.launcher, path=search_path)
            if resolved:
                launchers[entry.launcher] = Path(resolved)
            else:
                _LOGGER.debug("No executable for %s (%s)", entry.launcher, entry.name)
                missing.append(entry.launcher)
        return cls(launchers), missing

    @classmethod
    def load(cls, registry_path: Path) -> LauncherRegistry:
        if not registry_path.exists():
            return cls()
        data = load_yaml(registry_path) or {}
        return cls({name: Path(path) for name, path in data.get("launchers", {}).items()})

    def save(self, registry_path: Path) -> None:
        registry_path.parent.mkdir(parents=True, exist_ok=True)
        with registry_path.open("w", encoding="utf-8") as registry_file:
            yaml.safe_dump(
                {"launchers": {name: str(path) for name, path in sorted(self.launchers.items())}}, registry_file
            )
        _LOGGER.debug("Saved %d launchers to %s", len(self.launchers), registry_path)

    def merged(self, other: LauncherRegistry) -> LauncherRegistry:
        return LauncherRegistry({**self.launchers, **other.launchers})

    def without(self, names: Iterable[str]) -> LauncherRegistry:
        names = set(names)
        return LauncherRegistry({k: v for k, v in self.launchers.items() if k not in names})

    def validate(self) -> list[str]:
        """Names whose executable has gone away since the registry was built."""
        return sorted(name for name, path in self.launchers.items() if not os.access(path, os.X_OK))

    def write_scripts(self, bin_dir: Path, prefix: Path, environment: EnvironmentConfig, dry_run: bool) -> list[Path]:
        """Writes wrapper scripts for tools unpacked under prefix, which need our library path to run."""
        written = []
        for name, path in sorted(self.launchers.items()):
            if prefix not in path.parents:
                continue
            script = bin_dir / name
            if (script.exists() or script.is_symlink()) and not is_generated_script(script):
                _LOGGER.warning("Not replacing %s, it was not written by deck-install", script)
                continue
            if dry_run:
                _LOGGER.info("Would write launcher %s -> %s but in dry-run mode", script, path)
                continue
            bin_dir.mkdir(parents=True, exist_ok=True)
            script.write_text(
                "\n".join(["#!/bin/sh", GENERATED_MARKER, *environment.exports(), f'exec "{path}" "$@"'])
                + "\n",
                encoding="utf-8",
            )
            script.chmod(0o755)
            _LOGGER.info("Wrote launcher %s -> %s", script, path)
            written.append(script)
        return written

    def remove_scripts(self, names: Iterable[str], bin_dir: Path, dry_run: bool) -> list[Path]:
        removed = []
        for name in sorted(set(names)):
            script = bin_dir / name
            if not is_generated_script(script):
                continue
            if dry_run:
                _LOGGER.info("Would remove launcher %s but in dry-run mode", script)
                continue
            script.unlink()
            _LOGGER.info("Removed launcher %s", script)
            removed.append(script)
        return removed
