from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import yaml

from deckpt.system_context import SystemContext
from deckpt.yaml_loader import load_yaml

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """The explicitly installed package set at a point in time."""

    taken: str
    packages: tuple[str, ...]
    local_packages: tuple[str, ...] = ()

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as snapshot_file:
            yaml.safe_dump(
                {"taken": self.taken, "packages": list(self.packages), "local_packages": list(self.local_packages)},
                snapshot_file,
            )
        _LOGGER.info("Saved snapshot of %d packages to %s", len(self.packages) + len(self.local_packages), path)

    @classmethod
    def load(cls, path: Path) -> Snapshot:
        data = load_yaml(path)
        if not isinstance(data, dict) or "packages" not in data:
            raise RuntimeError(f"{path} is not a package snapshot")
        return cls(
            taken=str(data.get("taken", "")),
            packages=tuple(data["packages"]),
            local_packages=tuple(data.get("local_packages", [])),
        )

    def added_since(self, current: Snapshot) -> list[str]:
        """Packages present in current but not here, in current's order."""
        known = set(self.packages) | set(self.local_packages)
        return [name for name in (*current.local_packages, *current.packages) if name not in known]


def current_snapshot(context: SystemContext) -> Snapshot:
    packages = context.check_output(["pacman", "-Qqe"]).split()
    manifest_dir = context.config.local.prefix / "manifests"
    local_packages = sorted(p.stem for p in manifest_dir.glob("*.yaml")) if manifest_dir.is_dir() else []
    return Snapshot(
        taken=datetime.datetime.now().isoformat(timespec="seconds"),
        packages=tuple(packages),
        local_packages=tuple(local_packages),
    )


def default_snapshot_path(snapshot_dir: Path) -> Path:
    return snapshot_dir / f"{datetime.datetime.now():%Y%m%d-%H%M%S}.yaml"


def latest_snapshot(snapshot_dir: Path) -> Path | None:
    candidates: Iterable[Path] = sorted(snapshot_dir.glob("*.yaml")) if snapshot_dir.is_dir() else []
    return max(candidates, default=None)
