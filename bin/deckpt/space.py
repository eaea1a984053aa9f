from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import humanfriendly

from deckpt.config import SpaceConfig

_LOGGER = logging.getLogger(__name__)

MIB = 1024 * 1024


class FilesystemProbe:
    def free_space_mb(self, path: Path) -> int:
        stat = os.statvfs(path)
        available_bytes = stat.f_bavail * stat.f_frsize
        _LOGGER.debug("Available space on %s: %d bytes", path, available_bytes)
        return available_bytes // MIB

    def directory_size_mb(self, path: Path) -> int:
        """Sum of regular file sizes under path, not following symlinks."""
        total = 0
        for root, _, files in os.walk(path):
            for file_name in files:
                file_path = Path(root) / file_name
                try:
                    if not file_path.is_symlink():
                        total += file_path.stat().st_size
                except OSError as e:
                    _LOGGER.debug("Unable to stat %s: %s", file_path, e)
        return total // MIB


def format_mb(size_mb: int) -> str:
    return humanfriendly.format_size(size_mb * MIB, binary=True)


@dataclass(frozen=True)
class SpaceBudget:
    path: Path
    free_mb: int
    low_watermark_mb: int
    critical_watermark_mb: int

    @classmethod
    def from_config(cls, config: SpaceConfig, probe: FilesystemProbe) -> SpaceBudget:
        return cls(
            path=config.path,
            free_mb=probe.free_space_mb(config.path),
            low_watermark_mb=config.low_watermark_mb,
            critical_watermark_mb=config.critical_watermark_mb,
        )

    def refreshed(self, probe: FilesystemProbe) -> SpaceBudget:
        return dataclasses.replace(self, free_mb=probe.free_space_mb(self.path))

    @property
    def is_critical(self) -> bool:
        return self.free_mb < self.critical_watermark_mb

    @property
    def is_low(self) -> bool:
        return self.free_mb < self.low_watermark_mb

    def describe(self) -> str:
        state = "critical" if self.is_critical else "low" if self.is_low else "ok"
        return (
            f"{self.path}: {format_mb(self.free_mb)} free ({state}; "
            f"low watermark {format_mb(self.low_watermark_mb)}, "
            f"critical watermark {format_mb(self.critical_watermark_mb)})"
        )
