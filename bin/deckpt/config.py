#!/usr/bin/env python3
"""Configuration management for deck-pentest.

Handles loading configuration from a YAML file to control where packages are
installed, when cleanup kicks in and what cleanup is allowed to touch.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from deckpt.yaml_loader import load_yaml

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/deck-pentest/config.yaml").expanduser()


class SpaceConfig(BaseModel):
    """Free-space watermarks for the filesystem packages land on."""

    path: Path = Path("/")
    # The Deck's root partition is ~5GiB; anything under half a gig is risky for pacman transactions.
    low_watermark_mb: int = 1024
    critical_watermark_mb: int = 512

    model_config = ConfigDict(frozen=True, extra="forbid")


class CleanupConfig(BaseModel):
    """Locations the cleanup procedure is allowed to clear."""

    journal_vacuum_time: str = "2d"
    log_dirs: tuple[Path, ...] = (Path("/var/log"),)
    temp_dirs: tuple[Path, ...] = (Path("/tmp"), Path("/var/tmp"))
    # Leave anything touched recently alone; running sessions keep sockets and locks in /tmp
    temp_min_age_minutes: int = 60
    helper_cache_dirs: tuple[Path, ...] = (Path("~/.cache/yay").expanduser(),)
    # Only touched by aggressive cleanup
    dataset_dirs: tuple[Path, ...] = (Path("~/.local/share/deck-pentest/datasets").expanduser(),)
    user_cache_dirs: tuple[Path, ...] = (Path("~/.cache").expanduser(),)

    model_config = ConfigDict(frozen=True, extra="forbid")


class LocalConfig(BaseModel):
    """Configuration for installing repository packages into the home directory."""

    enabled: bool = True
    prefix: Path = Path("~/.local/share/deck-pentest").expanduser()
    bin_dir: Path = Path("~/.local/bin").expanduser()
    profile: Path = Path("~/.bashrc").expanduser()

    model_config = ConfigDict(frozen=True, extra="forbid")


class AurConfig(BaseModel):
    helper: str = "yay"
    bootstrap_url: str = "https://aur.archlinux.org/yay.git"

    model_config = ConfigDict(frozen=True, extra="forbid")


class Config(BaseModel):
    """Main deck-pentest configuration."""

    space: SpaceConfig = SpaceConfig()
    cleanup: CleanupConfig = CleanupConfig()
    local: LocalConfig = LocalConfig()
    aur: AurConfig = AurConfig()
    snapshot_dir: Path = Path("~/.local/share/deck-pentest/snapshots").expanduser()
    registry_path: Path = Path("~/.config/deck-pentest/launchers.yaml").expanduser()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def load(cls, config_path: Path) -> Config:
        """Load configuration from config path.

        Args:
            config_path: Path to the configuration file (e.g., ~/.config/deck-pentest/config.yaml)

        Returns:
            Config instance with loaded values, or defaults if file doesn't exist

        Raises:
            ValidationError: If config contains invalid values or unknown keys
        """
        if not config_path.exists():
            _LOGGER.debug("Config file %s does not exist, using defaults", config_path)
            return cls()

        try:
            config_data = load_yaml(config_path)

            if config_data is None:
                _LOGGER.warning("Config file %s is empty, using defaults", config_path)
                return cls()

            return cls.model_validate(config_data)

        except ValidationError as e:
            _LOGGER.error("Invalid config in %s: %s", config_path, e)
            raise
        except Exception as e:
            _LOGGER.error("Failed to load config from %s: %s", config_path, e)
            raise

    def with_cli_overrides(
        self,
        local: bool = False,
        system: bool = False,
        space_path: Path | None = None,
    ) -> Config:
        """Create a new Config with CLI overrides applied.

        Args:
            local: Force installation into the home directory
            system: Force system-wide installation
            space_path: Override the path whose free space is watched

        Returns:
            New Config instance with overrides applied
        """

        if local and system:
            raise ValueError("Cannot specify both --local and --system")

        config_dict = self.model_dump()
        if local:
            config_dict["local"]["enabled"] = True
            _LOGGER.info("CLI override: installing into %s", config_dict["local"]["prefix"])

        if system:
            config_dict["local"]["enabled"] = False
            _LOGGER.info("CLI override: installing system-wide")

        if space_path:
            config_dict["space"]["path"] = space_path
            _LOGGER.info("CLI override: watching free space on %s", space_path)

        return self.__class__.model_validate(config_dict)
