#!/usr/bin/env python3
"""Tests for config module."""

import tempfile
import unittest
from pathlib import Path

import yaml
from deckpt.config import Config
from pydantic import ValidationError


class TestConfig(unittest.TestCase):
    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config_file = self.temp_dir / "config.yaml"

    def tearDown(self):
        if self.config_file.exists():
            self.config_file.unlink()
        if self.temp_dir.exists():
            self.temp_dir.rmdir()

    def write_config(self, config_data):
        with self.config_file.open("w", encoding="utf-8") as f:
            yaml.dump(config_data, f)

    def test_default_config(self):
        """Test loading config when no config file exists."""
        config = Config.load(self.config_file)

        self.assertEqual(config.space.path, Path("/"))
        self.assertEqual(config.space.low_watermark_mb, 1024)
        self.assertEqual(config.space.critical_watermark_mb, 512)
        self.assertLess(config.space.critical_watermark_mb, config.space.low_watermark_mb)

        self.assertTrue(config.local.enabled)
        self.assertEqual(config.aur.helper, "yay")
        self.assertEqual(config.cleanup.journal_vacuum_time, "2d")
        self.assertIn(Path("/tmp"), config.cleanup.temp_dirs)

    def test_empty_config_file(self):
        """Test loading empty config file."""
        self.config_file.write_text("")
        config = Config.load(self.config_file)

        self.assertTrue(config.local.enabled)
        self.assertEqual(config.space.critical_watermark_mb, 512)

    def test_partial_config(self):
        """Test loading config with only some values specified."""
        self.write_config({"space": {"critical_watermark_mb": 256}, "aur": {"helper": "paru"}})

        config = Config.load(self.config_file)

        self.assertEqual(config.space.critical_watermark_mb, 256)
        self.assertEqual(config.aur.helper, "paru")
        # Untouched values keep their defaults
        self.assertEqual(config.space.low_watermark_mb, 1024)
        self.assertEqual(config.aur.bootstrap_url, "https://aur.archlinux.org/yay.git")

    def test_cleanup_dirs_from_yaml(self):
        self.write_config({"cleanup": {"dataset_dirs": ["/run/media/deck/wordlists"], "temp_min_age_minutes": 5}})

        config = Config.load(self.config_file)

        self.assertEqual(config.cleanup.dataset_dirs, (Path("/run/media/deck/wordlists"),))
        self.assertEqual(config.cleanup.temp_min_age_minutes, 5)

    def test_unknown_keys_rejected(self):
        """Typos in the config must not be silently ignored."""
        self.write_config({"space": {"critical_watermark": 100}})

        with self.assertRaises(ValidationError):
            Config.load(self.config_file)

    def test_invalid_type_rejected(self):
        self.write_config({"space": {"low_watermark_mb": "lots"}})

        with self.assertRaises(ValidationError):
            Config.load(self.config_file)

    def test_config_is_frozen(self):
        config = Config()
        with self.assertRaises(ValidationError):
            config.snapshot_dir = Path("/tmp")


class TestCliOverrides(unittest.TestCase):
    def test_no_overrides(self):
        config = Config()
        self.assertEqual(config.with_cli_overrides(), config)

    def test_system_disables_local(self):
        config = Config().with_cli_overrides(system=True)
        self.assertFalse(config.local.enabled)

    def test_local_enables_local(self):
        base = Config.model_validate({"local": {"enabled": False}})
        config = base.with_cli_overrides(local=True)
        self.assertTrue(config.local.enabled)

    def test_local_and_system_conflict(self):
        with self.assertRaises(ValueError):
            Config().with_cli_overrides(local=True, system=True)

    def test_space_path(self):
        config = Config().with_cli_overrides(space_path=Path("/home"))
        self.assertEqual(config.space.path, Path("/home"))
        # The base config is unchanged
        self.assertEqual(Config().space.path, Path("/"))


if __name__ == "__main__":
    unittest.main()
