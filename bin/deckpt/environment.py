from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from deckpt.config import LocalConfig

_LOGGER = logging.getLogger(__name__)

PROFILE_BEGIN = "# >>> deck-pentest environment >>>"
PROFILE_END = "# <<< deck-pentest environment <<<"


def _append_absent(entries: tuple[str, ...], new_entries) -> tuple[str, ...]:
    result = list(entries)
    for entry in new_entries:
        entry = str(entry)
        if entry not in result:
            result.append(entry)
    return tuple(result)


@dataclass(frozen=True)
class EnvironmentConfig:
    """Search paths locally installed tools need, kept as data instead of edits to the live shell."""

    path: tuple[str, ...] = ()
    library_path: tuple[str, ...] = ()

    @classmethod
    def for_local(cls, local: LocalConfig) -> EnvironmentConfig:
        return (
            cls()
            .with_path(local.bin_dir, local.prefix / "usr" / "bin")
            .with_library_path(local.prefix / "usr" / "lib")
        )

    def with_path(self, *entries) -> EnvironmentConfig:
        return EnvironmentConfig(_append_absent(self.path, entries), self.library_path)

    def with_library_path(self, *entries) -> EnvironmentConfig:
        return EnvironmentConfig(self.path, _append_absent(self.library_path, entries))

    def apply(self, environ: Mapping[str, str]) -> dict[str, str]:
        """Returns a copy of environ with our entries prepended where missing."""
        result = dict(environ)
        for variable, entries in (("PATH", self.path), ("LD_LIBRARY_PATH", self.library_path)):
            existing = [e for e in result.get(variable, "").split(os.pathsep) if e]
            missing = [e for e in entries if e not in existing]
            if missing:
                result[variable] = os.pathsep.join(missing + existing)
        return result

    def exports(self) -> list[str]:
        lines = []
        for variable, entries in (("PATH", self.path), ("LD_LIBRARY_PATH", self.library_path)):
            if entries:
                joined = ":".join(shlex.quote(e) for e in entries)
                lines.append(f'export {variable}={joined}"${{{variable}:+:${variable}}}"')
        return lines

    def render(self) -> str:
        return "\n".join([PROFILE_BEGIN, *self.exports(), PROFILE_END]) + "\n"


def _without_block(text: str) -> tuple[str, bool]:
    lines = text.splitlines(keepends=True)
    if not any(line.rstrip("\n") == PROFILE_BEGIN for line in lines):
        return text, False
    kept = []
    inside = False
    for line in lines:
        stripped = line.rstrip("\n")
        if stripped == PROFILE_BEGIN:
            inside = True
        elif stripped == PROFILE_END and inside:
            inside = False
        elif not inside:
            kept.append(line)
    return "".join(kept), True


def write_profile(profile: Path, environment: EnvironmentConfig, dry_run: bool = False) -> EnvironmentConfig:
    """Writes (or rewrites) our block in profile, leaving the rest of the file alone."""
    text = profile.read_text(encoding="utf-8") if profile.exists() else ""
    text, _ = _without_block(text)
    if text and not text.endswith("\n"):
        text += "\n"
    new_text = text + environment.render()
    if dry_run:
        _LOGGER.info("Would update environment block in %s but in dry-run mode", profile)
        return environment
    profile.parent.mkdir(parents=True, exist_ok=True)
    profile.write_text(new_text, encoding="utf-8")
    _LOGGER.info("Updated environment block in %s", profile)
    return environment


def remove_profile_block(profile: Path, dry_run: bool = False) -> bool:
    if not profile.exists():
        return False
    text, found = _without_block(profile.read_text(encoding="utf-8"))
    if found and not dry_run:
        profile.write_text(text, encoding="utf-8")
        _LOGGER.info("Removed environment block from %s", profile)
    return found
