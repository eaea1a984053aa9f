from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import yaml

from deckpt.errors import InsufficientSpace, PackageNotFound, PackageOperationFailed
from deckpt.operation import PackageRequest, PackageSource
from deckpt.system_context import SystemContext, mentions_out_of_space
from deckpt.yaml_loader import load_yaml

_LOGGER = logging.getLogger(__name__)

# pacman metadata members that are not part of the installed tree
_PACKAGE_METADATA = (".PKGINFO", ".BUILDINFO", ".MTREE", ".INSTALL", ".CHANGELOG")


def _succeeded(name: str, action: str, result: subprocess.CompletedProcess) -> bool:
    if result.returncode == 0:
        return True
    if mentions_out_of_space(result.stderr) or mentions_out_of_space(result.stdout):
        raise InsufficientSpace(f"Not enough disk space to {action} {name}")
    _LOGGER.warning("Unable to %s %s: %s", action, name, (result.stderr or "").strip())
    return False


class PackageManager:
    """The operations the install workflow needs from a package source."""

    description = "package manager"

    def __init__(self, context: SystemContext):
        self.context = context

    def search(self, name: str) -> bool:
        raise NotImplementedError

    def install(self, name: str) -> bool:
        raise NotImplementedError

    def is_installed(self, name: str) -> bool:
        return self.context.query(["pacman", "-Qi", name])

    def remove(self, name: str) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class PacmanPackageManager(PackageManager):
    description = "pacman (system)"

    def search(self, name: str) -> bool:
        # base-devel and friends are groups rather than packages
        return self.context.query(["pacman", "-Si", name]) or self.context.query(["pacman", "-Sg", name])

    def install(self, name: str) -> bool:
        result = self.context.run(["pacman", "-S", "--needed", "--noconfirm", name], privileged=True)
        return _succeeded(name, "install", result)

    def remove(self, name: str) -> bool:
        result = self.context.run(["pacman", "-Rns", "--noconfirm", name], privileged=True)
        return _succeeded(name, "remove", result)


class LocalPackageManager(PacmanPackageManager):
    """Installs repository packages under the user's home directory.

    Packages are downloaded with pacman into a staging directory and unpacked into the
    local prefix. Each package's file list is kept in a manifest so it can be removed again.
    """

    description = "pacman (local)"

    @property
    def prefix(self) -> Path:
        return self.context.config.local.prefix

    def manifest_path(self, name: str) -> Path:
        return self.prefix / "manifests" / f"{name}.yaml"

    def is_installed(self, name: str) -> bool:
        # packages SteamOS already ships count as present
        return self.manifest_path(name).is_file() or super().is_installed(name)

    def install(self, name: str) -> bool:
        with self.context.new_staging_dir() as staging:
            result = self.context.run(
                ["pacman", "-Sw", "--noconfirm", "--cachedir", str(staging.path), name], privileged=True
            )
            if not _succeeded(name, "download", result):
                return False
            if self.context.dry_run:
                _LOGGER.info("Would unpack %s into %s but in dry-run mode", name, self.prefix)
                return True
            files: list[str] = []
            archives = sorted(p for p in staging.path.glob("*.pkg.tar*") if not p.name.endswith(".sig"))
            if not archives:
                _LOGGER.warning("pacman downloaded nothing for %s", name)
                return False
            self.prefix.mkdir(parents=True, exist_ok=True)
            for archive in archives:
                _LOGGER.info("Unpacking %s into %s", archive.name, self.prefix)
                excludes = [f"--exclude={member}" for member in _PACKAGE_METADATA]
                result = self.context.run(["tar", "-xf", str(archive), "-C", str(self.prefix), *excludes])
                if not _succeeded(name, "unpack", result):
                    return False
                listing = self.context.run(["tar", "-tf", str(archive), *excludes], mutating=False)
                files.extend(line for line in listing.stdout.splitlines() if line)
        self._write_manifest(name, [archive.name for archive in archives], files)
        return True

    def _write_manifest(self, name: str, archives: list[str], files: list[str]) -> None:
        manifest = self.manifest_path(name)
        manifest.parent.mkdir(parents=True, exist_ok=True)
        with manifest.open("w", encoding="utf-8") as manifest_file:
            yaml.safe_dump({"name": name, "archives": archives, "files": sorted(set(files))}, manifest_file)
        _LOGGER.debug("Wrote manifest %s (%d entries)", manifest, len(files))

    def remove(self, name: str) -> bool:
        manifest = self.manifest_path(name)
        if not manifest.is_file():
            return super().remove(name)
        try:
            entries = (load_yaml(manifest) or {}).get("files", [])
            # dependencies pulled in with pacman -Sw can be listed by several manifests
            shared = self._files_owned_by_others(name)
        except OSError as e:
            _LOGGER.warning("Unable to read manifests for %s: %s", name, e)
            return False
        directories = []
        for entry in entries:
            target = self.prefix / entry
            if entry.endswith("/"):
                directories.append(target)
            elif entry in shared:
                _LOGGER.debug("Keeping %s, still used by another local package", entry)
            else:
                self.context.remove_path(target)
        # deepest first, and only if nothing else lives there
        for directory in sorted(directories, key=lambda d: len(d.parts), reverse=True):
            if directory.is_dir() and not any(directory.iterdir()) and not self.context.dry_run:
                directory.rmdir()
        self.context.remove_path(manifest)
        return True

    def _files_owned_by_others(self, name: str) -> set[str]:
        owned = set()
        for other in self.manifest_path(name).parent.glob("*.yaml"):
            if other.stem != name:
                owned.update((load_yaml(other) or {}).get("files", []))
        return owned


class SourceBuildPackageManager(PackageManager):
    """Builds PKGBUILD repositories from git with makepkg."""

    description = "makepkg (source)"

    def __init__(self, context: SystemContext, urls: dict[str, str] | None = None):
        super().__init__(context)
        self.urls = dict(urls or {})

    def _url(self, name: str) -> str:
        if name not in self.urls:
            raise PackageNotFound(f"No source url configured for {name}")
        return self.urls[name]

    def search(self, name: str) -> bool:
        return self.context.query(["git", "ls-remote", self._url(name), "HEAD"])

    def install(self, name: str) -> bool:
        with self.context.new_staging_dir() as staging:
            checkout = staging.path / name
            result = self.context.run(["git", "clone", "--depth", "1", self._url(name), str(checkout)])
            if not _succeeded(name, "clone", result):
                return False
            result = self.context.run(["makepkg", "-si", "--noconfirm"], cwd=checkout)
            return _succeeded(name, "build", result)

    def remove(self, name: str) -> bool:
        result = self.context.run(["pacman", "-Rns", "--noconfirm", name], privileged=True)
        return _succeeded(name, "remove", result)


class AurPackageManager(PackageManager):
    """Drives the AUR helper, bootstrapping it from source on first use."""

    description = "AUR helper"

    def __init__(self, context: SystemContext, source_build: SourceBuildPackageManager):
        super().__init__(context)
        self.helper = context.config.aur.helper
        self._source_build = source_build
        self._source_build.urls.setdefault(self.helper, context.config.aur.bootstrap_url)

    def ensure_available(self) -> None:
        if self.context.which(self.helper) or self.context.dry_run:
            return
        _LOGGER.info("%s is not installed, building it from %s", self.helper, self._source_build.urls[self.helper])
        try:
            built = self._source_build.install(self.helper)
        except InsufficientSpace as e:
            raise PackageOperationFailed(f"Unable to bootstrap {self.helper}: {e}") from e
        if not built or not self.context.which(self.helper):
            raise PackageOperationFailed(f"Unable to bootstrap {self.helper}")

    def search(self, name: str) -> bool:
        self.ensure_available()
        return self.context.query([self.helper, "-Si", name])

    def install(self, name: str) -> bool:
        self.ensure_available()
        # the helper calls sudo itself and refuses to build as root
        result = self.context.run([self.helper, "-S", "--needed", "--noconfirm", name])
        return _succeeded(name, "install", result)

    def remove(self, name: str) -> bool:
        self.ensure_available()
        result = self.context.run([self.helper, "-Rns", "--noconfirm", name])
        return _succeeded(name, "remove", result)


class PackageManagers:
    """Picks the package manager responsible for a request."""

    def __init__(self, context: SystemContext):
        self.context = context
        self.source_build = SourceBuildPackageManager(context)
        self.local = LocalPackageManager(context)
        self.repository: PackageManager = self.local if context.local_enabled else PacmanPackageManager(context)
        self.aur = AurPackageManager(context, self.source_build)

    def for_request(self, request: PackageRequest) -> PackageManager:
        if request.installed_locally:
            return self.local
        if request.source == PackageSource.AUR_HELPER:
            return self.aur
        if request.source == PackageSource.SOURCE_BUILD:
            if request.url:
                self.source_build.urls[request.name] = request.url
            return self.source_build
        return self.repository
