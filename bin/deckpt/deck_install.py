#!/usr/bin/env python3
# coding=utf-8
import functools
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import click

from deckpt.catalog import Catalog, CatalogEntry
from deckpt.cleanup import Cleaner
from deckpt.config import DEFAULT_CONFIG_PATH, Config
from deckpt.confirm import require_confirmation
from deckpt.environment import EnvironmentConfig, remove_profile_block, write_profile
from deckpt.errors import ConfirmationFailed, EnvironmentMissing
from deckpt.launchers import LauncherRegistry
from deckpt.operation import BatchSummary, PackageRequest, PackageSource
from deckpt.package_manager import PackageManagers
from deckpt.preflight import check_environment, prepare_system
from deckpt.snapshot import Snapshot, current_snapshot, default_snapshot_path, latest_snapshot
from deckpt.space import FilesystemProbe, SpaceBudget, format_mb
from deckpt.system_context import SystemContext
from deckpt.workflow import Workflow

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CliContext:
    system: SystemContext
    config: Config
    yaml_dir: Path
    enabled: List[str]
    filter_match_all: bool

    @property
    def dry_run(self) -> bool:
        return self.system.dry_run

    def catalog(self) -> Catalog:
        variables = dict(prefix=str(self.config.local.prefix), home=str(Path.home()))
        return Catalog.load(self.yaml_dir, self.enabled, variables)

    def get_entries(self, args_filter: List[str]) -> List[CatalogEntry]:
        return self.catalog().select(list(args_filter), self.filter_match_all)

    def probe(self) -> FilesystemProbe:
        return FilesystemProbe()

    def cleaner(self) -> Cleaner:
        return Cleaner(self.system, self.probe(), self.config.cleanup, self.config.space.path)

    def budget(self) -> SpaceBudget:
        return SpaceBudget.from_config(self.config.space, self.probe())

    def workflow(self) -> Workflow:
        return Workflow(self.system, PackageManagers(self.system), self.probe(), self.cleaner())

    def environment(self) -> EnvironmentConfig:
        return EnvironmentConfig.for_local(self.config.local)


def fatal_errors(func):
    """Turns run-level failures into a non-zero exit; everything per-package is handled in the workflow."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (EnvironmentMissing, ConfirmationFailed) as e:
            _LOGGER.error("%s", e)
            raise click.ClickException(str(e)) from e

    return wrapper


def print_summary(summary: BatchSummary, dry_run: bool) -> None:
    print(summary.describe(dry_run))
    if summary.freed_space_mb:
        print(f"Cleanup freed {format_mb(summary.freed_space_mb)} along the way")
    if summary.failed:
        print("Failed:")
        for name in summary.failed:
            print(f"  {name}")
    warned = [result for result in summary.results if result.warnings]
    if warned:
        print("Warnings:")
        for result in warned:
            for warning in result.warnings:
                print(f"  {result.requested_name}: {warning}")


def refresh_launchers(context: CliContext, entries: List[CatalogEntry]) -> List[str]:
    """Rebuilds the launcher registry for entries, returning launchers that could not be resolved."""
    environment = context.environment()
    built, missing = LauncherRegistry.build(entries, environment, context.config.local.bin_dir)
    registry = LauncherRegistry.load(context.config.registry_path).without(missing).merged(built)
    if context.dry_run:
        _LOGGER.info("Would save %d launchers but in dry-run mode", len(registry.launchers))
    else:
        registry.save(context.config.registry_path)
    registry.write_scripts(context.config.local.bin_dir, context.config.local.prefix, environment, context.dry_run)
    return missing


def prune_launchers(context: CliContext, registry: LauncherRegistry) -> None:
    """Drops launchers whose executable has gone, with the wrapper scripts we wrote for them."""
    stale = registry.validate()
    if not stale:
        return
    registry.remove_scripts(stale, context.config.local.bin_dir, context.dry_run)
    if not context.dry_run:
        registry.without(stale).save(context.config.registry_path)


def remove_environment(context: CliContext, registry: LauncherRegistry) -> None:
    """Undoes what install set up around the packages: wrapper scripts, the registry and the profile block."""
    registry.remove_scripts(registry.launchers, context.config.local.bin_dir, context.dry_run)
    if context.dry_run:
        _LOGGER.info("Would remove %s but in dry-run mode", context.config.registry_path)
    else:
        context.config.registry_path.unlink(missing_ok=True)
    remove_profile_block(context.config.local.profile, context.dry_run)


@click.group()
@click.option("--debug/--no-debug", help="Turn on debugging")
@click.option("--dry-run/--for-real", help="Dry run only")
@click.option("--log-to-console", is_flag=True, help="Log output to console, even if logging to a file is requested")
@click.option("--log", metavar="LOGFILE", help="Log to LOGFILE", type=click.Path(dir_okay=False, writable=True))
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_PATH,
    metavar="CONFIG",
    help="Read configuration from CONFIG",
    show_default=True,
    type=click.Path(dir_okay=False, path_type=Path),
)
@click.option(
    "--yaml-dir",
    default=Path(__file__).resolve().parent.parent / "yaml",
    help="Look for package catalogue yaml files in DIR",
    metavar="DIR",
    show_default=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option(
    "--enable", metavar="TYPE", multiple=True, help='Enable catalogue variants of type TYPE (e.g. "extended")'
)
@click.option(
    "--filter-match-all/--filter-match-any", help="Filter expressions must all match / any match", default=True
)
@click.option("--local", is_flag=True, help="Install repository packages into the home directory (the default)")
@click.option("--system", is_flag=True, help="Install repository packages system-wide")
@click.option("--keep-staging", is_flag=True, help="Keep the unique staging directory")
@click.pass_context
def cli(
    ctx: click.Context,
    debug: bool,
    dry_run: bool,
    log_to_console: bool,
    log: Optional[str],
    config_path: Path,
    yaml_dir: Path,
    enable: List[str],
    filter_match_all: bool,
    local: bool,
    system: bool,
    keep_staging: bool,
):
    """Install and remove pentest tools on a SteamOS handheld, minding the small root partition."""
    formatter = logging.Formatter(fmt="%(asctime)s %(name)-15s %(levelname)-8s %(message)s")
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if log:
        file_handler = logging.FileHandler(log)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    if not log or log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    try:
        config = Config.load(config_path).with_cli_overrides(local=local, system=system)
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    ctx.obj = CliContext(
        system=SystemContext(config, dry_run=dry_run, keep_staging=keep_staging),
        config=config,
        yaml_dir=yaml_dir,
        enabled=list(enable),
        filter_match_all=filter_match_all,
    )


@cli.command(name="list")
@click.pass_obj
@click.option("--json", "as_json", is_flag=True, help="Output in JSON format")
@click.option("--installed-only", is_flag=True, help="Only output installed packages")
@click.argument("filter_", metavar="FILTER", nargs=-1)
def list_cmd(context: CliContext, filter_: List[str], as_json: bool, installed_only: bool):
    """List catalogue packages matching FILTER."""
    managers = PackageManagers(context.system) if installed_only else None
    for entry in context.get_entries(filter_):
        if managers and not managers.for_request(entry.to_request()).is_installed(entry.package):
            continue
        print(json.dumps(entry.to_dict()) if as_json else entry.name)
        _LOGGER.debug(entry)


@cli.command()
@click.pass_obj
@click.argument("filter_", metavar="FILTER", nargs=-1)
def check_installed(context: CliContext, filter_: List[str]):
    """Check whether packages matching FILTER are installed."""
    managers = PackageManagers(context.system)
    for entry in context.get_entries(filter_):
        if managers.for_request(entry.to_request()).is_installed(entry.package):
            print(f"{entry.name}: installed")
        else:
            print(f"{entry.name}: not installed")


@cli.command()
@click.pass_obj
def space(context: CliContext):
    """Show free space against the configured watermarks."""
    probe = context.probe()
    print(context.budget().describe())
    for label, directory in (
        ("local prefix", context.config.local.prefix),
        *(("helper cache", d) for d in context.config.cleanup.helper_cache_dirs),
        *(("dataset dir", d) for d in context.config.cleanup.dataset_dirs),
    ):
        if directory.is_dir():
            print(f"{label} {directory}: {format_mb(probe.directory_size_mb(directory))}")


@cli.command()
@click.pass_obj
@click.option("--force", is_flag=True, help="Install even if already present")
@click.option("--force-cleanup", is_flag=True, help="Run the cleanup procedure before installing, whatever the space")
@click.option(
    "--emergency-cleanup",
    is_flag=True,
    help="Run the aggressive cleanup (datasets and user caches) before installing; asks for confirmation",
)
@click.argument("filter_", metavar="FILTER", nargs=-1)
@fatal_errors
def install(context: CliContext, filter_: List[str], force: bool, force_cleanup: bool, emergency_cleanup: bool):
    """Install packages matching FILTER."""
    check_environment(context.system)
    if emergency_cleanup:
        require_confirmation("aggressive cleanup of datasets and user caches")
        context.cleaner().run(aggressive=True)
    elif force_cleanup:
        context.cleaner().run()

    entries = context.get_entries(filter_)
    workflow = context.workflow()
    summary = workflow.install_batch([entry.to_request() for entry in entries], context.budget(), force)

    if context.config.local.enabled:
        write_profile(context.config.local.profile, context.environment(), context.dry_run)
    missing = refresh_launchers(context, entries)
    if missing:
        _LOGGER.info("No executable found for launchers: %s", ", ".join(missing))
    print_summary(summary, context.dry_run)


@cli.command()
@click.pass_obj
@click.argument("filter_", metavar="FILTER", nargs=-1)
@fatal_errors
def uninstall(context: CliContext, filter_: List[str]):
    """Remove packages matching FILTER (everything in the catalogue if no FILTER is given)."""
    if not filter_:
        require_confirmation("uninstall every catalogue package")
    check_environment(context.system)
    entries = context.get_entries(filter_)
    summary = context.workflow().uninstall_batch([entry.to_request() for entry in entries])
    registry = LauncherRegistry.load(context.config.registry_path)
    if not filter_ and not summary.failed:
        remove_environment(context, registry)
    else:
        prune_launchers(context, registry)
    print_summary(summary, context.dry_run)


@cli.command()
@click.pass_obj
@click.option(
    "--aggressive", is_flag=True, help="Also delete downloaded datasets and user caches; asks for confirmation"
)
@fatal_errors
def cleanup(context: CliContext, aggressive: bool):
    """Free disk space by clearing caches, logs and temporary files."""
    if aggressive:
        require_confirmation("aggressive cleanup of datasets and user caches")
    report = context.cleaner().run(aggressive=aggressive)
    print(f"Cleaned {', '.join(report.steps) or 'nothing'}; freed {format_mb(report.freed_mb)}")
    if report.skipped:
        print(f"Skipped after errors: {', '.join(report.skipped)}")


@cli.command()
@click.pass_obj
@fatal_errors
def prepare(context: CliContext):
    """Unlock the SteamOS root filesystem, set up the pacman keyring and update the system."""
    check_environment(context.system)
    failed = prepare_system(context.system)
    if failed:
        print(f"{len(failed)} preparation steps failed: {', '.join(failed)}")
    else:
        print("System prepared")


@cli.command()
@click.pass_obj
@click.argument("filter_", metavar="FILTER", nargs=-1)
def launchers(context: CliContext, filter_: List[str]):
    """Rebuild and validate launchers for packages matching FILTER."""
    missing = refresh_launchers(context, context.get_entries(filter_))
    registry = LauncherRegistry.load(context.config.registry_path)
    for name, path in sorted(registry.launchers.items()):
        print(f"{name}: {path}")
    for name in missing:
        print(f"{name}: missing")


@cli.command()
@click.pass_obj
@click.argument("path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@fatal_errors
def snapshot(context: CliContext, path: Optional[Path]):
    """Record the installed package set to PATH (default: a new file in the snapshot dir)."""
    check_environment(context.system)
    path = path or default_snapshot_path(context.config.snapshot_dir)
    current_snapshot(context.system).save(path)
    print(f"Snapshot saved to {path}")


@cli.command()
@click.pass_obj
@click.argument("path", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@fatal_errors
def restore(context: CliContext, path: Optional[Path]):
    """Remove every package installed since the snapshot at PATH (default: the latest snapshot)."""
    path = path or latest_snapshot(context.config.snapshot_dir)
    if path is None:
        raise click.ClickException(f"No snapshots in {context.config.snapshot_dir}")
    saved = Snapshot.load(path)
    check_environment(context.system)
    current = current_snapshot(context.system)
    added = saved.added_since(current)
    if not added:
        print(f"Nothing installed since {saved.taken}")
        return
    print(f"{len(added)} packages were installed since {saved.taken}: {' '.join(added)}")
    require_confirmation(f"restore snapshot {path.name}")
    local = set(current.local_packages)
    summary = context.workflow().uninstall_batch(
        PackageRequest(name, PackageSource.REPOSITORY, installed_locally=name in local) for name in added
    )
    print_summary(summary, context.dry_run)


def main():
    cli(prog_name="deck-install")


if __name__ == "__main__":
    main()
