"""The space-aware install and uninstall workflow.

Every package operation is checked against the free-space watermarks first. When space is
critical the cleanup procedure runs once before the operation is attempted. Removals that
fail for lack of space get exactly one cleanup-and-retry. Per-package failures are turned
into an OperationResult and never stop the rest of a batch; only EnvironmentMissing and
ConfirmationFailed escape.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import traceback
from collections.abc import Iterable

from deckpt.cleanup import Cleaner
from deckpt.errors import (
    ConfirmationFailed,
    EnvironmentMissing,
    InsufficientSpace,
    PackageNotFound,
    PackageOperationFailed,
)
from deckpt.operation import BatchSummary, OperationResult, Outcome, PackageRequest
from deckpt.package_manager import PackageManagers
from deckpt.space import FilesystemProbe, SpaceBudget, format_mb
from deckpt.system_context import SystemContext

_LOGGER = logging.getLogger(__name__)

_PER_PACKAGE_ERRORS = (InsufficientSpace, PackageOperationFailed, subprocess.SubprocessError, OSError)


class Workflow:
    def __init__(
        self,
        context: SystemContext,
        managers: PackageManagers,
        probe: FilesystemProbe,
        cleaner: Cleaner,
    ):
        self.context = context
        self.managers = managers
        self.probe = probe
        self.cleaner = cleaner

    def _ensure_space(self, budget: SpaceBudget) -> tuple[int, list[str]]:
        """Returns the space freed by cleanup (if it ran) and any warnings to attach."""
        budget = budget.refreshed(self.probe)
        if budget.is_critical:
            _LOGGER.warning(
                "Only %s free on %s (critical watermark %s), cleaning up first",
                format_mb(budget.free_mb),
                budget.path,
                format_mb(budget.critical_watermark_mb),
            )
            freed = self.cleaner.run().freed_mb
            budget = budget.refreshed(self.probe)
            if budget.is_critical:
                return freed, [
                    f"free space on {budget.path} still below critical watermark after cleanup "
                    f"({budget.free_mb} MiB < {budget.critical_watermark_mb} MiB)"
                ]
            return freed, []
        if budget.is_low:
            return 0, [f"free space on {budget.path} is low ({budget.free_mb} MiB < {budget.low_watermark_mb} MiB)"]
        return 0, []

    def install_package(self, request: PackageRequest, budget: SpaceBudget, force: bool = False) -> OperationResult:
        freed, warnings = self._ensure_space(budget)

        def result(outcome: Outcome, message: str = "") -> OperationResult:
            return OperationResult(request.name, outcome, freed, tuple(warnings), message)

        manager = self.managers.for_request(request)
        try:
            if not manager.search(request.name):
                return result(Outcome.NOT_FOUND, f"{request.name} is not in the {manager.description} index")
            if not force and manager.is_installed(request.name):
                return result(Outcome.ALREADY_PRESENT, "already installed, skipping")
            if not manager.install(request.name):
                return result(Outcome.FAILED, f"{manager.description} failed to install {request.name}")
            if not self.context.dry_run and not manager.is_installed(request.name):
                return result(Outcome.FAILED, "installed OK, but doesn't appear as installed after")
        except PackageNotFound as e:
            return result(Outcome.NOT_FOUND, str(e))
        except _PER_PACKAGE_ERRORS as e:
            return result(Outcome.FAILED, str(e))

        installed = result(Outcome.INSTALLED, "installed OK")
        for command in request.post_install:
            try:
                outcome = self.context.run(shlex.split(command))
            except OSError as e:
                installed = installed.with_warning(f"post-install step '{command}' could not run: {e}")
                continue
            if outcome.returncode != 0:
                installed = installed.with_warning(
                    f"post-install step '{command}' failed with exit code {outcome.returncode}"
                )
        return installed

    def uninstall_package(self, request: PackageRequest) -> OperationResult:
        manager = self.managers.for_request(request)
        freed = 0
        try:
            if not manager.is_installed(request.name):
                return OperationResult(request.name, Outcome.NOT_FOUND, message="not installed, nothing to do")
            try:
                removed = manager.remove(request.name)
            except InsufficientSpace as e:
                _LOGGER.warning("%s; cleaning up and retrying once", e)
                freed = self.cleaner.run().freed_mb
                try:
                    removed = manager.remove(request.name)
                except InsufficientSpace as retry_error:
                    return OperationResult(
                        request.name, Outcome.FAILED, freed, message=f"{retry_error} (even after cleanup)"
                    )
        except _PER_PACKAGE_ERRORS as e:
            return OperationResult(request.name, Outcome.FAILED, freed, message=str(e))
        if not removed:
            return OperationResult(request.name, Outcome.FAILED, freed, message=f"{manager.description} failed")
        return OperationResult(request.name, Outcome.REMOVED, freed, message="removed OK")

    def install_batch(
        self, requests: Iterable[PackageRequest], budget: SpaceBudget, force: bool = False
    ) -> BatchSummary:
        summary = BatchSummary()
        for request in requests:
            print(f"Installing {request}")
            summary.add(self._isolated(request, lambda r=request: self.install_package(r, budget, force)))
        return summary

    def uninstall_batch(self, requests: Iterable[PackageRequest]) -> BatchSummary:
        summary = BatchSummary()
        for request in requests:
            print(f"Removing {request}")
            summary.add(self._isolated(request, lambda r=request: self.uninstall_package(r)))
        return summary

    def _isolated(self, request: PackageRequest, operation) -> OperationResult:
        try:
            result = operation()
        except (EnvironmentMissing, ConfirmationFailed):
            raise
        except Exception as e:  # one broken package must not stop the batch
            _LOGGER.error("%s failed: %s\n%s", request.name, e, traceback.format_exc(5))
            result = OperationResult(request.name, Outcome.FAILED, message=str(e))
        log_result(result)
        return result


def log_result(result: OperationResult) -> None:
    for warning in result.warnings:
        _LOGGER.warning("%s: %s", result.requested_name, warning)
    if result.freed_space_mb:
        _LOGGER.info("%s: cleanup freed %s", result.requested_name, format_mb(result.freed_space_mb))
    level = logging.ERROR if result.outcome.is_failure else logging.INFO
    _LOGGER.log(level, "%s %s: %s", result.requested_name, result.outcome.value, result.message)
