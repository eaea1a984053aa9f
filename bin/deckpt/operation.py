from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class PackageSource(Enum):
    REPOSITORY = "repository"
    AUR_HELPER = "aur"
    SOURCE_BUILD = "source"


class Outcome(Enum):
    INSTALLED = "installed"
    ALREADY_PRESENT = "already present"
    NOT_FOUND = "not found"
    FAILED = "failed"
    REMOVED = "removed"

    @property
    def is_failure(self) -> bool:
        return self == Outcome.FAILED


@dataclass(frozen=True)
class PackageRequest:
    name: str
    source: PackageSource = PackageSource.REPOSITORY
    url: str = ""
    post_install: tuple[str, ...] = ()
    # unpacked into the home prefix, whatever the current destination mode
    installed_locally: bool = False

    def __str__(self) -> str:
        return f"{self.name} ({self.source.value})"


@dataclass(frozen=True)
class OperationResult:
    requested_name: str
    outcome: Outcome
    freed_space_mb: int = 0
    warnings: tuple[str, ...] = ()
    message: str = ""

    def with_warning(self, warning: str) -> OperationResult:
        return OperationResult(
            requested_name=self.requested_name,
            outcome=self.outcome,
            freed_space_mb=self.freed_space_mb,
            warnings=self.warnings + (warning,),
            message=self.message,
        )


@dataclass
class BatchSummary:
    results: list[OperationResult] = field(default_factory=list)

    def add(self, result: OperationResult) -> None:
        self.results.append(result)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def failed(self) -> list[str]:
        return sorted(result.requested_name for result in self.results if result.outcome.is_failure)

    @property
    def freed_space_mb(self) -> int:
        return sum(result.freed_space_mb for result in self.results)

    def describe(self, dry_run: bool = False) -> str:
        return (
            f"{self.count(Outcome.INSTALLED)} packages installed "
            f"{'(apparently; this was a dry-run) ' if dry_run else ''}OK, "
            f"{self.count(Outcome.REMOVED)} removed, "
            f"{self.count(Outcome.ALREADY_PRESENT)} already present, "
            f"{self.count(Outcome.NOT_FOUND)} not found, "
            f"and {len(self.failed)} failed"
        )
