from __future__ import annotations


class EnvironmentMissing(RuntimeError):
    """A precondition of the whole run is not met (no package manager, no privilege)."""


class PackageNotFound(RuntimeError):
    pass


class PackageOperationFailed(RuntimeError):
    pass


class InsufficientSpace(RuntimeError):
    """The package manager ran out of disk space while working on a package."""


class ConfirmationFailed(RuntimeError):
    pass
