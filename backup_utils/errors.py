"""
Error taxonomy for backup and restore operations.

- PreconditionError: target is not in a state we can restore into.
  Raised before anything destructive happens.
- StepFailedError: a datastore routine failed mid-restore. Fatal for the session.
- OperatorAbort: operator declined the confirmation prompt. Not a failure.
- TransportError: a remote command or transfer exited non-zero.
"""

from typing import Dict, List, Optional


class BackupUtilsError(Exception):
    """Base class for all backup_utils errors."""
    pass


class ConfigError(BackupUtilsError):
    """Configuration is missing or invalid."""
    pass


class PreconditionError(BackupUtilsError):
    """A validation gate failed before any destructive action."""
    pass


class UnreachableHostError(PreconditionError):
    """Target host could not be reached or did not report a version."""
    pass


class VersionMismatchError(PreconditionError):
    """Target or snapshot version is outside the supported range."""
    pass


class MaintenanceModeError(PreconditionError):
    """Configured standalone target is not in maintenance mode."""
    pass


class OperatorAbort(BackupUtilsError):
    """Operator declined to continue at the confirmation prompt."""
    pass


class SnapshotError(BackupUtilsError):
    """Snapshot store problem (missing snapshot, backup already running)."""
    pass


class InvalidStateTransition(BackupUtilsError):
    """Raised when attempting an invalid state transition."""
    pass


class TransportError(BackupUtilsError):
    """Remote command or transfer exited non-zero."""

    def __init__(self, command: List[str], returncode: int, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command failed ({returncode}): {' '.join(command)}"
        )


class FanOutError(BackupUtilsError):
    """One or more members failed during a fan-out transfer."""

    def __init__(self, failures: Dict[str, BaseException]):
        self.failures = failures
        super().__init__(f"Transfer failed on: {', '.join(sorted(failures))}")


class StepFailedError(BackupUtilsError):
    """A datastore step failed; the session stops here."""

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        self.step = step
        self.cause = cause
        message = f"Step '{step}' failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
