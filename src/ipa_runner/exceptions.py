"""Error taxonomy for ipa-runner.

Resolution and precondition errors are raised and abort the whole
operation. Per-host execution errors are never raised out of the
dispatcher; they are stored on that host's ExecutionResult.
"""

from enum import Enum
from typing import Any


class RunnerError(Exception):
    """Base class for all ipa-runner errors.

    Attributes:
        message: Human-readable error message
        details: Extra context about the failure
    """

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details

    def __str__(self) -> str:
        return self.message


class ConfigError(RunnerError):
    """Raised when configuration is missing or invalid."""


class AuthError(RunnerError):
    """Raised when binding to the directory fails."""


class DirectoryError(RunnerError):
    """Raised when a directory search or connection fails."""


class ResolutionError(RunnerError):
    """Raised when a host group cannot be expanded.

    Attributes:
        reason: Why resolution failed (e.g. NOT_FOUND)
        group: Name of the host group
    """

    NOT_FOUND = "not_found"

    def __init__(self, message: str, reason: str, group: str) -> None:
        super().__init__(message, reason=reason, group=group)
        self.reason = reason
        self.group = group

    @classmethod
    def not_found(cls, group: str) -> "ResolutionError":
        return cls(f"host group not found: {group}", cls.NOT_FOUND, group)


class DispatchError(RunnerError):
    """Raised when a task fails its preconditions, before any remote work."""


class ExecutionStep(str, Enum):
    """Steps of the per-host execution protocol, valued by their error tag."""

    STAGE = "mkdir"
    UPLOAD = "scp"
    MARK_EXECUTABLE = "chmod"
    RUN_UNDER_UNIT = "systemd-run"
    COLLECT_LOG = "journalctl"
    PLAYBOOK = "ansible-playbook"
    INTERNAL = "pipeline"


class ExecutionError(RunnerError):
    """A step of one host's pipeline failed.

    Attributes:
        step: Step that failed
        host: Host the step ran against
        timed_out: Whether the step hit its deadline
        returncode: Exit status of the failed command, if it exited
    """

    def __init__(
        self,
        step: ExecutionStep,
        host: str,
        cause: str,
        timed_out: bool = False,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            f"{step.value} failed: {cause}",
            step=step.value,
            host=host,
            timed_out=timed_out,
        )
        self.step = step
        self.host = host
        self.cause = cause
        self.timed_out = timed_out
        self.returncode = returncode
