"""Type definitions for ipa-runner.

This module defines the data types passed between the resolver, the
dispatcher and the runners: the task descriptor, the task type table and
the per-host execution result.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import DispatchError

if TYPE_CHECKING:
    from .exceptions import ExecutionError

# Host label used for the single result of a playbook run
PLAYBOOK_HOST_LABEL = "(ansible)"

# Separator placed between step outputs in a host transcript
TRANSCRIPT_SEPARATOR = "\n---\n"


class TaskType(str, Enum):
    """Kind of task file being run.

    Script types carry the interpreter used on the remote host and the
    extension the staged file gets.
    """

    BASH = "bash"
    PYTHON = "python"
    ANSIBLE = "ansible"

    @classmethod
    def parse(cls, text: str) -> "TaskType":
        """Parse a task type name, case-insensitively.

        Raises:
            DispatchError: If the name is not a known task type
        """
        try:
            return cls(text.strip().lower())
        except ValueError:
            raise DispatchError(
                f"unknown task type {text!r} (use bash|python|ansible)",
                task_type=text,
            ) from None

    @property
    def is_script(self) -> bool:
        """Whether this task runs through the per-host execution protocol."""
        return self is not TaskType.ANSIBLE

    @property
    def interpreter(self) -> str:
        """Interpreter used to run the staged script on the remote host."""
        return _SCRIPT_TYPES[self][0]

    @property
    def extension(self) -> str:
        """Extension of the staged script on the remote host."""
        return _SCRIPT_TYPES[self][1]


_SCRIPT_TYPES: dict[TaskType, tuple[str, str]] = {
    TaskType.BASH: ("/bin/bash", "sh"),
    TaskType.PYTHON: ("/usr/bin/python3", "py"),
}


def unique_hosts(*host_lists: list[str]) -> list[str]:
    """Merge host lists, dropping duplicates and keeping first-seen order."""
    seen: dict[str, None] = {}
    for hosts in host_lists:
        for host in hosts:
            host = host.strip()
            if host:
                seen.setdefault(host, None)
    return list(seen)


@dataclass(frozen=True)
class Task:
    """A task ready to be dispatched.

    Attributes:
        task_type: Kind of task (bash, python, ansible)
        file: Local path of the script or playbook
        hosts: Target hosts, duplicate-free and in first-seen order
        concurrency: Maximum number of hosts worked on at once
        timeout: Deadline in seconds for each remote command

    Example:
        >>> task = Task.create("bash", "/opt/patch.sh", ["a.example.com", "a.example.com"])
        >>> task.hosts
        ('a.example.com',)
    """

    task_type: TaskType
    file: Path
    hosts: tuple[str, ...] = ()
    concurrency: int = 10
    timeout: float = 900

    @classmethod
    def create(
        cls,
        task_type: "TaskType | str",
        file: "str | Path",
        hosts: list[str],
        concurrency: int = 10,
        timeout: float = 900,
    ) -> "Task":
        """Build a task, normalising the type, path and host list."""
        if not isinstance(task_type, TaskType):
            task_type = TaskType.parse(task_type)
        return cls(
            task_type=task_type,
            file=Path(file),
            hosts=tuple(unique_hosts(list(hosts))),
            concurrency=max(1, concurrency),
            timeout=timeout,
        )


@dataclass
class ExecutionResult:
    """Outcome of running a task on one host.

    Attributes:
        host: Host the task ran on, or PLAYBOOK_HOST_LABEL for playbooks
        output: Combined transcript of the steps that ran
        error: Step-tagged error if the pipeline failed

    Example:
        >>> result = ExecutionResult(host="a.example.com", output="ok")
        >>> result.success
        True
    """

    host: str
    output: str = ""
    error: "ExecutionError | None" = None
    duration: float = field(default=0.0, compare=False)

    @property
    def success(self) -> bool:
        """Check if the task succeeded on this host."""
        return self.error is None

    @property
    def error_message(self) -> str | None:
        """Error rendered as text, or None on success."""
        return str(self.error) if self.error is not None else None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "host": self.host,
            "success": self.success,
            "output": self.output,
            "duration": round(self.duration, 3),
        }
        if self.error is not None:
            data["error"] = str(self.error)
            data["step"] = self.error.step.value
            data["timed_out"] = self.error.timed_out
        return data
