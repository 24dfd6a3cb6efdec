"""Progress reporting for task dispatch.

The dispatcher calls a ProgressReporter as hosts start and finish.
Reporters write to stderr so stdout stays clean for results:

- TextProgressReporter: one line per finished host
- JsonProgressReporter: NDJSON events for tooling
- RichProgressReporter: a live progress bar
- NullProgressReporter: discards everything
"""

import json
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)


@dataclass
class ProgressEvent:
    """A progress event during dispatch.

    Attributes:
        event_type: dispatch_start, host_start, host_complete or dispatch_complete
        host: Host name, or "*" for dispatch-wide events
        timestamp: When the event occurred
        details: Event-specific fields
    """

    event_type: str
    host: str
    timestamp: str
    details: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        result = {
            "event": self.event_type,
            "host": self.host,
            "timestamp": self.timestamp,
        }
        result.update(self.details)
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class ProgressReporter(ABC):
    """Base class for progress reporters."""

    @abstractmethod
    def on_dispatch_start(self, total_hosts: int, task_type: str) -> None:
        """Called once before any host starts."""

    @abstractmethod
    def on_host_start(self, host: str) -> None:
        """Called when a worker picks up a host."""

    @abstractmethod
    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        """Called when a host has produced its result."""

    @abstractmethod
    def on_dispatch_complete(
        self,
        total: int,
        successful: int,
        failed: int,
        duration: float,
    ) -> None:
        """Called once after every host has finished."""


class JsonProgressReporter(ProgressReporter):
    """Reports progress as NDJSON events."""

    def __init__(self, output: Any = None) -> None:
        self.output = output or sys.stderr

    def _emit(self, event_type: str, host: str, **details: Any) -> None:
        event = ProgressEvent(
            event_type=event_type,
            host=host,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details,
        )
        print(event.to_json(), file=self.output, flush=True)

    def on_dispatch_start(self, total_hosts: int, task_type: str) -> None:
        self._emit("dispatch_start", "*", total_hosts=total_hosts, task_type=task_type)

    def on_host_start(self, host: str) -> None:
        self._emit("host_start", host)

    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"success": success, "duration": round(duration, 3)}
        if error:
            details["error"] = error
        self._emit("host_complete", host, **details)

    def on_dispatch_complete(
        self,
        total: int,
        successful: int,
        failed: int,
        duration: float,
    ) -> None:
        self._emit(
            "dispatch_complete",
            "*",
            total=total,
            successful=successful,
            failed=failed,
            duration=round(duration, 3),
        )


class TextProgressReporter(ProgressReporter):
    """Reports progress as human-readable lines."""

    def __init__(self, output: Any = None) -> None:
        self.output = output or sys.stderr
        self.completed = 0
        self.total = 0

    def _emit(self, message: str) -> None:
        print(message, file=self.output, flush=True)

    def on_dispatch_start(self, total_hosts: int, task_type: str) -> None:
        self.total = total_hosts
        self.completed = 0
        self._emit(f"Running {task_type} task on {total_hosts} host(s)...")

    def on_host_start(self, host: str) -> None:
        pass

    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        self.completed += 1
        if success:
            self._emit(f"  [{self.completed}/{self.total}] ✓ {host} ({duration:.2f}s)")
        else:
            error_msg = f": {error}" if error else ""
            self._emit(f"  [{self.completed}/{self.total}] ✗ {host} FAILED{error_msg}")

    def on_dispatch_complete(
        self,
        total: int,
        successful: int,
        failed: int,
        duration: float,
    ) -> None:
        if failed == 0:
            self._emit(f"Completed: {successful}/{total} succeeded in {duration:.2f}s")
        else:
            self._emit(f"Completed: {successful}/{total} succeeded, {failed} failed in {duration:.2f}s")


class RichProgressReporter(ProgressReporter):
    """Live progress bar over the hosts of one dispatch."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        self._task_id: TaskID | None = None

    def on_dispatch_start(self, total_hosts: int, task_type: str) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(f"{task_type} task", total=total_hosts)

    def on_host_start(self, host: str) -> None:
        pass

    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        if not success:
            self.progress.console.print(f"[red]✗ {host}[/red] {error or ''}")
        if self._task_id is not None:
            self.progress.advance(self._task_id)

    def on_dispatch_complete(
        self,
        total: int,
        successful: int,
        failed: int,
        duration: float,
    ) -> None:
        self.progress.stop()
        color = "green" if failed == 0 else "red"
        self.console.print(
            f"[{color}]Completed: {successful}/{total} succeeded in {duration:.2f}s[/{color}]"
        )


class NullProgressReporter(ProgressReporter):
    """No-op progress reporter."""

    def on_dispatch_start(self, total_hosts: int, task_type: str) -> None:
        pass

    def on_host_start(self, host: str) -> None:
        pass

    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        pass

    def on_dispatch_complete(
        self,
        total: int,
        successful: int,
        failed: int,
        duration: float,
    ) -> None:
        pass


def create_progress_reporter(
    enabled: bool,
    json_format: bool = False,
    output: Any = None,
) -> ProgressReporter:
    """Pick a reporter for the given output mode.

    Text output gets the live bar when stderr is a terminal and plain
    lines otherwise.
    """
    if not enabled:
        return NullProgressReporter()
    if json_format:
        return JsonProgressReporter(output)
    if output is None and sys.stderr.isatty():
        return RichProgressReporter()
    return TextProgressReporter(output)
