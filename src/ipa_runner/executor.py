"""Task dispatch across many hosts.

TaskDispatcher fans a script task out to its hosts with a fixed pool of
workers reading from one shared queue. Every host yields exactly one
ExecutionResult; a failure on one host never stops the others.

TaskExecutor is the entry point used by the CLI: it checks a task's
preconditions and routes script tasks to the dispatcher and ansible tasks
to the playbook runner.
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import RunnerConfig
from .exceptions import DispatchError, ExecutionError, ExecutionStep
from .logging import get_logger
from .progress import NullProgressReporter, ProgressReporter
from .runners import PlaybookRunner, ScriptRunner
from .transport import SubprocessTransport, Transport
from .types import ExecutionResult, Task, TaskType

logger = get_logger(__name__)


@dataclass
class ExecutionResults:
    """Results from running a task across multiple hosts.

    Attributes:
        results: Per-host results in completion order
        total_hosts: Number of results
        successful: Number of successful results
        failed: Number of failed results

    Example:
        >>> results = ExecutionResults([ExecutionResult("a"), ExecutionResult("b")])
        >>> results.successful
        2
    """

    results: list[ExecutionResult] = field(default_factory=list)
    total_hosts: int = 0
    successful: int = 0
    failed: int = 0

    def __post_init__(self) -> None:
        """Calculate statistics from results."""
        self.total_hosts = len(self.results)
        self.successful = sum(1 for r in self.results if r.success)
        self.failed = self.total_hosts - self.successful

    def is_success(self) -> bool:
        """Check if all hosts succeeded."""
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_hosts": self.total_hosts,
            "successful": self.successful,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


def validate_task(task: Task) -> None:
    """Check a task's preconditions before any remote work.

    Raises:
        DispatchError: If the task has no hosts or its file is not a
            readable regular file
    """
    if not task.hosts:
        raise DispatchError("no hosts provided")
    path = Path(task.file)
    if not path.is_file() or not os.access(path, os.R_OK):
        raise DispatchError(f"task file not found or not readable: {path}", file=str(path))


class TaskDispatcher:
    """Runs a script task on every host with bounded concurrency.

    Workers pull hosts from a shared queue until they receive a stop
    sentinel, so at most ``task.concurrency`` hosts are in flight at once.

    Example:
        >>> dispatcher = TaskDispatcher(config)
        >>> results = await dispatcher.dispatch(task)
        >>> len(results) == len(task.hosts)
        True
    """

    def __init__(
        self,
        config: RunnerConfig,
        transport: Transport | None = None,
        runner: ScriptRunner | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config: Runner configuration
            transport: Command transport (defaults to local subprocesses)
            runner: Per-host runner (defaults to a ScriptRunner on transport)
            reporter: Progress reporter (defaults to no output)
        """
        self.config = config
        self.transport = transport or SubprocessTransport()
        self.runner = runner or ScriptRunner(config.ssh, self.transport)
        self.reporter = reporter or NullProgressReporter()

    async def dispatch(self, task: Task) -> list[ExecutionResult]:
        """Run ``task`` on all of its hosts.

        Returns one result per host, in completion order.

        Raises:
            DispatchError: If the task fails its preconditions
        """
        validate_task(task)
        workers = max(1, task.concurrency)
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        results: list[ExecutionResult] = []
        lock = asyncio.Lock()

        for host in task.hosts:
            queue.put_nowait(host)
        for _ in range(workers):
            queue.put_nowait(None)

        logger.info(
            f"Dispatching {task.task_type.value} task to {len(task.hosts)} host(s)",
            file=task.file,
            workers=workers,
        )
        self.reporter.on_dispatch_start(len(task.hosts), task.task_type.value)
        started = time.perf_counter()

        async def worker() -> None:
            while True:
                host = await queue.get()
                if host is None:
                    return
                self.reporter.on_host_start(host)
                result = await self._run_host(host, task)
                async with lock:
                    results.append(result)
                self.reporter.on_host_complete(
                    host, result.success, result.duration, result.error_message,
                )

        await asyncio.gather(*(worker() for _ in range(workers)))

        successful = sum(1 for r in results if r.success)
        self.reporter.on_dispatch_complete(
            len(results), successful, len(results) - successful, time.perf_counter() - started,
        )
        logger.info(f"Dispatch finished: {successful}/{len(results)} succeeded")
        return results

    async def _run_host(self, host: str, task: Task) -> ExecutionResult:
        try:
            return await self.runner.run(host, task)
        except Exception as e:
            logger.exception(f"Unexpected failure on {host}")
            return ExecutionResult(host=host, error=ExecutionError(ExecutionStep.INTERNAL, host, str(e)))


class TaskExecutor:
    """Routes tasks to the right runner.

    Example:
        >>> executor = TaskExecutor(config)
        >>> task = executor.build_task("bash", "/opt/patch.sh", ["a.example.com"])
        >>> results = await executor.run(task)
    """

    def __init__(
        self,
        config: RunnerConfig,
        transport: Transport | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.config = config
        self.transport = transport or SubprocessTransport()
        self.dispatcher = TaskDispatcher(config, self.transport, reporter=reporter)
        self.playbooks = PlaybookRunner(config.ssh, self.transport)

    def build_task(
        self,
        task_type: TaskType | str,
        file: str | Path,
        hosts: list[str],
        concurrency: int | None = None,
        timeout: float | None = None,
    ) -> Task:
        """Build a task, taking unset limits from the configuration."""
        return Task.create(
            task_type,
            file,
            hosts,
            concurrency=concurrency if concurrency is not None else self.config.ssh.effective_concurrency,
            timeout=timeout if timeout is not None else self.config.ssh.timeout,
        )

    async def run(self, task: Task) -> ExecutionResults:
        """Run a task and collect its results.

        Raises:
            DispatchError: If the task fails its preconditions
        """
        validate_task(task)
        if task.task_type.is_script:
            results = await self.dispatcher.dispatch(task)
        else:
            results = await self.playbooks.run(task.file, list(task.hosts), task.timeout)
        return ExecutionResults(results)
