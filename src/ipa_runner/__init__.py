"""ipa-runner - run scripts and playbooks across FreeIPA host groups.

Hosts are selected by FreeIPA host-group membership or explicit hostname,
each script runs inside a transient systemd unit on the target, and the
output is collected back into one result per host.

Quick Start:
    from ipa_runner import RunnerConfig, Task, TaskExecutor

    config = RunnerConfig.from_env()
    task = Task.create("bash", "/opt/scripts/patch.sh", ["a.example.com"])
    results = asyncio.run(TaskExecutor(config).run(task))
"""

__version__ = "0.1.0"

from ipa_runner.config import RunnerConfig
from ipa_runner.executor import TaskDispatcher, TaskExecutor
from ipa_runner.types import ExecutionResult, Task, TaskType

__all__ = [
    "__version__",
    "RunnerConfig",
    "Task",
    "TaskType",
    "ExecutionResult",
    "TaskDispatcher",
    "TaskExecutor",
]
