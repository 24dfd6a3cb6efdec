"""Runners that carry a task to its targets.

ScriptRunner executes bash and python tasks on one host at a time through
a fixed sequence of remote steps:

    STAGE            mkdir -p <tmp>/freeipa-runner-<tag>
    UPLOAD           scp <file> <tmp>/freeipa-runner-<tag>/script.<ext>
    MARK_EXECUTABLE  chmod +x <staged file>
    RUN_UNDER_UNIT   [sudo] systemd-run --collect --wait --unit <prefix>-<tag> <interpreter> <staged file>
    COLLECT_LOG      [sudo] journalctl -u <prefix>-<tag> -n <lines> --no-pager

Each step must succeed before the next one starts and each gets a fresh
deadline of ``task.timeout`` seconds. The first failing step ends the
pipeline for that host; log collection is best effort and never fails it.

PlaybookRunner hands ansible tasks to ``ansible-playbook`` in one call.
"""

import secrets
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from .config import SSHConfig
from .exceptions import DispatchError, ExecutionError, ExecutionStep
from .logging import get_logger
from .ssh import SSHCommandBuilder
from .transport import CommandResult, Transport
from .types import PLAYBOOK_HOST_LABEL, TRANSCRIPT_SEPARATOR, ExecutionResult, Task, TaskType

logger = get_logger(__name__)

SYSTEMD_RUN = "/usr/bin/systemd-run"
JOURNALCTL = "/usr/bin/journalctl"
STAGING_DIR_PREFIX = "freeipa-runner"
STAGED_FILE_STEM = "script"


def new_tag() -> str:
    """Random suffix shared by a run's staging directory and unit name."""
    return secrets.token_hex(4)


@dataclass(frozen=True)
class StagingPlan:
    """Remote names used by one run of a task on one host.

    Attributes:
        tag: Random suffix for this run
        remote_dir: Staging directory on the host
        remote_file: Staged script path
        unit: Transient systemd unit name
    """

    tag: str
    remote_dir: str
    remote_file: str
    unit: str

    @classmethod
    def create(cls, config: SSHConfig, task_type: TaskType, tag: str) -> "StagingPlan":
        remote_dir = f"{config.remote_tmp_dir.rstrip('/')}/{STAGING_DIR_PREFIX}-{tag}"
        return cls(
            tag=tag,
            remote_dir=remote_dir,
            remote_file=f"{remote_dir}/{STAGED_FILE_STEM}.{task_type.extension}",
            unit=f"{config.unit_prefix}-{tag}",
        )


@dataclass
class Transcript:
    """Ordered outputs of the steps that ran on a host."""

    sections: list[str] = field(default_factory=list)

    def add(self, output: str) -> None:
        if output.strip():
            self.sections.append(output.strip())

    def render(self) -> str:
        return TRANSCRIPT_SEPARATOR.join(self.sections)


class ScriptRunner:
    """Runs a script task on a single host.

    Example:
        >>> runner = ScriptRunner(config.ssh, SubprocessTransport())
        >>> result = await runner.run("a.example.com", task)
        >>> result.success
        True
    """

    def __init__(
        self,
        config: SSHConfig,
        transport: Transport,
        tag_factory=new_tag,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Remote execution settings
            transport: Runs the ssh/scp commands
            tag_factory: Produces the random suffix for each run
        """
        self.config = config
        self.transport = transport
        self.commands = SSHCommandBuilder(config)
        self._tag_factory = tag_factory

    def plan(self, task: Task) -> StagingPlan:
        return StagingPlan.create(self.config, task.task_type, self._tag_factory())

    def pipeline(self, host: str, task: Task, plan: StagingPlan) -> list[tuple[ExecutionStep, list[str]]]:
        """Commands of the gated steps, in order."""
        ssh = self.commands.ssh
        run_line = self.commands.privileged(
            SYSTEMD_RUN, "--collect", "--wait", "--unit", plan.unit,
            task.task_type.interpreter, plan.remote_file,
        )
        return [
            (ExecutionStep.STAGE, ssh(host, "mkdir", "-p", plan.remote_dir)),
            (ExecutionStep.UPLOAD, self.commands.scp(str(task.file), host, plan.remote_file)),
            (ExecutionStep.MARK_EXECUTABLE, ssh(host, "chmod", "+x", plan.remote_file)),
            (ExecutionStep.RUN_UNDER_UNIT, ssh(host, run_line)),
        ]

    def journal_command(self, host: str, plan: StagingPlan) -> list[str]:
        return self.commands.ssh(host, self.commands.privileged(
            JOURNALCTL, "-u", plan.unit, "-n", str(self.config.journal_lines), "--no-pager",
        ))

    async def run(self, host: str, task: Task) -> ExecutionResult:
        """Run ``task`` on ``host``; failures are returned, never raised."""
        plan = self.plan(task)
        log = logger.bind(host=host, unit=plan.unit)
        transcript = Transcript()
        started = time.perf_counter()

        for step, argv in self.pipeline(host, task, plan):
            log.debug(f"Step {step.name}")
            result = await self.transport.run(argv, task.timeout)
            transcript.add(result.output)
            if not result.ok:
                error = _step_error(step, host, result)
                log.warning(f"Pipeline aborted: {error}")
                return ExecutionResult(
                    host=host,
                    output=transcript.render(),
                    error=error,
                    duration=time.perf_counter() - started,
                )

        journal = await self.transport.run(self.journal_command(host, plan), task.timeout)
        if journal.ok:
            transcript.add(journal.output)
        else:
            log.debug(f"Unit log not collected, ignoring: {_step_error(ExecutionStep.COLLECT_LOG, host, journal)}")

        log.info("Script completed")
        return ExecutionResult(
            host=host,
            output=transcript.render(),
            duration=time.perf_counter() - started,
        )


def _step_error(step: ExecutionStep, host: str, result: CommandResult) -> ExecutionError:
    return ExecutionError(
        step,
        host,
        result.describe_failure(),
        timed_out=result.timed_out,
        returncode=result.returncode,
    )


def render_inventory(hosts: list[str], group: str) -> str:
    """INI inventory with every host in one group."""
    return f"[{group}]\n" + "\n".join(hosts) + "\n"


class PlaybookRunner:
    """Runs an ansible task with a single ``ansible-playbook`` invocation.

    The playbook sees every host under one inventory group. Per-host
    outcomes stay inside ansible's own report; the run yields exactly one
    result labelled PLAYBOOK_HOST_LABEL.
    """

    def __init__(
        self,
        config: SSHConfig,
        transport: Transport,
        binary: str = "ansible-playbook",
        group: str = "targets",
    ) -> None:
        self.config = config
        self.transport = transport
        self.binary = binary
        self.group = group

    def command(self, playbook: Path, inventory: Path) -> list[str]:
        argv = [self.binary, "-i", str(inventory), str(playbook), "-l", self.group, "-b"]
        argv += ["-u", self.config.user]
        key_path = self.config.private_key_path.strip()
        if not self.config.use_kerberos and key_path:
            argv += ["--private-key", key_path]
        return argv

    async def run(
        self,
        playbook: Path,
        hosts: list[str],
        timeout: float | None = None,
    ) -> list[ExecutionResult]:
        """Run ``playbook`` against ``hosts``, bounded by ``timeout`` seconds.

        Raises:
            DispatchError: If no hosts are given
        """
        if not hosts:
            raise DispatchError("no hosts provided")

        started = time.perf_counter()
        with tempfile.TemporaryDirectory(prefix="ipa-runner-ansible-") as tmp_dir:
            inventory = Path(tmp_dir) / "inventory.ini"
            inventory.write_text(render_inventory(hosts, self.group))
            logger.info(f"Running playbook against {len(hosts)} host(s)", playbook=playbook)
            result = await self.transport.run(
                self.command(playbook, inventory),
                timeout if timeout is not None else self.config.timeout,
            )

        error = None
        if not result.ok:
            error = _step_error(ExecutionStep.PLAYBOOK, PLAYBOOK_HOST_LABEL, result)
            logger.warning(f"Playbook run failed: {error}", playbook=playbook)

        return [ExecutionResult(
            host=PLAYBOOK_HOST_LABEL,
            output=result.output.strip(),
            error=error,
            duration=time.perf_counter() - started,
        )]
