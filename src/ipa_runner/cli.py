"""Command-line interface for ipa-runner."""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import click

from ipa_runner import __version__
from ipa_runner.config import (
    DEFAULT_ENV_FILE,
    RunnerConfig,
    generate_sample_env,
    init_env,
    jobs_store_path,
)
from ipa_runner.exceptions import RunnerError
from ipa_runner.executor import ExecutionResults, TaskExecutor
from ipa_runner.jobs import JobStore
from ipa_runner.logging import (
    configure_logging,
    get_level_from_name,
    get_level_from_verbosity,
    get_logger,
    log_scope,
)
from ipa_runner.progress import create_progress_reporter
from ipa_runner.resolver import GroupResolver, resolve_targets
from ipa_runner.transport import SubprocessTransport
from ipa_runner.types import Task, TaskType

logger = get_logger(__name__)


class CommandError(click.ClickException):
    """A RunnerError reported to the user, in red."""

    def show(self, file: Any = None) -> None:
        click.secho(f"Error: {self.format_message()}", fg="red", err=True)


def _fail(error: RunnerError) -> CommandError:
    logger.logger.debug("Command failed", exc_info=True)
    return CommandError(str(error))


def _setup_logging(verbose: int, log_level: Optional[str], log_file: Optional[str], quiet: bool) -> None:
    if log_level:
        level = get_level_from_name(log_level)
    else:
        level = get_level_from_verbosity(verbose)

    # JSON output keeps the console free of log lines
    console_level = logging.CRITICAL if quiet else level
    configure_logging(
        level=console_level,
        log_file=log_file,
        file_level=level if log_file else None,
        debug=(level <= logging.DEBUG),
    )
    logger.info(f"Starting ipa-runner {__version__}")


def _load_config(env_file: str) -> RunnerConfig:
    try:
        return init_env(env_file)
    except RunnerError as e:
        raise _fail(e)


def format_results_json(
    results: ExecutionResults,
    task: Task,
    duration: float,
) -> str:
    """Format execution results as JSON.

    Args:
        results: Results of the run
        task: Task that was run
        duration: Run duration in seconds

    Returns:
        JSON string with structured results
    """
    output: dict[str, Any] = {
        "task_type": task.task_type.value,
        "file": str(task.file),
        "targets": list(task.hosts),
        **results.to_dict(),
        "duration": round(duration, 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(output, indent=2)


def format_results_text(results: ExecutionResults) -> str:
    """Format execution results as human-readable text.

    Each host gets a ``[host] OK`` or ``[host] ERR: <error>`` line followed
    by its transcript, then a summary.
    """
    lines: list[str] = []
    for result in results.results:
        status = "OK" if result.success else f"ERR: {result.error_message}"
        lines.append("")
        lines.append(f"[{result.host}] {status}")
        if result.output:
            lines.append(result.output)

    lines += [
        "",
        "Execution Results:",
        f"Total hosts: {results.total_hosts}",
        f"Successful: {results.successful}",
        f"Failed: {results.failed}",
        "",
    ]
    return "\n".join(lines)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """ipa-runner - run scripts and playbooks on FreeIPA host groups."""
    if version:
        click.echo(f"ipa-runner {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("run-now")
@click.option("--group", "-g", "groups", multiple=True, help="Target host group (repeatable)")
@click.option("--hostname", "-H", "hostnames", multiple=True, help="Target hostname (repeatable)")
@click.option("--type", "-t", "task_type", required=True, help="Task type: bash, python or ansible")
@click.option("--file", "-f", "file", required=True, type=click.Path(), help="Script or playbook to run")
@click.option("--env-file", default=str(DEFAULT_ENV_FILE), show_default=True, help="Env file with settings")
@click.option("--parallel", "-p", type=int, default=None,
              help="Hosts worked on at once (default: SSH_CONCURRENCY)")
@click.option("--timeout", type=int, default=None,
              help="Deadline in seconds for each remote command (default: SSH_TIMEOUT)")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format (default: text)")
@click.option("--progress", is_flag=True, help="Show progress as hosts complete")
@click.option("--log-file", type=click.Path(), default=None,
              help="Write logs to file (in addition to console)")
@click.option("--log-level", type=click.Choice(["trace", "debug", "info", "warning", "error"]),
              default=None, help="Set log level explicitly (overrides -v)")
@click.option("-v", "--verbose", count=True,
              help="Increase verbosity: -v=info, -vv=debug, -vvv=trace")
def run_now(
    groups: tuple[str, ...],
    hostnames: tuple[str, ...],
    task_type: str,
    file: str,
    env_file: str,
    parallel: Optional[int],
    timeout: Optional[int],
    output_format: str,
    progress: bool,
    log_file: Optional[str],
    log_level: Optional[str],
    verbose: int,
) -> None:
    """Run a script or playbook on hosts and host groups immediately.

    Targets are the members of every --group followed by every --hostname,
    without duplicates. Exits 1 if any host fails.

    Examples:
        ipa-runner run-now -g desktops -t bash -f /opt/patch.sh

        ipa-runner run-now -g desktops -g infra -H silver -t ansible -f site.yml

        ipa-runner run-now -H a.example.com -t python -f check.py --format json
    """
    _setup_logging(verbose, log_level, log_file, quiet=(output_format == "json"))

    if parallel is not None and parallel < 1:
        raise click.ClickException("--parallel must be at least 1")
    if timeout is not None and timeout < 1:
        raise click.ClickException("--timeout must be at least 1 second")

    config = _load_config(env_file)
    reporter = create_progress_reporter(progress, json_format=(output_format == "json"))
    executor = TaskExecutor(config, SubprocessTransport(), reporter=reporter)

    try:
        kind = TaskType.parse(task_type)
        with log_scope(logger.logger, "Resolving targets", level=logging.DEBUG,
                       groups=len(groups), hostnames=len(hostnames)):
            resolver = GroupResolver(config.ldap) if groups else None
            hosts = resolve_targets(resolver, groups, hostnames)
        task = executor.build_task(kind, file, hosts, concurrency=parallel, timeout=timeout)

        if output_format == "text":
            click.echo(f"Target hosts: ({len(task.hosts)}) {', '.join(task.hosts)}")

        start_time = time.perf_counter()
        results = asyncio.run(executor.run(task))
        duration = time.perf_counter() - start_time
    except RunnerError as e:
        raise _fail(e)

    if output_format == "json":
        click.echo(format_results_json(results, task, duration))
    else:
        click.echo(format_results_text(results))

    if not results.is_success():
        raise SystemExit(1)


@cli.command("resolve")
@click.argument("group")
@click.option("--env-file", default=str(DEFAULT_ENV_FILE), show_default=True, help="Env file with settings")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
def resolve(group: str, env_file: str, verbose: int) -> None:
    """Print the hosts of a host group, one per line."""
    _setup_logging(verbose, None, None, quiet=False)
    config = _load_config(env_file)
    try:
        hosts = GroupResolver(config.ldap).resolve_group_hosts(group)
    except RunnerError as e:
        raise _fail(e)
    for host in hosts:
        click.echo(host)


@cli.group()
def env() -> None:
    """Manage the settings file."""
    pass


@env.command("init")
@click.argument("path", default=str(DEFAULT_ENV_FILE), type=click.Path())
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def env_init(path: str, force: bool) -> None:
    """Write a sample env file listing every setting."""
    if Path(path).exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    try:
        written = generate_sample_env(path)
    except RunnerError as e:
        raise _fail(e)
    click.echo(f"Sample settings written to {written}")


# Jobs subcommand group
@cli.group()
@click.option("--jobs-file", type=click.Path(), default=None,
              help="Job store location (default: RUNNER_JOBS_FILE)")
@click.option("--env-file", default=str(DEFAULT_ENV_FILE), show_default=True, help="Env file with settings")
@click.pass_context
def jobs(ctx: click.Context, jobs_file: Optional[str], env_file: str) -> None:
    """Manage scheduled-job records."""
    if jobs_file:
        path = Path(jobs_file).expanduser()
    else:
        path = jobs_store_path(env_file)
    logger.debug(f"Using job store {path}")
    ctx.obj = JobStore(path)


@jobs.command("add")
@click.argument("name")
@click.option("--type", "-t", "task_type", required=True, help="Task type: bash, python or ansible")
@click.option("--file", "-f", "file", required=True, help="Script or playbook to run")
@click.option("--cron", "-c", "cron_expr", required=True, help="Five-field cron expression")
@click.option("--disabled", is_flag=True, help="Store the job disabled")
@click.pass_obj
def jobs_add(store: JobStore, name: str, task_type: str, file: str, cron_expr: str, disabled: bool) -> None:
    """Add a scheduled job."""
    try:
        job = store.add(name, task_type, file, cron_expr, enabled=not disabled)
    except RunnerError as e:
        raise _fail(e)
    click.echo(f"Added job {job.id}: {job.name}")


@jobs.command("list")
@click.option("--format", "-f", "output_format", type=click.Choice(["text", "json"]),
              default="text", help="Output format (default: text)")
@click.pass_obj
def jobs_list(store: JobStore, output_format: str) -> None:
    """List scheduled jobs."""
    try:
        all_jobs = store.list()
    except RunnerError as e:
        raise _fail(e)

    if output_format == "json":
        click.echo(json.dumps([job.to_dict() for job in all_jobs], indent=2))
        return
    if not all_jobs:
        click.echo("No jobs found.")
        return
    for job in all_jobs:
        click.echo(job.format_text())


@jobs.command("remove")
@click.argument("job_id", type=int)
@click.pass_obj
def jobs_remove(store: JobStore, job_id: int) -> None:
    """Remove a scheduled job."""
    try:
        removed = store.remove(job_id)
    except RunnerError as e:
        raise _fail(e)
    if not removed:
        raise click.ClickException(f"Job not found: {job_id}")
    click.echo(f"Removed job {job_id}")


def _set_enabled(store: JobStore, job_id: int, enabled: bool) -> None:
    try:
        job = store.set_enabled(job_id, enabled)
    except RunnerError as e:
        raise _fail(e)
    if job is None:
        raise click.ClickException(f"Job not found: {job_id}")
    click.echo(f"Job {job_id} {'enabled' if enabled else 'disabled'}")


@jobs.command("enable")
@click.argument("job_id", type=int)
@click.pass_obj
def jobs_enable(store: JobStore, job_id: int) -> None:
    """Enable a scheduled job."""
    _set_enabled(store, job_id, True)


@jobs.command("disable")
@click.argument("job_id", type=int)
@click.pass_obj
def jobs_disable(store: JobStore, job_id: int) -> None:
    """Disable a scheduled job."""
    _set_enabled(store, job_id, False)


def main() -> None:
    """Package entry point for the ipa-runner command-line interface."""
    cli()


if __name__ == "__main__":
    main()
