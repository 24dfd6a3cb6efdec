"""Remote transport: run one local command (ssh, scp, ansible-playbook).

Each call gets its own deadline. The transport never raises for a failed
or timed-out command; it reports the outcome in a CommandResult so the
caller decides which step failed.
"""

import asyncio
import logging
import os
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from .logging import TRACE

logger = logging.getLogger(__name__)

READ_CHUNK = 4096

# Seconds to wait for a killed process group to be reaped
KILL_GRACE = 5.0


@dataclass
class CommandResult:
    """Outcome of one command.

    Attributes:
        argv: Command that was run
        output: Combined stdout and stderr
        returncode: Exit status, or None if the command never finished
        timed_out: Whether the deadline expired
        error: Why the command could not run or finish, if it did not exit
    """

    argv: list[str]
    output: str = ""
    returncode: int | None = 0
    timed_out: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error is None

    def describe_failure(self) -> str:
        """Short reason for a failed command, used in step errors."""
        if self.timed_out:
            return self.error or "timed out"
        if self.error:
            return self.error
        return f"exit status {self.returncode}"


class Transport(ABC):
    """Runs commands on behalf of the runners."""

    @abstractmethod
    async def run(self, argv: Sequence[str], timeout: float) -> CommandResult:
        """Run ``argv`` and wait at most ``timeout`` seconds for it."""


class SubprocessTransport(Transport):
    """Runs commands as local child processes.

    Each child leads its own process group. On timeout the whole group is
    killed, so forked helpers (ssh multiplexers, ansible workers) cannot
    hold the step open, and whatever output arrived before the deadline is
    kept in the result.
    """

    def __init__(self, kill_grace: float = KILL_GRACE):
        self.kill_grace = kill_grace

    async def run(self, argv: Sequence[str], timeout: float) -> CommandResult:
        argv = list(argv)
        logger.log(TRACE, f"exec (timeout={timeout}s): {' '.join(argv)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Cannot start {argv[0]}: {e}")
            return CommandResult(argv, returncode=None, error=f"cannot start {argv[0]}: {e}")

        buffer = bytearray()

        async def collect() -> int:
            await _drain(proc.stdout, buffer)
            return await proc.wait()

        try:
            returncode = await asyncio.wait_for(collect(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.warning(f"Command timed out after {timeout}s: {argv[0]}")
            return CommandResult(
                argv,
                output=_decode(bytes(buffer)),
                returncode=None,
                timed_out=True,
                error=f"timed out after {timeout:g}s",
            )

        output = _decode(bytes(buffer))
        logger.log(TRACE, f"exit {returncode}: {argv[0]} ({len(output)} bytes)")
        return CommandResult(argv, output=output, returncode=returncode)

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        """Kill the process group of ``proc`` and reap the leader."""
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            # exited right at the deadline
            pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            logger.error(f"Process {proc.pid} did not exit after SIGKILL")


async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
    """Append everything read from ``stream`` to ``buffer`` until EOF."""
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            return
        buffer.extend(chunk)


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")
