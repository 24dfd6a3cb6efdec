"""Test doubles for the remote transport."""

import asyncio
from typing import Sequence

from ipa_runner.transport import CommandResult, Transport


class FakeTransport(Transport):
    """Records every command and answers from scripted rules.

    A rule matches when every one of its fragments occurs in the
    space-joined argv. Unmatched commands succeed; systemd-run and
    journalctl calls get recognisable output.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[list[str], float]] = []
        self.rules: list[tuple[tuple[str, ...], dict]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def on(self, *fragments: str, **result: object) -> "FakeTransport":
        self.rules.append((fragments, result))
        return self

    def commands(self, *fragments: str) -> list[list[str]]:
        """Recorded argv lists containing every fragment."""
        return [argv for argv, _ in self.calls if all(f in " ".join(argv) for f in fragments)]

    async def run(self, argv: Sequence[str], timeout: float) -> CommandResult:
        argv = list(argv)
        self.calls.append((argv, timeout))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        line = " ".join(argv)
        for fragments, result in self.rules:
            if all(f in line for f in fragments):
                return CommandResult(argv, **result)
        if "systemd-run" in line:
            return CommandResult(argv, output="script output\n")
        if "journalctl" in line:
            return CommandResult(argv, output="journal output\n")
        return CommandResult(argv)


REQUIRED_ENV = {
    "LDAP_ADDRESS": "ldaps://ipa.example.com",
    "LDAP_DOMAIN_SLD": "example",
    "LDAP_DOMAIN_TLD": "com",
    "LDAP_BIND_USERNAME": "runner",
    "LDAP_BIND_PASSWORD": "secret",
}
