"""ssh/scp command construction.

Builds argument vectors for the system ``ssh`` and ``scp`` binaries so
that authentication follows the user's ssh configuration: Kerberos/GSSAPI
when enabled there, or an explicit private key.

Every invocation runs in batch mode (never prompts) and, unless turned
off, with strict host-key checking.
"""

import shlex
from dataclasses import dataclass

from .config import SSHConfig


@dataclass
class SSHCommandBuilder:
    """Builds ssh/scp argv lists for one remote user.

    Example:
        >>> builder = SSHCommandBuilder(SSHConfig(user="admin", use_kerberos=True))
        >>> builder.ssh("a.example.com", "mkdir", "-p", "/tmp/x")[-4:]
        ['admin@a.example.com', 'mkdir', '-p', '/tmp/x']
    """

    config: SSHConfig

    def options(self) -> list[str]:
        """Common ``-o`` options shared by ssh and scp."""
        strict = "yes" if self.config.strict_host_key_checking else "no"
        opts = ["-o", "BatchMode=yes", "-o", f"StrictHostKeyChecking={strict}"]

        known_hosts = self.config.known_hosts_path.strip()
        if known_hosts:
            opts += ["-o", f"UserKnownHostsFile={known_hosts}"]

        # With Kerberos the ssh client config decides; otherwise pass the key
        key_path = self.config.private_key_path.strip()
        if not self.config.use_kerberos and key_path:
            opts += ["-i", key_path]
        return opts

    def destination(self, host: str) -> str:
        return f"{self.config.user}@{host}"

    def ssh(self, host: str, *command: str) -> list[str]:
        """argv running ``command`` on ``host``.

        The remote side receives the arguments joined by spaces, so callers
        pass either separate safe tokens or one pre-quoted command line.
        """
        return ["ssh", *self.options(), self.destination(host), *command]

    def scp(self, local_path: str, host: str, remote_path: str) -> list[str]:
        """argv copying a local file to ``host:remote_path``."""
        return ["scp", *self.options(), local_path, f"{self.destination(host)}:{remote_path}"]

    def privileged(self, *command: str) -> str:
        """Quote ``command`` as one remote command line, with sudo if enabled."""
        prefix = ["sudo"] if self.config.sudo else []
        return shlex.join([*prefix, *command])
