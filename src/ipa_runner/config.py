"""Configuration for ipa-runner.

Settings come from environment variables, optionally loaded from a
``.env`` file. Every field declares its variable name and default in its
metadata, which drives both parsing and sample-file generation.

The configuration object is built once at startup and passed explicitly
to the resolver, the dispatcher and the runners.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

from dotenv import dotenv_values

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = Path(".env")

TRUE_VALUES = ("1", "true", "yes", "on")


def env_field(env: str, default: Any = None, required: bool = False) -> Any:
    """Declare a config field bound to an environment variable."""
    return field(default=default, metadata={"env": env, "required": required})


@dataclass
class LDAPConfig:
    """Directory connection and layout settings.

    Attributes:
        address: LDAP URL of the directory server (ldaps://...)
        domain_sld: Second-level domain component (``example`` in example.com)
        domain_tld: Top-level domain component (``com`` in example.com)
        accounts_cn: Container holding all account subtrees
        users_cn: Container for users
        groups_cn: Container for user groups
        hosts_cn: Container for hosts
        host_groups_cn: Container for host groups
        services_cn: Container for service principals
        bind_username: Service account used for lookups
        bind_password: Password of the service account
        timeout: Connect and receive timeout in seconds
        host_group_depth: Levels of nested host groups to expand
    """

    address: str = env_field("LDAP_ADDRESS", "", required=True)
    domain_sld: str = env_field("LDAP_DOMAIN_SLD", "", required=True)
    domain_tld: str = env_field("LDAP_DOMAIN_TLD", "", required=True)
    accounts_cn: str = env_field("LDAP_ACCOUNTS_CN", "accounts")
    users_cn: str = env_field("LDAP_USERS_CN", "users")
    groups_cn: str = env_field("LDAP_GROUPS_CN", "groups")
    hosts_cn: str = env_field("LDAP_HOSTS_CN", "hosts")
    host_groups_cn: str = env_field("LDAP_HOST_GROUPS_CN", "hostgroups")
    services_cn: str = env_field("LDAP_SERVICES_CN", "services")
    bind_username: str = env_field("LDAP_BIND_USERNAME", "", required=True)
    bind_password: str = env_field("LDAP_BIND_PASSWORD", "", required=True)
    timeout: int = env_field("LDAP_TIMEOUT", 30)
    host_group_depth: int = env_field("LDAP_HOST_GROUP_DEPTH", 1)


@dataclass
class SSHConfig:
    """Remote execution settings.

    Attributes:
        user: Remote account used for ssh/scp
        use_kerberos: Rely on ambient ssh config (GSSAPI) instead of a key
        private_key_path: Private key passed with -i when Kerberos is off
        known_hosts_path: Known hosts file used for host-key checking
        strict_host_key_checking: Refuse unknown or changed host keys
        concurrency: Number of hosts processed at once
        sudo: Run the systemd unit through sudo
        timeout: Deadline in seconds for each remote command
        unit_prefix: Prefix of transient systemd unit names
        remote_tmp_dir: Parent directory for remote staging directories
        journal_lines: Number of unit log lines collected after a run
    """

    user: str = env_field("SSH_USER", "admin")
    use_kerberos: bool = env_field("SSH_USE_KERBEROS", True)
    private_key_path: str = env_field("SSH_KEY_PATH", "")
    known_hosts_path: str = env_field("SSH_KNOWN_HOSTS", "~/.ssh/known_hosts")
    strict_host_key_checking: bool = env_field("SSH_STRICT_HOST_KEY_CHECKING", True)
    concurrency: int = env_field("SSH_CONCURRENCY", 10)
    sudo: bool = env_field("SSH_SUDO", True)
    timeout: int = env_field("SSH_TIMEOUT", 900)
    unit_prefix: str = env_field("SSH_SYSTEMD_UNIT_PREFIX", "freeipa-task")
    remote_tmp_dir: str = env_field("SSH_REMOTE_TMP_DIR", "/tmp")
    journal_lines: int = env_field("SSH_JOURNAL_LINES", 500)

    @property
    def effective_concurrency(self) -> int:
        """Worker count, never below one."""
        return max(1, self.concurrency)


@dataclass
class RunnerConfig:
    """Top-level configuration handed to every component.

    Example:
        >>> config = RunnerConfig.from_env({
        ...     "LDAP_ADDRESS": "ldaps://ipa.example.com",
        ...     "LDAP_DOMAIN_SLD": "example",
        ...     "LDAP_DOMAIN_TLD": "com",
        ...     "LDAP_BIND_USERNAME": "runner",
        ...     "LDAP_BIND_PASSWORD": "secret",
        ... })
        >>> config.ssh.concurrency
        10
    """

    ldap: LDAPConfig = field(default_factory=LDAPConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    jobs_file: str = env_field("RUNNER_JOBS_FILE", "~/.ipa-runner/jobs.json")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RunnerConfig":
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigError: If required variables are missing or values are malformed
        """
        environ = os.environ if environ is None else environ
        missing: list[str] = []

        ldap = LDAPConfig(**_load_section(LDAPConfig, environ, missing))
        ssh = SSHConfig(**_load_section(SSHConfig, environ, missing))
        top = _load_section(cls, environ, missing)

        if missing:
            raise ConfigError(
                f"missing required settings: {', '.join(missing)}",
                missing=missing,
            )
        return cls(ldap=ldap, ssh=ssh, **top)

    @property
    def jobs_path(self) -> Path:
        """Location of the scheduled-job store."""
        return Path(self.jobs_file).expanduser()


def _load_section(
    section: type,
    environ: Mapping[str, str],
    missing: list[str],
) -> dict[str, Any]:
    """Read every env-bound field of a config dataclass."""
    values: dict[str, Any] = {}
    for f in fields(section):
        if "env" not in f.metadata:
            continue
        key = f.metadata["env"]
        raw = environ.get(key)
        if raw is None or raw == "":
            if f.metadata.get("required"):
                missing.append(key)
            continue
        values[f.name] = _convert(key, raw, f.default)
    return values


def _convert(key: str, raw: str, default: Any) -> Any:
    """Convert a raw string to the type of the field default."""
    if isinstance(default, bool):
        return raw.strip().lower() in TRUE_VALUES
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"invalid integer for {key}: {raw!r}", key=key) from None
    return raw


def _iter_env_fields(section: type):
    for f in fields(section):
        if f.name == "ldap":
            yield from _iter_env_fields(LDAPConfig)
        elif f.name == "ssh":
            yield from _iter_env_fields(SSHConfig)
        elif "env" in f.metadata:
            yield f


def sample_env() -> str:
    """Render a sample env file listing every setting with its default.

    Required settings are left empty.
    """
    lines = []
    for f in _iter_env_fields(RunnerConfig):
        default = f.default
        if isinstance(default, bool):
            value = "true" if default else "false"
        else:
            value = str(default)
        lines.append(f"{f.metadata['env']}={value}")
    return "\n".join(lines) + "\n"


def generate_sample_env(path: str | Path) -> Path:
    """Write a sample env file to ``path``.

    Raises:
        ConfigError: If the file cannot be written
    """
    path = Path(path)
    try:
        path.write_text(sample_env())
    except OSError as e:
        raise ConfigError(f"failed to write sample env file: {e}", path=str(path)) from e
    logger.info(f"Sample env file written to {path}")
    return path


def load_env_file(path: str | Path) -> dict[str, str]:
    """Read key/value pairs from an env file without touching os.environ."""
    values = dotenv_values(path)
    return {k: v for k, v in values.items() if v is not None}


def init_env(
    path: str | Path = DEFAULT_ENV_FILE,
    environ: Mapping[str, str] | None = None,
) -> RunnerConfig:
    """Load configuration from an env file, creating a sample if absent.

    Variables already set in the process environment take precedence over
    the file.

    Args:
        path: Env file to load
        environ: Process environment (defaults to os.environ)

    Raises:
        ConfigError: If the file was missing (a sample is written first)
            or the resulting configuration is incomplete
    """
    path = Path(path)
    if not path.exists():
        generate_sample_env(path)
        raise ConfigError(
            f"no env file found, created a sample at {path}; "
            "fill in the required values and try again",
            path=str(path),
        )

    merged = dict(load_env_file(path))
    merged.update(os.environ if environ is None else environ)
    logger.debug(f"Loaded configuration from {path}")
    return RunnerConfig.from_env(merged)


def jobs_store_path(
    path: str | Path = DEFAULT_ENV_FILE,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """Location of the job store, from the env file and the process environment.

    Only ``RUNNER_JOBS_FILE`` is read, so job commands work before the
    directory settings are filled in. A missing env file is not an error.
    """
    path = Path(path)
    merged = load_env_file(path) if path.exists() else {}
    merged.update(os.environ if environ is None else environ)
    return RunnerConfig(**_load_section(RunnerConfig, merged, [])).jobs_path
