"""Tests for ssh/scp command construction."""

from ipa_runner.config import SSHConfig
from ipa_runner.ssh import SSHCommandBuilder


def test_kerberos_defaults():
    """Test the default options: batch mode, strict keys, no identity file."""
    builder = SSHCommandBuilder(SSHConfig())
    argv = builder.ssh("a.example.com", "mkdir", "-p", "/tmp/x")

    assert argv[0] == "ssh"
    assert "BatchMode=yes" in argv
    assert "StrictHostKeyChecking=yes" in argv
    assert "UserKnownHostsFile=~/.ssh/known_hosts" in argv
    assert "-i" not in argv
    assert argv[-4:] == ["admin@a.example.com", "mkdir", "-p", "/tmp/x"]


def test_private_key_when_kerberos_off():
    """Test the identity file is passed only without Kerberos."""
    builder = SSHCommandBuilder(SSHConfig(use_kerberos=False, private_key_path="/home/op/.ssh/id_ed25519"))
    argv = builder.ssh("a.example.com", "true")

    i = argv.index("-i")
    assert argv[i + 1] == "/home/op/.ssh/id_ed25519"


def test_key_ignored_with_kerberos():
    """Test a configured key is not used while Kerberos is on."""
    builder = SSHCommandBuilder(SSHConfig(use_kerberos=True, private_key_path="/k"))
    assert "-i" not in builder.ssh("a", "true")


def test_relaxed_host_key_checking():
    """Test strict checking can be turned off."""
    builder = SSHCommandBuilder(SSHConfig(strict_host_key_checking=False, known_hosts_path=""))
    argv = builder.ssh("a", "true")

    assert "StrictHostKeyChecking=no" in argv
    assert not any(a.startswith("UserKnownHostsFile") for a in argv)


def test_scp_destination():
    """Test scp copies to user@host:path with the same options."""
    builder = SSHCommandBuilder(SSHConfig(user="deploy"))
    argv = builder.scp("/opt/patch.sh", "b.example.com", "/tmp/d/script.sh")

    assert argv[0] == "scp"
    assert "BatchMode=yes" in argv
    assert argv[-2:] == ["/opt/patch.sh", "deploy@b.example.com:/tmp/d/script.sh"]


def test_privileged_with_sudo():
    """Test privileged lines are quoted and prefixed with sudo."""
    builder = SSHCommandBuilder(SSHConfig(sudo=True))
    assert builder.privileged("/usr/bin/journalctl", "-u", "unit name") == "sudo /usr/bin/journalctl -u 'unit name'"


def test_privileged_without_sudo():
    """Test sudo can be turned off."""
    builder = SSHCommandBuilder(SSHConfig(sudo=False))
    assert builder.privileged("/usr/bin/systemd-run", "--wait") == "/usr/bin/systemd-run --wait"
