"""Tests for the per-host script pipeline and the playbook runner."""

import logging
from pathlib import Path

import pytest

from fakes import FakeTransport
from ipa_runner.config import SSHConfig
from ipa_runner.exceptions import DispatchError, ExecutionStep
from ipa_runner.runners import PlaybookRunner, ScriptRunner, StagingPlan, render_inventory
from ipa_runner.types import PLAYBOOK_HOST_LABEL, Task, TaskType


def fixed_tags(*tags):
    it = iter(tags)
    return lambda: next(it)


@pytest.fixture
def ssh_config():
    return SSHConfig(user="admin", timeout=42)


class TestStagingPlan:
    """Tests for remote naming."""

    def test_names(self, ssh_config):
        """Test directory, file and unit share the run tag."""
        plan = StagingPlan.create(ssh_config, TaskType.PYTHON, "1a2b3c4d")

        assert plan.remote_dir == "/tmp/freeipa-runner-1a2b3c4d"
        assert plan.remote_file == "/tmp/freeipa-runner-1a2b3c4d/script.py"
        assert plan.unit == "freeipa-task-1a2b3c4d"

    def test_custom_tmp_and_prefix(self):
        """Test the parent directory and unit prefix are configurable."""
        config = SSHConfig(remote_tmp_dir="/var/tmp/", unit_prefix="ops")
        plan = StagingPlan.create(config, TaskType.BASH, "ff")

        assert plan.remote_file == "/var/tmp/freeipa-runner-ff/script.sh"
        assert plan.unit == "ops-ff"


class TestScriptRunner:
    """Tests for ScriptRunner."""

    @pytest.mark.asyncio
    async def test_pipeline_order(self, ssh_config, script_file):
        """Test the steps run in order and the transcript joins their output."""
        transport = FakeTransport()
        runner = ScriptRunner(ssh_config, transport, tag_factory=fixed_tags("cafe0001"))
        task = Task.create("bash", script_file, ["a.example.com"], timeout=42)

        result = await runner.run("a.example.com", task)

        assert result.success
        assert result.output == "script output\n---\njournal output"
        commands = [" ".join(argv) for argv, _ in transport.calls]
        assert len(commands) == 5
        assert "mkdir -p /tmp/freeipa-runner-cafe0001" in commands[0]
        assert commands[1].startswith("scp ")
        assert commands[1].endswith(f"{script_file} admin@a.example.com:/tmp/freeipa-runner-cafe0001/script.sh")
        assert "chmod +x /tmp/freeipa-runner-cafe0001/script.sh" in commands[2]
        assert (
            "sudo /usr/bin/systemd-run --collect --wait --unit freeipa-task-cafe0001 "
            "/bin/bash /tmp/freeipa-runner-cafe0001/script.sh"
        ) in commands[3]
        assert "sudo /usr/bin/journalctl -u freeipa-task-cafe0001 -n 500 --no-pager" in commands[4]

    @pytest.mark.asyncio
    async def test_every_step_gets_the_task_timeout(self, ssh_config, script_file):
        """Test each command receives its own full deadline."""
        transport = FakeTransport()
        task = Task.create("python", script_file, ["a"], timeout=42)

        await ScriptRunner(ssh_config, transport).run("a", task)

        assert [timeout for _, timeout in transport.calls] == [42] * 5

    @pytest.mark.asyncio
    async def test_python_interpreter(self, ssh_config, script_file):
        """Test python tasks run under python3 with a .py file."""
        transport = FakeTransport()
        task = Task.create("python", script_file, ["a"])

        await ScriptRunner(ssh_config, transport, tag_factory=fixed_tags("t")).run("a", task)

        assert transport.commands("systemd-run", "/usr/bin/python3 /tmp/freeipa-runner-t/script.py")

    @pytest.mark.asyncio
    async def test_stage_failure_stops_pipeline(self, ssh_config, script_file):
        """Test a failed mkdir prevents every later step."""
        transport = FakeTransport().on("mkdir", output="Permission denied\n", returncode=255)
        task = Task.create("bash", script_file, ["a"])

        result = await ScriptRunner(ssh_config, transport).run("a", task)

        assert not result.success
        assert result.error.step is ExecutionStep.STAGE
        assert str(result.error) == "mkdir failed: exit status 255"
        assert result.output == "Permission denied"
        assert len(transport.calls) == 1
        assert not transport.commands("scp")
        assert not transport.commands("chmod")
        assert not transport.commands("systemd-run")

    @pytest.mark.asyncio
    async def test_upload_failure(self, ssh_config, script_file):
        """Test a failed copy is tagged with scp."""
        transport = FakeTransport().on("scp ", returncode=1)
        task = Task.create("bash", script_file, ["a"])

        result = await ScriptRunner(ssh_config, transport).run("a", task)

        assert result.error.step is ExecutionStep.UPLOAD
        assert not transport.commands("chmod")

    @pytest.mark.asyncio
    async def test_run_timeout(self, ssh_config, script_file):
        """Test a timed-out unit run is flagged and skips log collection."""
        transport = FakeTransport().on(
            "systemd-run", returncode=None, timed_out=True, error="timed out after 42s",
        )
        task = Task.create("bash", script_file, ["a"], timeout=42)

        result = await ScriptRunner(ssh_config, transport).run("a", task)

        assert result.error.step is ExecutionStep.RUN_UNDER_UNIT
        assert result.error.timed_out
        assert str(result.error) == "systemd-run failed: timed out after 42s"
        assert not transport.commands("journalctl")

    @pytest.mark.asyncio
    async def test_script_failure_keeps_output(self, ssh_config, script_file):
        """Test a failing script's output stays in the transcript."""
        transport = FakeTransport().on("systemd-run", output="traceback here\n", returncode=1)
        task = Task.create("bash", script_file, ["a"])

        result = await ScriptRunner(ssh_config, transport).run("a", task)

        assert result.error.returncode == 1
        assert "traceback here" in result.output

    @pytest.mark.asyncio
    async def test_journal_failure_is_ignored(self, ssh_config, script_file, caplog):
        """Test log collection failure does not fail the host."""
        transport = FakeTransport().on("journalctl", output="no journal\n", returncode=1)
        task = Task.create("bash", script_file, ["a"])

        with caplog.at_level(logging.DEBUG, logger="ipa_runner.runners"):
            result = await ScriptRunner(ssh_config, transport).run("a", task)

        assert result.success
        assert result.output == "script output"
        assert "journalctl failed: exit status 1" in caplog.text

    @pytest.mark.asyncio
    async def test_fresh_tag_per_run(self, ssh_config, script_file):
        """Test repeated runs never reuse staging paths or unit names."""
        transport = FakeTransport()
        runner = ScriptRunner(ssh_config, transport)
        task = Task.create("bash", script_file, ["a"])

        for _ in range(3):
            await runner.run("a", task)

        dirs = {argv[-1] for argv in transport.commands("mkdir -p")}
        units = {argv[-1].split("--unit ")[1].split()[0] for argv in transport.commands("systemd-run")}
        assert len(dirs) == 3
        assert len(units) == 3

    @pytest.mark.asyncio
    async def test_without_sudo(self, script_file):
        """Test the unit runs without sudo when disabled."""
        transport = FakeTransport()
        task = Task.create("bash", script_file, ["a"])

        await ScriptRunner(SSHConfig(sudo=False), transport).run("a", task)

        assert not transport.commands("sudo")


class TestPlaybookRunner:
    """Tests for PlaybookRunner."""

    def test_render_inventory(self):
        """Test every host lands under one group."""
        assert render_inventory(["a", "b"], "targets") == "[targets]\na\nb\n"

    @pytest.mark.asyncio
    async def test_single_invocation(self, ssh_config, tmp_path):
        """Test one ansible-playbook call yields one labelled result."""
        playbook = tmp_path / "site.yml"
        playbook.write_text("- hosts: all\n")
        seen = {}

        class InventoryCapture(FakeTransport):
            async def run(self, argv, timeout):
                inventory = Path(argv[argv.index("-i") + 1])
                seen["path"] = inventory
                seen["text"] = inventory.read_text()
                return await super().run(argv, timeout)

        transport = InventoryCapture().on("ansible-playbook", output="PLAY RECAP\n")
        results = await PlaybookRunner(ssh_config, transport).run(playbook, ["a", "b"], timeout=99)

        assert len(results) == 1
        assert results[0].host == PLAYBOOK_HOST_LABEL
        assert results[0].success
        assert results[0].output == "PLAY RECAP"
        assert seen["text"] == "[targets]\na\nb\n"
        assert not seen["path"].exists()

        argv, timeout = transport.calls[0]
        assert timeout == 99
        assert argv[0] == "ansible-playbook"
        assert str(playbook) in argv
        assert argv[argv.index("-l") + 1] == "targets"
        assert "-b" in argv
        assert argv[argv.index("-u") + 1] == "admin"
        assert "--private-key" not in argv

    @pytest.mark.asyncio
    async def test_private_key(self, tmp_path):
        """Test key auth is passed through when Kerberos is off."""
        transport = FakeTransport()
        config = SSHConfig(use_kerberos=False, private_key_path="/k")

        await PlaybookRunner(config, transport).run(tmp_path / "p.yml", ["a"])

        argv, timeout = transport.calls[0]
        assert argv[argv.index("--private-key") + 1] == "/k"
        assert timeout == config.timeout

    @pytest.mark.asyncio
    async def test_failure(self, ssh_config, tmp_path):
        """Test a failed playbook run is tagged ansible-playbook."""
        transport = FakeTransport().on("ansible-playbook", output="fatal: [a]\n", returncode=2)

        results = await PlaybookRunner(ssh_config, transport).run(tmp_path / "p.yml", ["a"])

        assert results[0].error.step is ExecutionStep.PLAYBOOK
        assert str(results[0].error) == "ansible-playbook failed: exit status 2"
        assert "fatal" in results[0].output

    @pytest.mark.asyncio
    async def test_no_hosts(self, ssh_config, tmp_path):
        """Test an empty host list is rejected before running anything."""
        transport = FakeTransport()
        with pytest.raises(DispatchError, match="no hosts provided"):
            await PlaybookRunner(ssh_config, transport).run(tmp_path / "p.yml", [])
        assert transport.calls == []
