"""Tests for scheduled-job records."""

import pytest

from ipa_runner.exceptions import ConfigError, DispatchError
from ipa_runner.jobs import JobStore, ScheduledJob, validate_cron
from ipa_runner.types import TaskType


@pytest.fixture
def store(tmp_path):
    return JobStore(tmp_path / "state" / "jobs.json")


class TestValidateCron:
    """Tests for cron expression checks."""

    def test_five_fields(self):
        """Test whitespace is normalised on valid expressions."""
        assert validate_cron("0  2 * *   1") == "0 2 * * 1"

    @pytest.mark.parametrize("expr", ["", "* * * *", "0 0 * * * *"])
    def test_wrong_field_count(self, expr):
        """Test expressions without five fields are rejected."""
        with pytest.raises(ConfigError, match="5 fields"):
            validate_cron(expr)


class TestJobStore:
    """Tests for JobStore."""

    def test_empty(self, store):
        """Test a store without a file has no jobs."""
        assert store.list() == []
        assert store.get(1) is None

    def test_add_assigns_increasing_ids(self, store):
        """Test ids count up from one."""
        first = store.add("patch", "bash", "/opt/patch.sh", "0 2 * * *")
        second = store.add("facts", TaskType.ANSIBLE, "/opt/site.yml", "*/15 * * * *")

        assert (first.id, second.id) == (1, 2)
        assert store.get(2).job_type is TaskType.ANSIBLE
        assert store.path.exists()

    def test_ids_not_reused_below_max(self, store):
        """Test a new id follows the highest existing one."""
        store.add("a", "bash", "a.sh", "* * * * *")
        store.add("b", "bash", "b.sh", "* * * * *")
        store.remove(1)

        assert store.add("c", "bash", "c.sh", "* * * * *").id == 3

    def test_persisted_across_instances(self, store):
        """Test jobs survive reopening the store."""
        store.add("patch", "python", "/opt/check.py", "0 * * * *", enabled=False)

        job = JobStore(store.path).get(1)

        assert job == ScheduledJob(1, "patch", "/opt/check.py", TaskType.PYTHON, "0 * * * *", enabled=False)

    def test_remove(self, store):
        """Test removal reports whether a job existed."""
        store.add("patch", "bash", "/opt/patch.sh", "0 2 * * *")

        assert store.remove(1)
        assert not store.remove(1)
        assert store.list() == []

    def test_set_enabled(self, store):
        """Test toggling a job."""
        store.add("patch", "bash", "/opt/patch.sh", "0 2 * * *")

        assert store.set_enabled(1, False).enabled is False
        assert store.get(1).enabled is False
        assert store.set_enabled(99, True) is None

    def test_invalid_job_type(self, store):
        """Test unknown job types are rejected."""
        with pytest.raises(DispatchError):
            store.add("x", "perl", "x.pl", "* * * * *")

    def test_invalid_cron_not_stored(self, store):
        """Test a bad schedule leaves the store untouched."""
        with pytest.raises(ConfigError):
            store.add("x", "bash", "x.sh", "daily")
        assert not store.path.exists()

    def test_corrupt_file(self, store):
        """Test an unreadable store raises ConfigError."""
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json")
        with pytest.raises(ConfigError):
            store.list()
