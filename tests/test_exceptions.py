"""Tests for the error taxonomy."""

from ipa_runner.exceptions import (
    AuthError,
    ConfigError,
    DirectoryError,
    DispatchError,
    ExecutionError,
    ExecutionStep,
    ResolutionError,
    RunnerError,
)


def test_all_errors_share_a_base():
    """Test every error derives from RunnerError."""
    for cls in (AuthError, ConfigError, DirectoryError, DispatchError, ExecutionError, ResolutionError):
        assert issubclass(cls, RunnerError)


def test_details_are_kept():
    """Test keyword details are stored alongside the message."""
    error = DirectoryError("search failed", base="cn=x")
    assert str(error) == "search failed"
    assert error.details == {"base": "cn=x"}


def test_resolution_not_found():
    """Test the not-found constructor."""
    error = ResolutionError.not_found("desktops")
    assert error.reason == ResolutionError.NOT_FOUND
    assert error.group == "desktops"
    assert str(error) == "host group not found: desktops"


def test_step_tags():
    """Test each step renders with the name of its command."""
    assert [s.value for s in ExecutionStep] == [
        "mkdir", "scp", "chmod", "systemd-run", "journalctl", "ansible-playbook", "pipeline",
    ]


def test_execution_error_message():
    """Test execution errors read '<step> failed: <cause>'."""
    error = ExecutionError(ExecutionStep.STAGE, "a.example.com", "exit status 255", returncode=255)
    assert str(error) == "mkdir failed: exit status 255"
    assert error.host == "a.example.com"
    assert error.returncode == 255
    assert not error.timed_out
