"""Shared fixtures: a scripted transport and a ready configuration."""

import pytest

from fakes import REQUIRED_ENV, FakeTransport
from ipa_runner.config import RunnerConfig


@pytest.fixture
def env() -> dict[str, str]:
    return dict(REQUIRED_ENV)


@pytest.fixture
def config(env) -> RunnerConfig:
    return RunnerConfig.from_env(env)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def script_file(tmp_path_factory):
    path = tmp_path_factory.mktemp("script") / "patch.sh"
    path.write_text("#!/bin/bash\necho patched\n")
    return path
