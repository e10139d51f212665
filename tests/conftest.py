# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from trainbox.config import EnvironmentConfig, LabConfig
from trainbox.lab.capabilities import CapabilityFlags


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Create a temporary state directory."""
    state = tmp_path / "state"
    state.mkdir()
    return state


@pytest.fixture
def kept_environment() -> EnvironmentConfig:
    """Reattachable environment without forwarding."""
    return EnvironmentConfig(
        name="kali",
        image="kalilinux/kali-rolling",
        removal="keep",
        memory="1g",
        capabilities=CapabilityFlags(overrides={"NET_RAW": True}),
        ulimits={"nofile": "1024:2048", "core": "disabled"},
        command=("/bin/bash",),
        timeout_seconds=600,
    )


@pytest.fixture
def web_environment() -> EnvironmentConfig:
    """Ephemeral environment forwarding container port 80."""
    return EnvironmentConfig(
        name="web",
        image="nginx:alpine",
        removal="remove",
        virtual_port=80,
        start_port=8080,
    )


@pytest.fixture
def lab_config(
    state_dir: Path,
    kept_environment: EnvironmentConfig,
    web_environment: EnvironmentConfig,
) -> LabConfig:
    """Config with one kept and one forwarding environment."""
    return LabConfig(
        environments={
            kept_environment.name: kept_environment,
            web_environment.name: web_environment,
        },
        state_dir=state_dir,
    )


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    """Undo ``configure_logging`` calls made by CLI tests."""
    root = logging.getLogger()
    level = root.level
    handlers = root.handlers[:]
    yield
    root.setLevel(level)
    root.handlers[:] = handlers
