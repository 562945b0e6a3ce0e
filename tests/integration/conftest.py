"""Fixtures for tests against a live Docker daemon."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from platform_lifecycle.config.models import DockerConfig

DOCKER_SOCKET = Path("/var/run/docker.sock")


@pytest.fixture(scope="session")
def docker_config() -> DockerConfig:
    host = os.environ.get("DOCKER_HOST")
    if host is None and not DOCKER_SOCKET.exists():
        pytest.skip("Docker daemon not available")
    return DockerConfig(
        host=host or f"unix://{DOCKER_SOCKET}",
        namespace="platform-lifecycle-it",
        pull=False,
        ready_max_attempts=3,
    )
