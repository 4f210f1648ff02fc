"""Fixtures for Docker-backed integration tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from pipeline_it.resources.cleanup import ResourceTracker


def _docker_available() -> bool:
    try:
        import docker

        docker.from_env().ping()
    except Exception:
        return False
    return True


@pytest.fixture(scope="session")
def docker_engine() -> None:
    """Skip the test unless a Docker engine is reachable."""
    if not _docker_available():
        pytest.skip("Docker engine not available")


@pytest.fixture
def tracker(docker_engine: None) -> Iterator[ResourceTracker]:
    """Per-test tracker; every tracked manager is cleaned up afterwards."""
    with ResourceTracker() as t:
        yield t
