"""Unit tests for backend processes (Docker SDK mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest
import respx

from pipeline_it.errors import BackendStartError
from pipeline_it.resources.backend import (
    BackendProcess,
    DockerBackend,
    ExternalBackend,
    find_free_port,
    http_probe,
)
from pipeline_it.resources.handle import Endpoint


def _docker_client(host_port: str = "49160", base_url: str = "http+docker://localhost"):
    container = MagicMock()
    container.short_id = "abc123"
    container.ports = {"5432/tcp": [{"HostIp": "0.0.0.0", "HostPort": host_port}]}
    client = MagicMock()
    client.api.base_url = base_url
    client.containers.run.return_value = container
    return client, container


class TestExternalBackend:
    def test_start_returns_endpoint(self):
        backend = ExternalBackend(Endpoint("db.local", 5432))
        assert backend.start() == Endpoint("db.local", 5432)
        backend.stop()

    def test_satisfies_protocol(self):
        assert isinstance(ExternalBackend(Endpoint("h", 1)), BackendProcess)
        assert isinstance(DockerBackend("postgres", "15", 5432), BackendProcess)


class TestDockerBackend:
    def test_start_maps_dynamic_port(self):
        client, container = _docker_client()
        backend = DockerBackend(
            "postgres",
            "15",
            5432,
            environment={"POSTGRES_DB": "db"},
            labels={"pipeline-it.test-id": "t"},
            client=client,
        )

        endpoint = backend.start()

        assert endpoint == Endpoint("localhost", 49160)
        client.containers.run.assert_called_once_with(
            "postgres:15",
            command=None,
            detach=True,
            environment={"POSTGRES_DB": "db"},
            ports={"5432/tcp": None},
            labels={"pipeline-it.test-id": "t"},
        )
        container.reload.assert_called_once()

    def test_remote_docker_host(self):
        client, _ = _docker_client(base_url="tcp://10.1.2.3:2375")
        assert DockerBackend("postgres", "15", 5432, client=client).start().host == "10.1.2.3"

    def test_run_failure_raises_backend_start_error(self):
        client, _ = _docker_client()
        client.containers.run.side_effect = RuntimeError("image not found")
        backend = DockerBackend("postgres", "15", 5432, client=client)
        with pytest.raises(BackendStartError, match="image not found"):
            backend.start()

    def test_unpublished_port_raises(self):
        client, container = _docker_client()
        container.ports = {}
        with pytest.raises(BackendStartError, match="5432/tcp"):
            DockerBackend("postgres", "15", 5432, client=client).start()

    def test_stop_removes_container_once(self):
        client, container = _docker_client()
        backend = DockerBackend("postgres", "15", 5432, client=client)
        backend.start()

        backend.stop()
        backend.stop()

        container.stop.assert_called_once_with(timeout=10)
        container.remove.assert_called_once_with(force=True, v=True)

    def test_stop_failure_still_removes(self):
        client, container = _docker_client()
        container.stop.side_effect = RuntimeError("already exited")
        backend = DockerBackend("postgres", "15", 5432, client=client)
        backend.start()
        backend.stop()
        container.remove.assert_called_once_with(force=True, v=True)

    def test_client_created_from_env(self):
        client, _ = _docker_client()
        docker_mod = MagicMock()
        docker_mod.from_env.return_value = client
        with patch.dict("sys.modules", {"docker": docker_mod}):
            DockerBackend("postgres", "15", 5432).start()
        docker_mod.from_env.assert_called_once()


class TestProbes:
    @respx.mock
    def test_http_probe_ok(self):
        respx.get("http://localhost:8085/").mock(return_value=httpx.Response(200))
        http_probe(Endpoint("localhost", 8085))

    @respx.mock
    def test_http_probe_error_status(self):
        respx.get("http://localhost:8085/").mock(return_value=httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            http_probe(Endpoint("localhost", 8085))

    def test_find_free_port(self):
        assert 0 < find_free_port() < 65536
