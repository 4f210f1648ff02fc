"""Backing processes — the database engine or broker a manager talks to.

The container runtime is an opaque dependency: a backend only has to start,
report the endpoint it is reachable on, and stop.
"""

from __future__ import annotations

import socket
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

import httpx
import structlog

from pipeline_it.errors import BackendStartError
from pipeline_it.resources.handle import Endpoint

logger = structlog.get_logger()


@runtime_checkable
class BackendProcess(Protocol):
    """Starts and stops one backing process."""

    def start(self) -> Endpoint:
        """Start the process and return its externally reachable endpoint."""
        ...

    def stop(self) -> None:
        """Stop the process and release everything it holds."""
        ...


class ExternalBackend:
    """A backend that is already running somewhere; start/stop are no-ops."""

    def __init__(self, endpoint: Endpoint) -> None:
        self._endpoint = endpoint

    def start(self) -> Endpoint:
        logger.info("backend.external", endpoint=str(self._endpoint))
        return self._endpoint

    def stop(self) -> None:
        return None


class DockerBackend:
    """Runs a container through the Docker SDK with a dynamically mapped port.

    ``host_port=None`` lets Docker pick a free host port; brokers that must
    advertise their own address pass a fixed one.
    """

    def __init__(
        self,
        image: str,
        tag: str,
        internal_port: int,
        *,
        environment: dict[str, str] | None = None,
        command: str | list[str] | None = None,
        host_port: int | None = None,
        labels: dict[str, str] | None = None,
        client: Any = None,
    ) -> None:
        self._image = f"{image}:{tag}"
        self._internal_port = internal_port
        self._environment = environment or {}
        self._command = command
        self._host_port = host_port
        self._labels = labels or {}
        self._client = client
        self._container: Any = None

    @property
    def image(self) -> str:
        return self._image

    def _get_client(self) -> Any:
        if self._client is None:
            import docker

            self._client = docker.from_env()
        return self._client

    def start(self) -> Endpoint:
        client = self._get_client()
        port_key = f"{self._internal_port}/tcp"
        try:
            self._container = client.containers.run(
                self._image,
                command=self._command,
                detach=True,
                environment=self._environment,
                ports={port_key: self._host_port},
                labels=self._labels,
            )
            self._container.reload()
        except Exception as exc:
            msg = f"Failed to start container {self._image}: {exc}"
            raise BackendStartError(msg) from exc

        bindings = (self._container.ports or {}).get(port_key) or []
        if not bindings:
            msg = f"Container {self._image} did not publish port {port_key}"
            raise BackendStartError(msg)
        endpoint = Endpoint(host=self._docker_host(client), port=int(bindings[0]["HostPort"]))
        logger.info(
            "backend.container_started",
            image=self._image,
            container=self._container.short_id,
            endpoint=str(endpoint),
        )
        return endpoint

    def stop(self) -> None:
        if self._container is None:
            return
        container, self._container = self._container, None
        try:
            container.stop(timeout=10)
        except Exception as exc:
            # Already exited containers can still be removed below.
            logger.warning(
                "backend.container_stop_failed",
                container=container.short_id,
                error=str(exc),
            )
        container.remove(force=True, v=True)
        logger.info("backend.container_removed", container=container.short_id)

    @staticmethod
    def _docker_host(client: Any) -> str:
        """Host on which published ports are reachable."""
        base_url = getattr(getattr(client, "api", None), "base_url", "") or ""
        parsed = urlparse(base_url)
        if parsed.scheme in ("http", "https", "tcp") and parsed.hostname:
            return parsed.hostname
        return "localhost"


def http_probe(endpoint: Endpoint, timeout: float = 2.0) -> None:
    """Raise unless an HTTP GET on the endpoint root returns 2xx.

    Docker's port proxy accepts TCP before the process listens, so brokers
    with an HTTP surface are probed at the protocol level.
    """
    resp = httpx.get(f"http://{endpoint}/", timeout=timeout)
    resp.raise_for_status()


def find_free_port() -> int:
    """Ask the OS for a currently unused local TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("", 0))
        return int(sock.getsockname()[1])
