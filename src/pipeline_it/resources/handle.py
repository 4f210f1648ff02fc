"""Resource handle — identity and backing state of one provisioned resource group."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pipeline_it.errors import NotReadyError


class BackingState(StrEnum):
    """Lifecycle of the process that backs a resource manager."""

    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class Endpoint:
    """Host + mapped port of a running backend."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class ResourceHandle:
    """Mutable state of one manager's backend.

    Not thread-safe on its own: the owning ``BackendLifecycle`` serializes
    every read and write under its lock.
    """

    test_id: str
    namespace: str
    state: BackingState = BackingState.UNINITIALIZED
    _endpoint: Endpoint | None = None

    @property
    def endpoint(self) -> Endpoint:
        if self.state != BackingState.RUNNING or self._endpoint is None:
            msg = (
                f"Backend for '{self.namespace}' is {self.state}; "
                "endpoint is only available once it is running"
            )
            raise NotReadyError(msg)
        return self._endpoint

    def mark_running(self, endpoint: Endpoint) -> None:
        self._endpoint = endpoint
        self.state = BackingState.RUNNING

    def mark(self, state: BackingState) -> None:
        self.state = state
        if state != BackingState.RUNNING:
            self._endpoint = None
