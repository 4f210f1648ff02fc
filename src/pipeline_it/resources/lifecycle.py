"""Lazy, exactly-once startup and idempotent stop of a manager's backend."""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog
from tenacity import Retrying, stop_after_delay, wait_exponential

from pipeline_it.errors import BackendStartError, NotReadyError
from pipeline_it.resources.backend import BackendProcess
from pipeline_it.resources.handle import BackingState, Endpoint, ResourceHandle

logger = structlog.get_logger()

ReadinessProbe = Callable[[Endpoint], None]


class BackendLifecycle:
    """Owns a ``ResourceHandle`` and the lock that guards it.

    The first caller of :meth:`ensure_running` starts the backend while
    holding the lock; concurrent callers block on the same lock and then
    observe RUNNING.  Every read of state or endpoint takes the lock, so a
    half-initialized endpoint is never visible.
    """

    def __init__(
        self,
        handle: ResourceHandle,
        backend_factory: Callable[[], BackendProcess],
        *,
        probe: ReadinessProbe | None = None,
        startup_timeout: float = 180.0,
    ) -> None:
        self._handle = handle
        self._backend_factory = backend_factory
        self._probe = probe
        self._startup_timeout = startup_timeout
        self._process: BackendProcess | None = None
        self._lock = threading.Lock()

    @property
    def test_id(self) -> str:
        return self._handle.test_id

    @property
    def namespace(self) -> str:
        return self._handle.namespace

    @property
    def state(self) -> BackingState:
        with self._lock:
            return self._handle.state

    @property
    def endpoint(self) -> Endpoint:
        """Current endpoint; raises NotReadyError unless RUNNING."""
        with self._lock:
            return self._handle.endpoint

    def ensure_running(self) -> Endpoint:
        with self._lock:
            state = self._handle.state
            if state == BackingState.RUNNING:
                return self._handle.endpoint
            if state == BackingState.STOPPED:
                msg = f"Backend for '{self.namespace}' was already cleaned up"
                raise NotReadyError(msg)
            if state == BackingState.FAILED:
                msg = f"Backend for '{self.namespace}' failed to start earlier"
                raise BackendStartError(msg)

            self._handle.mark(BackingState.STARTING)
            logger.info("resource.backend_starting", namespace=self.namespace)
            try:
                self._process = self._backend_factory()
                endpoint = self._process.start()
                if self._probe is not None:
                    self._wait_until_ready(self._probe, endpoint)
            except Exception as exc:
                self._handle.mark(BackingState.FAILED)
                logger.error(
                    "resource.backend_start_failed",
                    namespace=self.namespace,
                    error=str(exc),
                )
                if isinstance(exc, BackendStartError):
                    raise
                msg = f"Failed to provision backend for '{self.namespace}': {exc}"
                raise BackendStartError(msg) from exc

            self._handle.mark_running(endpoint)
            logger.info(
                "resource.backend_started",
                namespace=self.namespace,
                endpoint=str(endpoint),
            )
            return endpoint

    def _wait_until_ready(self, probe: ReadinessProbe, endpoint: Endpoint) -> None:
        retrying = Retrying(
            stop=stop_after_delay(self._startup_timeout),
            wait=wait_exponential(multiplier=0.5, max=5),
            reraise=True,
        )
        retrying(probe, endpoint)

    def stop(self) -> bool:
        """Stop the backend once.

        Returns ``True`` if a process was actually stopped.  Later calls,
        and calls on a never-started backend, are no-ops.  A failing stop
        leaves the handle FAILED and re-raises.
        """
        with self._lock:
            process, self._process = self._process, None
            if process is None:
                if self._handle.state == BackingState.UNINITIALIZED:
                    self._handle.mark(BackingState.STOPPED)
                return False
            try:
                process.stop()
            except Exception:
                self._handle.mark(BackingState.FAILED)
                logger.error("resource.backend_stop_failed", namespace=self.namespace)
                raise
            self._handle.mark(BackingState.STOPPED)
            logger.info("resource.backend_stopped", namespace=self.namespace)
            return True
