"""Best-effort, failure-isolating teardown across resource managers."""

from __future__ import annotations

from types import TracebackType
from typing import TypeVar

import structlog

from pipeline_it.errors import CleanupError
from pipeline_it.resources.base import ResourceManager

logger = structlog.get_logger()

M = TypeVar("M", bound=ResourceManager)


def _describe(manager: ResourceManager) -> str:
    try:
        return f"{type(manager).__name__}({manager.namespace})"
    except Exception:
        return type(manager).__name__


def clean_resources(*managers: ResourceManager | None) -> None:
    """Call ``cleanup()`` on every manager, then report all failures at once.

    ``None`` entries are skipped so fixtures can pass managers that were
    never created.  Each manager gets exactly one attempt regardless of
    earlier failures.
    """
    failures: list[tuple[str, BaseException]] = []
    for manager in managers:
        if manager is None:
            continue
        name = _describe(manager)
        try:
            manager.cleanup()
        except Exception as exc:
            logger.error("cleanup.failed", resource=name, error=str(exc))
            failures.append((name, exc))
        else:
            logger.info("cleanup.done", resource=name)
    if failures:
        raise CleanupError(failures)


class ResourceTracker:
    """Collects the managers created during one test and tears them down.

    Usable as a context manager.  When the body already raised, a cleanup
    failure is logged instead of raised so it never masks the original
    error.
    """

    def __init__(self) -> None:
        self._managers: list[ResourceManager] = []

    def track(self, manager: M) -> M:
        """Register *manager* and return it unchanged."""
        self._managers.append(manager)
        return manager

    @property
    def managers(self) -> list[ResourceManager]:
        return list(self._managers)

    def clean_all(self) -> None:
        """Clean up in reverse registration order; raises CleanupError."""
        managers, self._managers = self._managers, []
        clean_resources(*reversed(managers))

    def __enter__(self) -> ResourceTracker:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.clean_all()
        except CleanupError as cleanup_exc:
            if exc is None:
                raise
            logger.error(
                "cleanup.failed_after_test_error",
                test_error=str(exc),
                failures=len(cleanup_exc.failures),
            )
