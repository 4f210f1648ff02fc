"""Unit tests for the cleanup dispatcher and resource tracker."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pipeline_it.errors import CleanupError
from pipeline_it.resources.base import ResourceManager
from pipeline_it.resources.cleanup import ResourceTracker, clean_resources
from pipeline_it.resources.handle import BackingState


def _manager(namespace: str, error: Exception | None = None) -> MagicMock:
    manager = MagicMock(spec=ResourceManager)
    manager.namespace = namespace
    manager.state = BackingState.RUNNING
    if error is not None:
        manager.cleanup.side_effect = error
    return manager


class TestCleanResources:
    def test_cleans_every_manager(self):
        a, b = _manager("a"), _manager("b")
        clean_resources(a, b)
        a.cleanup.assert_called_once()
        b.cleanup.assert_called_once()

    def test_second_manager_cleaned_after_first_fails(self):
        first = _manager("first", RuntimeError("stop failed"))
        second = _manager("second")

        with pytest.raises(CleanupError) as exc_info:
            clean_resources(first, second)

        second.cleanup.assert_called_once()
        assert len(exc_info.value.failures) == 1
        name, error = exc_info.value.failures[0]
        assert "first" in name
        assert str(error) == "stop failed"

    def test_all_failures_aggregated(self):
        a = _manager("a", RuntimeError("boom-a"))
        b = _manager("b", RuntimeError("boom-b"))
        with pytest.raises(CleanupError, match="2 resource") as exc_info:
            clean_resources(a, b)
        assert "boom-a" in str(exc_info.value)
        assert "boom-b" in str(exc_info.value)

    def test_none_entries_skipped(self):
        a = _manager("a")
        clean_resources(None, a, None)
        a.cleanup.assert_called_once()

    def test_no_managers(self):
        clean_resources()


class TestResourceTracker:
    def test_track_returns_manager(self):
        tracker = ResourceTracker()
        m = _manager("a")
        assert tracker.track(m) is m
        assert tracker.managers == [m]

    def test_clean_all_in_reverse_order(self):
        order: list[str] = []
        tracker = ResourceTracker()
        for ns in ("db", "topic", "kafka"):
            m = _manager(ns)
            m.cleanup.side_effect = lambda ns=ns: order.append(ns)
            tracker.track(m)

        tracker.clean_all()

        assert order == ["kafka", "topic", "db"]
        assert tracker.managers == []

    def test_clean_all_twice_cleans_once(self):
        tracker = ResourceTracker()
        m = tracker.track(_manager("a"))
        tracker.clean_all()
        tracker.clean_all()
        m.cleanup.assert_called_once()

    def test_context_manager_raises_cleanup_error(self):
        with pytest.raises(CleanupError):
            with ResourceTracker() as tracker:
                tracker.track(_manager("a", RuntimeError("boom")))

    def test_cleanup_error_never_masks_test_error(self):
        tracker = ResourceTracker()
        other = _manager("b")
        with pytest.raises(AssertionError, match="row count"):
            with tracker:
                tracker.track(other)
                tracker.track(_manager("a", RuntimeError("boom")))
                raise AssertionError("row count mismatch")
        other.cleanup.assert_called_once()
