"""Shared fakes for resource manager unit tests."""

from __future__ import annotations

import threading
from typing import Any

import pytest

from pipeline_it.resources.handle import Endpoint


class FakeBackend:
    """Backend process that records start/stop calls."""

    def __init__(
        self,
        endpoint: Endpoint | None = None,
        *,
        start_error: Exception | None = None,
        stop_error: Exception | None = None,
    ) -> None:
        self.endpoint = endpoint or Endpoint("localhost", 49153)
        self.start_error = start_error
        self.stop_error = stop_error
        self.starts = 0
        self.stops = 0
        self._lock = threading.Lock()

    def start(self) -> Endpoint:
        with self._lock:
            self.starts += 1
        if self.start_error is not None:
            raise self.start_error
        return self.endpoint

    def stop(self) -> None:
        self.stops += 1
        if self.stop_error is not None:
            raise self.stop_error


class FakeCursor:
    def __init__(self, conn: FakeConnection) -> None:
        self._conn = conn
        self.description: list[tuple[str]] | None = None
        self._rows: list[tuple[Any, ...]] = []

    def execute(self, sql: str, params: Any = None) -> None:
        self._conn.statements.append((sql, params))
        if self._conn.fail_on and self._conn.fail_on in sql:
            raise RuntimeError(f"statement failed: {sql}")
        result = self._conn.results.pop(0) if sql.startswith("SELECT") and self._conn.results else None
        if result is None:
            self.description = None
            self._rows = []
        else:
            columns, rows = result
            self.description = [(c,) for c in columns]
            self._rows = rows

    def executemany(self, sql: str, seq: list[Any]) -> None:
        self._conn.statements.append((sql, list(seq)))

    def fetchall(self) -> list[tuple[Any, ...]]:
        return self._rows

    def close(self) -> None:
        pass


class FakeConnection:
    """DB-API connection shared by every ``connect`` call of one test."""

    def __init__(self) -> None:
        self.statements: list[tuple[str, Any]] = []
        # Queued (columns, rows) results for SELECT statements.
        self.results: list[tuple[list[str], list[tuple[Any, ...]]]] = []
        self.fail_on: str | None = None
        self.commits = 0
        self.closes = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def close(self) -> None:
        self.closes += 1

    @property
    def sql(self) -> list[str]:
        return [s for s, _ in self.statements]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def db_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def make_backend() -> type[FakeBackend]:
    return FakeBackend
