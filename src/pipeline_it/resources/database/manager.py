"""DatabaseResourceManager — one database, many tables, any SQL dialect."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog

from pipeline_it.config.models import ResourceConfig
from pipeline_it.errors import AlreadyExistsError, ConfigurationError
from pipeline_it.resources.backend import BackendProcess, DockerBackend, ExternalBackend
from pipeline_it.resources.database.dialects import (
    Connector,
    DatabaseDialect,
    get_dialect,
)
from pipeline_it.resources.handle import BackingState, Endpoint, ResourceHandle
from pipeline_it.resources.lifecycle import BackendLifecycle
from pipeline_it.resources.naming import validate_sub_resource_name

logger = structlog.get_logger()


class DatabaseResourceManager:
    """Provisions a database for one test and manages tables inside it.

    The backing engine starts on the first operation that needs it.  A
    database is created when the container first spins up; its name is the
    configured namespace or one generated from the test id.

    The class is thread-safe.
    """

    def __init__(
        self,
        dialect: DatabaseDialect,
        config: ResourceConfig,
        *,
        backend_factory: Callable[[], BackendProcess] | None = None,
        connector: Connector | None = None,
    ) -> None:
        if config.uses_existing_backend and config.namespace is None:
            msg = (
                f"{dialect.name}: a database name (namespace) is required "
                "when connecting to an existing server"
            )
            raise ConfigurationError(msg)

        self._dialect = dialect
        self._config = config
        self._username = config.username or dialect.username
        self._password = (
            config.password.get_secret_value() if config.password else dialect.password
        )
        self._connect = connector or dialect.connect
        namespace = config.namespace or dialect.database_name(config.test_id)
        self._lifecycle = BackendLifecycle(
            ResourceHandle(test_id=config.test_id, namespace=namespace),
            backend_factory or self._default_backend,
            probe=self._probe,
            startup_timeout=config.startup_timeout_seconds,
        )
        self._tables: set[str] = set()
        self._tables_lock = threading.Lock()

    @classmethod
    def create(
        cls, dialect: str | DatabaseDialect, test_id: str, **overrides: Any
    ) -> DatabaseResourceManager:
        """Build a manager for *dialect*, validating *overrides* eagerly."""
        if isinstance(dialect, str):
            dialect = get_dialect(dialect)
        return cls(dialect, ResourceConfig.build(test_id, **overrides))

    # -- Backend ---------------------------------------------------------------

    def _default_backend(self) -> BackendProcess:
        if self._config.uses_existing_backend:
            assert self._config.host is not None and self._config.port is not None
            return ExternalBackend(Endpoint(self._config.host, self._config.port))
        return DockerBackend(
            self._config.image or self._dialect.image,
            self._config.tag or self._dialect.tag,
            self._dialect.internal_port,
            environment=self._dialect.environment(
                self._username, self._password, self.namespace
            ),
            labels={"pipeline-it.test-id": self._config.test_id},
        )

    def _probe(self, endpoint: Endpoint) -> None:
        self._connect(endpoint, self._username, self._password, self.namespace).close()

    # -- Accessors -------------------------------------------------------------

    @property
    def dialect(self) -> DatabaseDialect:
        return self._dialect

    @property
    def namespace(self) -> str:
        return self._lifecycle.namespace

    @property
    def database_name(self) -> str:
        return self._lifecycle.namespace

    @property
    def username(self) -> str:
        return self._username

    @property
    def password(self) -> str:
        return self._password

    @property
    def state(self) -> BackingState:
        return self._lifecycle.state

    @property
    def endpoint(self) -> Endpoint:
        return self._lifecycle.endpoint

    @property
    def tables(self) -> list[str]:
        with self._tables_lock:
            return sorted(self._tables)

    def get_uri(self) -> str:
        """JDBC-style URI of the database; raises NotReadyError before startup."""
        return self._dialect.uri(self._lifecycle.endpoint, self.namespace)

    def get_connection_info(self) -> str:
        return self.get_uri()

    # -- Tables ----------------------------------------------------------------

    def create_table(
        self,
        name: str,
        columns: Mapping[str, str],
        *,
        primary_key: str | None = None,
    ) -> str:
        """Create table *name* with ``{column: sql_type}`` columns."""
        validate_sub_resource_name(name)
        if not columns:
            msg = f"Table '{name}' needs at least one column"
            raise ValueError(msg)
        for column in columns:
            validate_sub_resource_name(column)
        if primary_key is not None and primary_key not in columns:
            msg = f"Primary key '{primary_key}' is not a column of '{name}'"
            raise ValueError(msg)

        with self._tables_lock:
            if name in self._tables:
                raise AlreadyExistsError("table", name, self.namespace)
            self._tables.add(name)

        column_sql = [f"{col} {sql_type}" for col, sql_type in columns.items()]
        if primary_key is not None:
            column_sql.append(f"PRIMARY KEY ({primary_key})")
        try:
            self._execute(f"CREATE TABLE {name} ({', '.join(column_sql)})")
        except Exception:
            with self._tables_lock:
                self._tables.discard(name)
            raise
        logger.info("database.table_created", namespace=self.namespace, table=name)
        return name

    def drop_table(self, name: str) -> None:
        self._execute(f"DROP TABLE {validate_sub_resource_name(name)}")
        with self._tables_lock:
            self._tables.discard(name)
        logger.info("database.table_dropped", namespace=self.namespace, table=name)

    def write(self, table: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """Insert *rows* into *table*; all rows must share the same columns."""
        validate_sub_resource_name(table)
        batch = [dict(r) for r in rows]
        if not batch:
            return 0
        columns = list(batch[0])
        for row in batch[1:]:
            if list(row) != columns:
                msg = f"All rows written to '{table}' must have columns {columns}"
                raise ValueError(msg)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "  # noqa: S608
            f"VALUES ({self._dialect.placeholders(len(columns))})"
        )
        values = [tuple(row[c] for c in columns) for row in batch]
        self._run(lambda cur: cur.executemany(sql, values))
        logger.info("database.rows_written", table=table, count=len(batch))
        return len(batch)

    # -- Queries ---------------------------------------------------------------

    def query(self, sql: str, params: Iterable[Any] | None = None) -> list[dict[str, Any]]:
        """Run *sql* and return result rows as dicts keyed by lower-case column."""
        return self._execute(sql, params)

    def read_first_row(self, table: str) -> dict[str, Any] | None:
        rows = self._execute(self._dialect.first_row_query(validate_sub_resource_name(table)))
        return rows[0] if rows else None

    def read_table(self, table: str) -> list[dict[str, Any]]:
        return self._execute(f"SELECT * FROM {validate_sub_resource_name(table)}")  # noqa: S608

    def get_row_count(self, table: str) -> int:
        rows = self._execute(
            f"SELECT COUNT(*) AS row_count FROM {validate_sub_resource_name(table)}"  # noqa: S608
        )
        return int(rows[0]["row_count"])

    def _execute(
        self, sql: str, params: Iterable[Any] | None = None
    ) -> list[dict[str, Any]]:
        bound = tuple(params) if params is not None else None

        def _statement(cur: Any) -> list[dict[str, Any]]:
            cur.execute(sql, bound)
            if cur.description is None:
                return []
            columns = [desc[0].lower() for desc in cur.description]
            return [dict(zip(columns, row, strict=False)) for row in cur.fetchall()]

        return self._run(_statement)

    def _run(self, statement: Callable[[Any], Any]) -> Any:
        endpoint = self._lifecycle.ensure_running()
        conn = self._connect(endpoint, self._username, self._password, self.namespace)
        try:
            cur = conn.cursor()
            try:
                result = statement(cur)
            finally:
                cur.close()
            conn.commit()
            return result
        finally:
            conn.close()

    # -- Cleanup ---------------------------------------------------------------

    def cleanup(self) -> None:
        """Drop created tables (best-effort) and stop the backend.

        Table drop failures are logged only; the backend stop is what
        decides whether cleanup failed.
        """
        if self._lifecycle.state == BackingState.RUNNING:
            for table in self.tables:
                try:
                    self.drop_table(table)
                except Exception as exc:
                    logger.warning(
                        "database.table_drop_failed",
                        namespace=self.namespace,
                        table=table,
                        error=str(exc),
                    )
        with self._tables_lock:
            self._tables.clear()
        self._lifecycle.stop()
