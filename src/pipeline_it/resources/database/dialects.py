"""SQL backend specializations.

Each ``DatabaseDialect`` is a declarative bundle: container defaults,
connection-string format, naming rules, query templates and the driver used
to connect.  ``DatabaseResourceManager`` holds no backend-specific logic;
adding a backend is one bundle plus one registry entry.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pipeline_it.errors import ConfigurationError
from pipeline_it.resources.handle import Endpoint
from pipeline_it.resources.naming import generate_namespace, sql_identifier

Connector = Callable[[Endpoint, str, str, str], Any]
EnvironmentBuilder = Callable[[str, str, str], dict[str, str]]


@dataclass(frozen=True)
class DatabaseDialect:
    name: str
    image: str
    tag: str
    internal_port: int
    username: str
    password: str
    # Format fields: host, port, database.
    uri_template: str
    first_row_template: str
    # ``"%s"`` style is repeated; ``":{}"`` style is numbered from 1.
    placeholder: str
    max_identifier_length: int
    upper_case_identifiers: bool
    environment: EnvironmentBuilder
    connect: Connector

    @property
    def jdbc_prefix(self) -> str:
        return self.uri_template.split(":", 2)[1]

    def database_name(self, test_id: str) -> str:
        """Unique database name for one run of *test_id*.

        Two characters are held back for the prefix ``sql_identifier`` adds to
        names starting with a digit, so the random suffix always survives.
        """
        return sql_identifier(
            generate_namespace(test_id, max_length=self.max_identifier_length - 2),
            max_length=self.max_identifier_length,
            upper=self.upper_case_identifiers,
        )

    def uri(self, endpoint: Endpoint, database: str) -> str:
        return self.uri_template.format(
            host=endpoint.host, port=endpoint.port, database=database
        )

    def first_row_query(self, table: str) -> str:
        return self.first_row_template.format(table=table)

    def placeholders(self, count: int) -> str:
        if "{}" in self.placeholder:
            return ", ".join(self.placeholder.format(i) for i in range(1, count + 1))
        return ", ".join([self.placeholder] * count)


def _connect_postgres(endpoint: Endpoint, user: str, password: str, database: str) -> Any:
    try:
        import psycopg
    except ImportError:
        msg = (
            "psycopg is required for the postgres backend. "
            "Install it with: pip install pipeline-it[postgres]"
        )
        raise ImportError(msg) from None
    return psycopg.connect(
        host=endpoint.host,
        port=endpoint.port,
        dbname=database,
        user=user,
        password=password,
        connect_timeout=5,
    )


def _connect_mysql(endpoint: Endpoint, user: str, password: str, database: str) -> Any:
    try:
        import mysql.connector
    except ImportError:
        msg = (
            "mysql-connector-python is required for the mysql backend. "
            "Install it with: pip install pipeline-it[mysql]"
        )
        raise ImportError(msg) from None
    return mysql.connector.connect(
        host=endpoint.host,
        port=endpoint.port,
        database=database,
        user=user,
        password=password,
        connection_timeout=5,
    )


def _connect_oracle(endpoint: Endpoint, user: str, password: str, database: str) -> Any:
    try:
        import oracledb
    except ImportError:
        msg = (
            "oracledb is required for the oracle backend. "
            "Install it with: pip install pipeline-it[oracle]"
        )
        raise ImportError(msg) from None
    dsn = oracledb.makedsn(endpoint.host, endpoint.port, service_name=database)
    return oracledb.connect(user=user, password=password, dsn=dsn)


POSTGRES = DatabaseDialect(
    name="postgres",
    image="postgres",
    tag="15",
    internal_port=5432,
    username="postgres",
    password="postgres",
    uri_template="jdbc:postgresql://{host}:{port}/{database}",
    first_row_template="SELECT * FROM {table} LIMIT 1",
    placeholder="%s",
    max_identifier_length=63,
    upper_case_identifiers=False,
    environment=lambda user, password, db: {
        "POSTGRES_USER": user,
        "POSTGRES_PASSWORD": password,
        "POSTGRES_DB": db,
    },
    connect=_connect_postgres,
)

MYSQL = DatabaseDialect(
    name="mysql",
    image="mysql",
    tag="8.0",
    internal_port=3306,
    username="root",
    password="mysql",
    uri_template="jdbc:mysql://{host}:{port}/{database}",
    first_row_template="SELECT * FROM {table} LIMIT 1",
    placeholder="%s",
    max_identifier_length=64,
    upper_case_identifiers=False,
    environment=lambda user, password, db: {
        "MYSQL_ROOT_PASSWORD": password,
        "MYSQL_DATABASE": db,
        # The image refuses MYSQL_USER=root; root is created from the password.
        **({"MYSQL_USER": user, "MYSQL_PASSWORD": password} if user != "root" else {}),
    },
    connect=_connect_mysql,
)

# oracle-xe refuses to start without these credentials; the PDB named by
# ORACLE_DATABASE is created on first boot.
ORACLE = DatabaseDialect(
    name="oracle",
    image="gvenzl/oracle-xe",
    tag="21-slim-faststart",
    internal_port=1521,
    username="testUser",
    password="testPassword",
    uri_template="jdbc:oracle:thin:@{host}:{port}/{database}",
    first_row_template="SELECT * FROM {table} WHERE ROWNUM <= 1",
    placeholder=":{}",
    max_identifier_length=30,
    upper_case_identifiers=True,
    environment=lambda user, password, db: {
        "ORACLE_PASSWORD": password,
        "ORACLE_DATABASE": db,
        "APP_USER": user,
        "APP_USER_PASSWORD": password,
    },
    connect=_connect_oracle,
)

_DIALECT_REGISTRY: dict[str, DatabaseDialect] = {
    d.name: d for d in (POSTGRES, MYSQL, ORACLE)
}


def get_dialect(name: str) -> DatabaseDialect:
    """Look up a built-in dialect by name."""
    dialect = _DIALECT_REGISTRY.get(name.lower())
    if dialect is None:
        known = ", ".join(sorted(_DIALECT_REGISTRY))
        msg = f"Unknown database backend '{name}' (known: {known})"
        raise ConfigurationError(msg)
    return dialect


def register_dialect(dialect: DatabaseDialect) -> None:
    """Make a custom dialect available through :func:`get_dialect`."""
    _DIALECT_REGISTRY[dialect.name.lower()] = dialect
