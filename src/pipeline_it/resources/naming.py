"""Resource naming conventions.

Generated names follow ``<test_id>-<suffix>`` so that parallel runs of the
same test never collide.  Backends that restrict identifier syntax pass the
generated name through their own sanitizer.
"""

from __future__ import annotations

import re
import uuid

SUFFIX_LENGTH = 8

_SQL_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


def random_suffix() -> str:
    return uuid.uuid4().hex[:SUFFIX_LENGTH]


def generate_namespace(test_id: str, *, max_length: int = 63) -> str:
    """Build a unique ``<test_id>-<suffix>`` name no longer than *max_length*.

    The test id is truncated, never the suffix.
    """
    if not test_id:
        msg = "test_id must not be empty"
        raise ValueError(msg)
    suffix = random_suffix()
    prefix = test_id[: max(max_length - SUFFIX_LENGTH - 1, 1)].rstrip("-_.")
    return f"{prefix}-{suffix}"


def sql_identifier(name: str, *, max_length: int = 63, upper: bool = False) -> str:
    """Turn a generated name into a plain SQL identifier.

    Non-alphanumerics become underscores and names starting with a digit get
    a letter prefix.
    """
    ident = re.sub(r"[^A-Za-z0-9_]", "_", name)
    if not ident or ident[0].isdigit():
        ident = f"t_{ident}"
    ident = ident[:max_length]
    return ident.upper() if upper else ident.lower()


def validate_sub_resource_name(name: str) -> str:
    """Reject table names that cannot be used unquoted in SQL."""
    if not name or not _SQL_IDENTIFIER.match(name):
        msg = f"Invalid resource name '{name}': expected a plain SQL identifier"
        raise ValueError(msg)
    return name


def pubsub_topic_path(project_id: str, topic: str) -> str:
    """Fully-qualified Pub/Sub topic name."""
    return f"projects/{project_id}/topics/{topic}"


def pubsub_subscription_path(project_id: str, subscription: str) -> str:
    """Fully-qualified Pub/Sub subscription name."""
    return f"projects/{project_id}/subscriptions/{subscription}"


def pubsub_resource_id(namespace: str, name: str) -> str:
    """Prefix a topic/subscription id with the manager namespace.

    Pub/Sub ids must start with a letter and cannot start with ``goog``.
    """
    resource_id = f"{namespace}-{name}".replace(".", "-")
    if not resource_id[0].isalpha() or resource_id.startswith("goog"):
        resource_id = f"it-{resource_id}"
    return resource_id[:255]


def kafka_topic_name(namespace: str, name: str) -> str:
    """Namespaced Kafka topic: ``<namespace>.<name>``."""
    return re.sub(r"[^a-zA-Z0-9._-]", "-", f"{namespace}.{name}")[:249]
