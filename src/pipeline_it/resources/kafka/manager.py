"""KafkaResourceManager — namespaced topics on a throwaway (or shared) broker."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import Any

import structlog
from confluent_kafka import Consumer, KafkaError, KafkaException, Message, Producer
from confluent_kafka.admin import AdminClient, NewTopic  # type: ignore[attr-defined]

from pipeline_it.config.models import KafkaResourceConfig
from pipeline_it.errors import AlreadyExistsError
from pipeline_it.resources.backend import (
    BackendProcess,
    DockerBackend,
    ExternalBackend,
    find_free_port,
)
from pipeline_it.resources.brokers import KAFKA_BROKER
from pipeline_it.resources.handle import BackingState, Endpoint, ResourceHandle
from pipeline_it.resources.lifecycle import BackendLifecycle
from pipeline_it.resources.naming import generate_namespace, kafka_topic_name

logger = structlog.get_logger()

ADMIN_TIMEOUT_SECONDS = 10.0


def _admin_probe(endpoint: Endpoint) -> None:
    admin = AdminClient({"bootstrap.servers": str(endpoint)})
    admin.list_topics(timeout=5)


class KafkaResourceManager:
    """Creates Kafka topics for one test and deletes them on cleanup.

    Topics are named ``<namespace>.<name>``.  Without a host/port override a
    single-node KRaft broker container is started on first use.
    """

    def __init__(
        self,
        config: KafkaResourceConfig,
        *,
        backend_factory: Callable[[], BackendProcess] | None = None,
        admin_factory: Callable[[dict[str, Any]], Any] = AdminClient,
        producer_factory: Callable[[dict[str, Any]], Any] = Producer,
        consumer_factory: Callable[[dict[str, Any]], Any] = Consumer,
    ) -> None:
        self._config = config
        namespace = config.namespace or generate_namespace(config.test_id, max_length=200)
        self._lifecycle = BackendLifecycle(
            ResourceHandle(test_id=config.test_id, namespace=namespace),
            backend_factory or self._default_backend,
            probe=_admin_probe if backend_factory is None else None,
            startup_timeout=config.startup_timeout_seconds,
        )
        self._admin_factory = admin_factory
        self._producer_factory = producer_factory
        self._consumer_factory = consumer_factory
        self._lock = threading.Lock()
        self._topics: dict[str, str] = {}
        self._producer: Any = None
        self._consumers: dict[str, Any] = {}

    @classmethod
    def create(cls, test_id: str, **overrides: Any) -> KafkaResourceManager:
        return cls(KafkaResourceConfig.build(test_id, **overrides))

    def _default_backend(self) -> BackendProcess:
        if self._config.uses_existing_backend:
            assert self._config.host is not None and self._config.port is not None
            return ExternalBackend(Endpoint(self._config.host, self._config.port))
        # The broker must advertise the host port, so pin it to the same
        # number inside and outside the container.
        port = find_free_port()
        return DockerBackend(
            self._config.image or KAFKA_BROKER.image,
            self._config.tag or KAFKA_BROKER.tag,
            port,
            environment=KAFKA_BROKER.environment(port),
            host_port=port,
            labels={"pipeline-it.test-id": self._config.test_id},
        )

    # -- Accessors -------------------------------------------------------------

    @property
    def namespace(self) -> str:
        return self._lifecycle.namespace

    @property
    def state(self) -> BackingState:
        return self._lifecycle.state

    @property
    def bootstrap_servers(self) -> str:
        return str(self._lifecycle.endpoint)

    def get_connection_info(self) -> str:
        return KAFKA_BROKER.uri(self._lifecycle.endpoint, self.namespace)

    @property
    def topics(self) -> list[str]:
        with self._lock:
            return list(self._topics.values())

    def _client_config(self, **extra: Any) -> dict[str, Any]:
        endpoint = self._lifecycle.ensure_running()
        return {"bootstrap.servers": str(endpoint), **extra}

    # -- Topics ----------------------------------------------------------------

    def create_topic(self, name: str, num_partitions: int | None = None) -> str:
        """Create topic *name* in this test's namespace; returns the full name."""
        if not name:
            msg = "topic name must not be empty"
            raise ValueError(msg)
        topic = kafka_topic_name(self.namespace, name)
        with self._lock:
            if name in self._topics:
                raise AlreadyExistsError("topic", name, self.namespace)
            self._topics[name] = topic

        try:
            admin = self._admin_factory(self._client_config())
            futures = admin.create_topics(
                [
                    NewTopic(
                        topic,
                        num_partitions=num_partitions or self._config.num_partitions,
                        replication_factor=self._config.replication_factor,
                    )
                ],
                operation_timeout=ADMIN_TIMEOUT_SECONDS,
            )
            futures[topic].result()
        except KafkaException as exc:
            with self._lock:
                self._topics.pop(name, None)
            error = exc.args[0] if exc.args else None
            if isinstance(error, KafkaError) and error.code() == KafkaError.TOPIC_ALREADY_EXISTS:
                raise AlreadyExistsError("topic", name, self.namespace) from exc
            raise
        except Exception:
            with self._lock:
                self._topics.pop(name, None)
            raise
        logger.info("kafka.topic_created", topic=topic)
        return topic

    # -- Messages --------------------------------------------------------------

    def produce(
        self,
        topic: str,
        value: bytes | str,
        *,
        key: bytes | str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        """Produce one message and flush it to the broker."""
        with self._lock:
            if self._producer is None:
                self._producer = self._producer_factory(self._client_config())
            producer = self._producer
        producer.produce(
            topic,
            value=value,
            key=key,
            headers=list(headers.items()) if headers else None,
        )
        remaining = producer.flush(ADMIN_TIMEOUT_SECONDS)
        if remaining:
            msg = f"{remaining} message(s) to {topic} were not delivered"
            raise RuntimeError(msg)

    def consume(
        self, topic: str, max_messages: int = 100, timeout: float = 5.0
    ) -> list[Message]:
        """Return up to *max_messages* new messages from *topic*.

        Each topic keeps one consumer, so repeated calls continue from where
        the previous call stopped.
        """
        with self._lock:
            consumer = self._consumers.get(topic)
            if consumer is None:
                consumer = self._consumer_factory(
                    self._client_config(
                        **{
                            "group.id": f"{self._config.consumer_group}-{self.namespace}",
                            "auto.offset.reset": "earliest",
                        }
                    )
                )
                consumer.subscribe([topic])
                self._consumers[topic] = consumer

        messages = consumer.consume(num_messages=max_messages, timeout=timeout)
        good: list[Message] = []
        for msg in messages:
            err = msg.error()
            if err is None:
                good.append(msg)
            elif err.code() != KafkaError._PARTITION_EOF:
                logger.warning("kafka.consume_error", topic=topic, error=str(err))
        return good

    # -- Cleanup ---------------------------------------------------------------

    def cleanup(self) -> None:
        """Close clients, delete topics (best-effort), then stop the broker."""
        with self._lock:
            consumers = list(self._consumers.values())
            topics = list(self._topics.values())
            producer = self._producer
            self._consumers.clear()
            self._topics.clear()
            self._producer = None

        for consumer in consumers:
            try:
                consumer.close()
            except Exception as exc:
                logger.warning("kafka.consumer_close_failed", error=str(exc))
        if producer is not None:
            producer.flush(ADMIN_TIMEOUT_SECONDS)

        if topics and self._lifecycle.state == BackingState.RUNNING:
            try:
                admin = self._admin_factory(self._client_config())
                futures = admin.delete_topics(topics, operation_timeout=ADMIN_TIMEOUT_SECONDS)
                for topic, fut in futures.items():
                    try:
                        fut.result()
                        logger.info("kafka.topic_deleted", topic=topic)
                    except Exception as exc:
                        logger.warning(
                            "kafka.topic_delete_failed", topic=topic, error=str(exc)
                        )
            except Exception as exc:
                logger.warning("kafka.admin_unavailable", error=str(exc))
        self._lifecycle.stop()
