"""PubSubResourceManager — topics and subscriptions scoped to one test."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from pipeline_it.config.models import PubSubResourceConfig
from pipeline_it.errors import AlreadyExistsError
from pipeline_it.resources.backend import (
    BackendProcess,
    DockerBackend,
    ExternalBackend,
    http_probe,
)
from pipeline_it.resources.brokers import (
    PUBSUB_EMULATOR,
    PUBSUB_SERVICE,
    PUBSUB_SERVICE_ENDPOINT,
    BrokerSpec,
)
from pipeline_it.resources.handle import BackingState, Endpoint, ResourceHandle
from pipeline_it.resources.lifecycle import BackendLifecycle
from pipeline_it.resources.naming import (
    generate_namespace,
    pubsub_resource_id,
    pubsub_subscription_path,
    pubsub_topic_path,
)

logger = structlog.get_logger()

PUBLISH_TIMEOUT_SECONDS = 30.0
PULL_TIMEOUT_SECONDS = 10.0


class PubSubResourceManager:
    """Creates Pub/Sub topics and subscriptions for a test and deletes them.

    Topic and subscription ids are prefixed with the manager's namespace
    (``<test_id>-<suffix>``) so concurrent runs never share resources.  With
    the emulator enabled the emulator container starts on first use.
    """

    def __init__(
        self,
        config: PubSubResourceConfig,
        *,
        backend_factory: Callable[[], BackendProcess] | None = None,
        publisher: Any = None,
        subscriber: Any = None,
    ) -> None:
        self._config = config
        self._spec: BrokerSpec = PUBSUB_EMULATOR if config.use_emulator else PUBSUB_SERVICE
        namespace = config.namespace or generate_namespace(config.test_id, max_length=200)
        probe = http_probe if config.use_emulator and backend_factory is None else None
        self._lifecycle = BackendLifecycle(
            ResourceHandle(test_id=config.test_id, namespace=namespace),
            backend_factory or self._default_backend,
            probe=probe,
            startup_timeout=config.startup_timeout_seconds,
        )
        self._publisher = publisher
        self._subscriber = subscriber
        self._client_lock = threading.Lock()
        self._lock = threading.Lock()
        self._topics: dict[str, str] = {}
        self._subscriptions: dict[str, str] = {}

    @classmethod
    def create(cls, test_id: str, **overrides: Any) -> PubSubResourceManager:
        return cls(PubSubResourceConfig.build(test_id, **overrides))

    # -- Backend ---------------------------------------------------------------

    def _default_backend(self) -> BackendProcess:
        if self._config.uses_existing_backend:
            assert self._config.host is not None and self._config.port is not None
            return ExternalBackend(Endpoint(self._config.host, self._config.port))
        if not self._config.use_emulator:
            return ExternalBackend(PUBSUB_SERVICE_ENDPOINT)
        spec = self._spec
        return DockerBackend(
            self._config.image or spec.image,
            self._config.tag or spec.tag,
            spec.internal_port,
            command=spec.command(self.project_id, spec.internal_port),
            labels={"pipeline-it.test-id": self._config.test_id},
        )

    def _clients(self) -> tuple[Any, Any]:
        endpoint = self._lifecycle.ensure_running()
        with self._client_lock:
            if self._publisher is None or self._subscriber is None:
                publisher, subscriber = self._build_clients(endpoint)
                self._publisher = self._publisher or publisher
                self._subscriber = self._subscriber or subscriber
            return self._publisher, self._subscriber

    def _build_clients(self, endpoint: Endpoint) -> tuple[Any, Any]:
        from google.cloud import pubsub_v1

        if not self._config.use_emulator:
            return pubsub_v1.PublisherClient(), pubsub_v1.SubscriberClient()

        # The emulator speaks plaintext gRPC.
        import grpc
        from google.pubsub_v1.services.publisher.transports.grpc import (
            PublisherGrpcTransport,
        )
        from google.pubsub_v1.services.subscriber.transports.grpc import (
            SubscriberGrpcTransport,
        )

        channel = grpc.insecure_channel(str(endpoint))
        publisher = pubsub_v1.PublisherClient(
            transport=PublisherGrpcTransport(channel=channel)
        )
        subscriber = pubsub_v1.SubscriberClient(
            transport=SubscriberGrpcTransport(channel=channel)
        )
        return publisher, subscriber

    # -- Accessors -------------------------------------------------------------

    @property
    def project_id(self) -> str:
        return self._config.project_id

    @property
    def namespace(self) -> str:
        return self._lifecycle.namespace

    @property
    def state(self) -> BackingState:
        return self._lifecycle.state

    @property
    def endpoint(self) -> Endpoint:
        return self._lifecycle.endpoint

    @property
    def emulator_host(self) -> str | None:
        """Value for ``PUBSUB_EMULATOR_HOST`` when running against the emulator."""
        return str(self._lifecycle.endpoint) if self._config.use_emulator else None

    def get_connection_info(self) -> str:
        return self._spec.uri(self._lifecycle.endpoint, self.project_id)

    @property
    def topics(self) -> list[str]:
        with self._lock:
            return list(self._topics.values())

    @property
    def subscriptions(self) -> list[str]:
        with self._lock:
            return list(self._subscriptions.values())

    # -- Topics / subscriptions ------------------------------------------------

    def _reserve(self, registry: dict[str, str], kind: str, name: str, path: str) -> None:
        if not name:
            msg = f"{kind} name must not be empty"
            raise ValueError(msg)
        with self._lock:
            if name in registry:
                raise AlreadyExistsError(kind, name, self.namespace)
            registry[name] = path

    def _release(self, registry: dict[str, str], name: str) -> None:
        with self._lock:
            registry.pop(name, None)

    def create_topic(self, name: str) -> str:
        """Create topic *name* in this test's namespace and return its path."""
        path = pubsub_topic_path(self.project_id, pubsub_resource_id(self.namespace, name))
        self._reserve(self._topics, "topic", name, path)
        try:
            publisher, _ = self._clients()
            publisher.create_topic(request={"name": path})
        except Exception as exc:
            self._release(self._topics, name)
            if _is_already_exists(exc):
                raise AlreadyExistsError("topic", name, self.namespace) from exc
            raise
        logger.info("pubsub.topic_created", topic=path)
        return path

    def create_subscription(
        self,
        topic: str,
        name: str,
        *,
        ack_deadline_seconds: int = 600,
    ) -> str:
        """Create subscription *name* on *topic* (a full topic path)."""
        path = pubsub_subscription_path(
            self.project_id, pubsub_resource_id(self.namespace, name)
        )
        self._reserve(self._subscriptions, "subscription", name, path)
        try:
            _, subscriber = self._clients()
            subscriber.create_subscription(
                request={
                    "name": path,
                    "topic": topic,
                    "ack_deadline_seconds": ack_deadline_seconds,
                }
            )
        except Exception as exc:
            self._release(self._subscriptions, name)
            if _is_already_exists(exc):
                raise AlreadyExistsError("subscription", name, self.namespace) from exc
            raise
        logger.info("pubsub.subscription_created", subscription=path, topic=topic)
        return path

    # -- Messages --------------------------------------------------------------

    def publish(
        self,
        topic: str,
        attributes: Mapping[str, str],
        data: bytes,
    ) -> str:
        """Publish one message and wait for the server-assigned message id."""
        publisher, _ = self._clients()
        future = publisher.publish(topic, data, **dict(attributes))
        message_id: str = future.result(timeout=PUBLISH_TIMEOUT_SECONDS)
        logger.debug("pubsub.published", topic=topic, message_id=message_id)
        return message_id

    def pull(self, subscription: str, max_messages: int) -> list[Any]:
        """Pull and acknowledge up to *max_messages* messages.

        Returns an empty list when nothing is available within the pull
        deadline.
        """
        from google.api_core.exceptions import DeadlineExceeded

        _, subscriber = self._clients()
        try:
            response = subscriber.pull(
                request={"subscription": subscription, "max_messages": max_messages},
                timeout=PULL_TIMEOUT_SECONDS,
            )
        except DeadlineExceeded:
            return []
        received = list(response.received_messages)
        if received:
            subscriber.acknowledge(
                request={
                    "subscription": subscription,
                    "ack_ids": [m.ack_id for m in received],
                }
            )
        logger.debug("pubsub.pulled", subscription=subscription, count=len(received))
        return received

    # -- Cleanup ---------------------------------------------------------------

    def cleanup(self) -> None:
        """Delete subscriptions and topics (best-effort), then stop the emulator."""
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            topics = list(self._topics.values())
            self._subscriptions.clear()
            self._topics.clear()

        with self._client_lock:
            publisher, subscriber = self._publisher, self._subscriber
            self._publisher = self._subscriber = None

        if self._lifecycle.state == BackingState.RUNNING:
            if subscriber is not None:
                for sub in subscriptions:
                    try:
                        subscriber.delete_subscription(request={"subscription": sub})
                        logger.info("pubsub.subscription_deleted", subscription=sub)
                    except Exception as exc:
                        logger.warning(
                            "pubsub.subscription_delete_failed",
                            subscription=sub,
                            error=str(exc),
                        )
            if publisher is not None:
                for topic in topics:
                    try:
                        publisher.delete_topic(request={"topic": topic})
                        logger.info("pubsub.topic_deleted", topic=topic)
                    except Exception as exc:
                        logger.warning(
                            "pubsub.topic_delete_failed", topic=topic, error=str(exc)
                        )

        _close_quietly(subscriber, "close")
        _close_quietly(publisher, "stop")
        self._lifecycle.stop()


def _is_already_exists(exc: Exception) -> bool:
    try:
        from google.api_core.exceptions import AlreadyExists
    except ImportError:
        return False
    return isinstance(exc, AlreadyExists)


def _close_quietly(client: Any, method: str) -> None:
    if client is None:
        return
    try:
        getattr(client, method)()
    except Exception as exc:
        logger.warning("pubsub.client_close_failed", error=str(exc))
