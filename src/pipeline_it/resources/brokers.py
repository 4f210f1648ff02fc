"""Message broker specializations (Pub/Sub emulator, Kafka)."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from pipeline_it.resources.handle import Endpoint


@dataclass(frozen=True)
class BrokerSpec:
    name: str
    image: str
    tag: str
    internal_port: int
    # Format fields: host, port, namespace.
    uri_template: str
    command: Callable[[str, int], list[str] | None] = lambda project, port: None
    environment: Callable[[int], dict[str, str]] = lambda port: {}

    def uri(self, endpoint: Endpoint, namespace: str) -> str:
        return self.uri_template.format(
            host=endpoint.host, port=endpoint.port, namespace=namespace
        )


PUBSUB_EMULATOR = BrokerSpec(
    name="pubsub-emulator",
    image="gcr.io/google.com/cloudsdktool/google-cloud-cli",
    tag="emulators",
    internal_port=8085,
    uri_template="http://{host}:{port}/v1/projects/{namespace}",
    command=lambda project, port: [
        "gcloud",
        "beta",
        "emulators",
        "pubsub",
        "start",
        f"--project={project}",
        f"--host-port=0.0.0.0:{port}",
    ],
)

# The managed service; used when a test runs against a real project.
PUBSUB_SERVICE = BrokerSpec(
    name="pubsub",
    image="",
    tag="",
    internal_port=443,
    uri_template="https://{host}:{port}/v1/projects/{namespace}",
)
PUBSUB_SERVICE_ENDPOINT = Endpoint("pubsub.googleapis.com", 443)


def _kafka_environment(port: int) -> dict[str, str]:
    # Single-node KRaft broker that advertises the same host port it binds,
    # so clients outside the container can follow the advertised address.
    return {
        "KAFKA_NODE_ID": "1",
        "KAFKA_PROCESS_ROLES": "broker,controller",
        "KAFKA_LISTENERS": f"PLAINTEXT://0.0.0.0:{port},CONTROLLER://0.0.0.0:9093",
        "KAFKA_ADVERTISED_LISTENERS": f"PLAINTEXT://localhost:{port}",
        "KAFKA_CONTROLLER_LISTENER_NAMES": "CONTROLLER",
        "KAFKA_LISTENER_SECURITY_PROTOCOL_MAP": "CONTROLLER:PLAINTEXT,PLAINTEXT:PLAINTEXT",
        "KAFKA_CONTROLLER_QUORUM_VOTERS": "1@localhost:9093",
        "KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR": "1",
        "KAFKA_TRANSACTION_STATE_LOG_REPLICATION_FACTOR": "1",
        "KAFKA_TRANSACTION_STATE_LOG_MIN_ISR": "1",
        "KAFKA_GROUP_INITIAL_REBALANCE_DELAY_MS": "0",
    }


KAFKA_BROKER = BrokerSpec(
    name="kafka",
    image="apache/kafka",
    tag="3.7.0",
    internal_port=9092,
    uri_template="kafka://{host}:{port}/{namespace}",
    environment=_kafka_environment,
)
