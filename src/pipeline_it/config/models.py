"""Pydantic configuration models for test resources and pipeline jobs."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Self, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    model_validator,
)

from pipeline_it.errors import ConfigurationError

TestId = Annotated[
    str, Field(min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")
]
JobName = Annotated[str, Field(pattern=r"^[a-z]([-a-z0-9]*[a-z0-9])?$")]


class JobState(StrEnum):
    """Pipeline job states as observed through the job service."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    DRAINING = "draining"
    DRAINED = "drained"
    UPDATED = "updated"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def is_failed(self) -> bool:
        return self is JobState.FAILED


_TERMINAL_STATES = frozenset(
    {
        JobState.SUCCEEDED,
        JobState.FAILED,
        JobState.CANCELLED,
        JobState.DRAINED,
        JobState.UPDATED,
    }
)


M = TypeVar("M", bound=BaseModel)


def _validated(model: type[M], data: dict[str, Any], source: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid {source}:\n{exc}"
        raise ConfigurationError(msg) from exc


class ResourceConfig(BaseModel):
    """Immutable construction-time settings for one resource manager.

    Fields left as ``None`` fall back to the backend specialization's
    defaults.  ``host`` + ``port`` point the manager at an already running
    backend instead of starting a container.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    test_id: TestId
    image: str | None = None
    tag: str | None = None
    username: str | None = None
    password: SecretStr | None = None
    # Database name / namespace; generated from test_id when omitted.
    namespace: str | None = Field(default=None, min_length=1)
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    startup_timeout_seconds: float = Field(default=180.0, gt=0)

    @model_validator(mode="after")
    def check_endpoint_override(self) -> Self:
        """Require host and port together."""
        if (self.host is None) != (self.port is None):
            msg = "host and port must be set together to use an existing backend"
            raise ValueError(msg)
        return self

    @property
    def uses_existing_backend(self) -> bool:
        return self.host is not None

    @classmethod
    def build(cls, test_id: str, **overrides: Any) -> Self:
        """Validate settings, raising ConfigurationError instead of ValidationError."""
        return _validated(cls, {"test_id": test_id, **overrides}, cls.__name__)


class PubSubResourceConfig(ResourceConfig):
    """Pub/Sub manager settings.

    With ``use_emulator`` the manager starts (or connects to) the Pub/Sub
    emulator; otherwise it talks to the real service in ``project_id``.
    """

    project_id: str = Field(default="test-project", min_length=1)
    use_emulator: bool = True


class KafkaResourceConfig(ResourceConfig):
    """Kafka manager settings."""

    num_partitions: int = Field(default=1, ge=1)
    replication_factor: int = Field(default=1, ge=1)
    consumer_group: str = Field(default="pipeline-it", min_length=1)


class LaunchConfig(BaseModel):
    """Immutable parameter set for launching one pipeline job."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    job_name: JobName
    spec_path: str = Field(min_length=1)
    parameters: dict[str, str] = Field(default_factory=dict)
    environment: dict[str, str | int | bool] = Field(default_factory=dict)
    required_parameters: tuple[str, ...] = ()

    def with_parameter(self, name: str, value: str) -> LaunchConfig:
        """Return a copy of this config with one parameter added or replaced."""
        return self.model_copy(update={"parameters": {**self.parameters, name: value}})

    def missing_parameters(self) -> list[str]:
        return sorted(p for p in self.required_parameters if not self.parameters.get(p))

    @classmethod
    def build(cls, job_name: str, spec_path: str, **fields: Any) -> LaunchConfig:
        data = {"job_name": job_name, "spec_path": spec_path, **fields}
        return _validated(cls, data, cls.__name__)


class LaunchInfo(BaseModel):
    """Immutable handle to a launched job."""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(min_length=1)
    job_name: str
    project_id: str
    region: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    state: JobState = JobState.PENDING
    parameters: dict[str, str] = Field(default_factory=dict)


class PollConfig(BaseModel):
    """How long and how often the operator polls a job."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    job: LaunchInfo
    max_wait_seconds: float = Field(default=900.0, ge=0)
    interval_seconds: float = Field(default=10.0, gt=0)


class PollDefaults(BaseModel):
    """Poll timings applied when a test does not pass its own."""

    max_wait_seconds: float = Field(default=900.0, ge=0)
    interval_seconds: float = Field(default=10.0, gt=0)

    def for_job(self, job: LaunchInfo) -> PollConfig:
        return PollConfig(
            job=job,
            max_wait_seconds=self.max_wait_seconds,
            interval_seconds=self.interval_seconds,
        )


class DataflowConfig(BaseModel):
    """Dataflow REST API access settings."""

    project_id: str = Field(min_length=1)
    region: str = "us-central1"
    endpoint: str = "https://dataflow.googleapis.com"
    timeout_seconds: float = Field(default=30.0, gt=0)
    access_token: SecretStr | None = None


class Settings(BaseModel, extra="forbid"):
    """Test-run settings loaded from YAML + environment variables."""

    dataflow: DataflowConfig | None = None
    poll: PollDefaults = PollDefaults()
    pubsub_project_id: str = "test-project"
    log_json: bool = False
