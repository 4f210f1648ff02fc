"""Exception hierarchy shared by resource managers, launchers and the operator."""

from __future__ import annotations


class PipelineItError(Exception):
    """Base class for every error raised by pipeline-it."""


class ConfigurationError(PipelineItError, ValueError):
    """Invalid builder input or missing required field, raised at construction."""


class NotReadyError(PipelineItError):
    """Endpoint or connection info requested before the backend is RUNNING."""


class AlreadyExistsError(PipelineItError):
    """A sub-resource with the same name already exists in the namespace."""

    def __init__(self, kind: str, name: str, namespace: str) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(f"{kind} '{name}' already exists in '{namespace}'")


class BackendStartError(PipelineItError):
    """The backing process could not be started or never became reachable."""


class LaunchError(PipelineItError):
    """A pipeline job was rejected at launch time."""


class TransientPollError(PipelineItError):
    """A job status lookup failed; the poll loop treats it as transient."""


class JobControlError(PipelineItError):
    """A cancel or drain request for a running job was not accepted."""


class ConditionCheckError(PipelineItError):
    """The caller-supplied predicate raised while the operator was polling."""


class CleanupError(PipelineItError):
    """One or more resources failed to tear down.

    ``failures`` holds ``(resource, exception)`` pairs in the order the
    failures happened.
    """

    def __init__(self, failures: list[tuple[str, BaseException]]) -> None:
        self.failures = failures
        details = "; ".join(f"{name}: {exc}" for name, exc in failures)
        super().__init__(
            f"Failed to clean up {len(failures)} resource(s) during cleanup: {details}"
        )
