"""REST API wrapper for launching and tracking Dataflow Flex Template jobs."""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

import httpx
import structlog

from pipeline_it.config.models import DataflowConfig, JobState, LaunchConfig, LaunchInfo
from pipeline_it.errors import JobControlError, LaunchError, TransientPollError

logger = structlog.get_logger()

# Dataflow's JOB_STATE_* values; STOPPED means "not yet started".
_STATE_MAP: dict[str, JobState] = {
    "JOB_STATE_UNKNOWN": JobState.UNKNOWN,
    "JOB_STATE_STOPPED": JobState.PENDING,
    "JOB_STATE_PENDING": JobState.PENDING,
    "JOB_STATE_QUEUED": JobState.PENDING,
    "JOB_STATE_RUNNING": JobState.RUNNING,
    "JOB_STATE_RESOURCE_CLEANING_UP": JobState.RUNNING,
    "JOB_STATE_DONE": JobState.SUCCEEDED,
    "JOB_STATE_FAILED": JobState.FAILED,
    "JOB_STATE_CANCELLING": JobState.CANCELLING,
    "JOB_STATE_CANCELLED": JobState.CANCELLED,
    "JOB_STATE_DRAINING": JobState.DRAINING,
    "JOB_STATE_DRAINED": JobState.DRAINED,
    "JOB_STATE_UPDATED": JobState.UPDATED,
}


def map_job_state(value: str | None) -> JobState:
    if not value:
        return JobState.UNKNOWN
    return _STATE_MAP.get(value, JobState.UNKNOWN)


class BearerAuth(httpx.Auth):
    """Sets ``Authorization: Bearer <token>`` from a token source on every request."""

    def __init__(self, token_source: Callable[[], str]) -> None:
        self._token_source = token_source

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token_source()}"
        yield request


def default_credentials_token_source() -> Callable[[], str]:
    """Token source backed by Application Default Credentials."""
    credentials: Any = None

    def _token() -> str:
        nonlocal credentials
        import google.auth
        import google.auth.transport.requests

        if credentials is None:
            credentials, _ = google.auth.default(
                scopes=["https://www.googleapis.com/auth/cloud-platform"]
            )
        if not credentials.valid:
            credentials.refresh(google.auth.transport.requests.Request())
        return str(credentials.token)

    return _token


class DataflowLauncher:
    """Thin sync wrapper around the Dataflow v1b3 REST API."""

    def __init__(
        self, config: DataflowConfig, *, client: httpx.Client | None = None
    ) -> None:
        self._config = config
        if config.access_token is not None:
            token = config.access_token.get_secret_value()
            auth = BearerAuth(lambda: token)
        else:
            auth = BearerAuth(default_credentials_token_source())
        self._client = client or httpx.Client(
            base_url=config.endpoint,
            timeout=config.timeout_seconds,
            auth=auth,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> DataflowLauncher:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def project_id(self) -> str:
        return self._config.project_id

    @property
    def region(self) -> str:
        return self._config.region

    def _location_path(self) -> str:
        return f"/v1b3/projects/{self.project_id}/locations/{self.region}"

    def _job_path(self, job_id: str) -> str:
        return f"{self._location_path()}/jobs/{job_id}"

    # -- Launch ----------------------------------------------------------------

    def launch(self, config: LaunchConfig) -> LaunchInfo:
        """Launch a Flex Template job; never retried."""
        missing = config.missing_parameters()
        if missing:
            raise LaunchError(
                f"Cannot launch {config.job_name}: missing required "
                f"parameter(s) {', '.join(missing)}"
            )

        body: dict[str, Any] = {
            "launchParameter": {
                "jobName": config.job_name,
                "containerSpecGcsPath": config.spec_path,
                "parameters": dict(config.parameters),
            }
        }
        if config.environment:
            body["launchParameter"]["environment"] = dict(config.environment)

        try:
            resp = self._client.post(
                f"{self._location_path()}/flexTemplates:launch", json=body
            )
        except httpx.HTTPError as exc:
            raise LaunchError(f"Failed to launch {config.job_name}: {exc}") from exc
        if resp.status_code >= 400:
            raise LaunchError(
                f"Failed to launch {config.job_name}: "
                f"{resp.status_code} {resp.text}"
            )

        job = resp.json().get("job") or {}
        job_id = job.get("id")
        if not job_id:
            raise LaunchError(f"Launch of {config.job_name} returned no job id")

        info = LaunchInfo(
            job_id=job_id,
            job_name=job.get("name", config.job_name),
            project_id=job.get("projectId", self.project_id),
            region=job.get("location", self.region),
            state=map_job_state(job.get("currentState")),
            parameters=dict(config.parameters),
        )
        logger.info(
            "launcher.job_launched",
            job_id=info.job_id,
            job_name=info.job_name,
            region=info.region,
        )
        return info

    # -- Status ----------------------------------------------------------------

    def get_job_status(self, job_id: str) -> JobState:
        try:
            resp = self._client.get(self._job_path(job_id))
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransientPollError(
                f"Status lookup for job {job_id} failed: {exc}"
            ) from exc
        return map_job_state(resp.json().get("currentState"))

    # -- Termination -----------------------------------------------------------

    def _request_state(self, job_id: str, requested: str) -> None:
        try:
            resp = self._client.put(
                self._job_path(job_id), json={"requestedState": requested}
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise JobControlError(
                f"Request for {requested} on job {job_id} failed: {exc}"
            ) from exc

    def cancel_job(self, job_id: str) -> None:
        self._request_state(job_id, "JOB_STATE_CANCELLED")
        logger.info("launcher.job_cancel_requested", job_id=job_id)

    def drain_job(self, job_id: str) -> None:
        self._request_state(job_id, "JOB_STATE_DRAINED")
        logger.info("launcher.job_drain_requested", job_id=job_id)
