"""Protocol every pipeline launcher implements."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pipeline_it.config.models import JobState, LaunchConfig, LaunchInfo


@runtime_checkable
class PipelineLauncher(Protocol):
    """Starts pipeline jobs and reports on them.

    ``launch`` is pure request/response: no polling, no retries.
    """

    def launch(self, config: LaunchConfig) -> LaunchInfo: ...

    def get_job_status(self, job_id: str) -> JobState: ...

    def cancel_job(self, job_id: str) -> None: ...

    def drain_job(self, job_id: str) -> None: ...
