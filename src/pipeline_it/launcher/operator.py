"""Condition-driven polling of launched pipeline jobs.

The operator blocks the calling thread.  Each tick queries the job status
first and only then evaluates the caller's predicate, so a failed job is
never hidden behind a predicate that happens to succeed on the same tick.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from pipeline_it.config.models import JobState, LaunchInfo, PollConfig
from pipeline_it.errors import ConditionCheckError
from pipeline_it.launcher.base import PipelineLauncher

logger = structlog.get_logger()

Predicate = Callable[[], bool]


class Result(StrEnum):
    CONDITION_MET = "condition_met"
    LAUNCH_FAILED = "launch_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PollOutcome:
    result: Result
    # None when every status query failed.
    last_state: JobState | None
    elapsed_seconds: float
    attempts: int

    @property
    def succeeded(self) -> bool:
        return self.result is Result.CONDITION_MET


# Decides the tick: a Result ends the wait, None keeps polling.
_Check = Callable[[JobState | None], Result | None]


class PipelineOperator:
    """Waits on launched jobs through a :class:`PipelineLauncher`.

    ``clock`` and ``sleep`` default to ``time.monotonic`` / ``time.sleep``
    and can be replaced with fakes in tests.
    """

    def __init__(
        self,
        launcher: PipelineLauncher,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._launcher = launcher
        self._clock = clock
        self._sleep = sleep

    def wait_for_condition(self, config: PollConfig, predicate: Predicate) -> PollOutcome:
        """Poll until *predicate* holds, the job fails or is cancelled, or time runs out.

        The predicate runs at most once per tick and may accumulate
        observations in caller state; those stay visible after any outcome.
        A predicate that raises aborts the wait with ConditionCheckError.
        """
        job_id = config.job.job_id

        def check(state: JobState | None) -> Result | None:
            if state is JobState.FAILED:
                return Result.LAUNCH_FAILED
            if state in (JobState.CANCELLED, JobState.CANCELLING):
                return Result.CANCELLED
            try:
                met = predicate()
            except Exception as exc:
                logger.error("operator.condition_check_failed", job_id=job_id, error=str(exc))
                raise ConditionCheckError(
                    f"Condition check for job {job_id} raised during poll: {exc}"
                ) from exc
            return Result.CONDITION_MET if met else None

        return self._poll(config, check)

    def wait_for_condition_and_finish(
        self, config: PollConfig, predicate: Predicate
    ) -> PollOutcome:
        """Like :meth:`wait_for_condition`, then cancel the job unless it already ended."""
        try:
            outcome = self.wait_for_condition(config, predicate)
        except Exception:
            self._finish_quietly(config)
            raise
        if not _is_finished(outcome.last_state):
            self._finish_quietly(config)
        return outcome

    def wait_until_done(self, config: PollConfig) -> PollOutcome:
        """Poll until the job reaches a terminal state.

        Successful terminal states (succeeded, drained, updated) map to
        CONDITION_MET.
        """

        def check(state: JobState | None) -> Result | None:
            if state is None or not state.is_terminal:
                return None
            if state is JobState.FAILED:
                return Result.LAUNCH_FAILED
            if state is JobState.CANCELLED:
                return Result.CANCELLED
            return Result.CONDITION_MET

        return self._poll(config, check)

    def cancel_job_and_finish(self, config: PollConfig) -> PollOutcome:
        self._launcher.cancel_job(config.job.job_id)
        return self.wait_until_done(config)

    def drain_job_and_finish(self, config: PollConfig) -> PollOutcome:
        self._launcher.drain_job(config.job.job_id)
        return self.wait_until_done(config)

    # -- Internals -------------------------------------------------------------

    def _poll(self, config: PollConfig, check: _Check) -> PollOutcome:
        job = config.job
        start = self._clock()
        attempts = 0
        last_state: JobState | None = None

        while True:
            attempts += 1
            state = self._job_status(job)
            if state is not None:
                last_state = state

            result = check(state)
            elapsed = self._clock() - start
            logger.debug(
                "operator.tick",
                job_id=job.job_id,
                attempt=attempts,
                state=str(state) if state else None,
                elapsed=round(elapsed, 3),
            )
            if result is None and elapsed >= config.max_wait_seconds:
                result = Result.TIMEOUT

            if result is not None:
                outcome = PollOutcome(result, last_state, elapsed, attempts)
                log = logger.info if result is Result.CONDITION_MET else logger.warning
                log(
                    "operator.wait_finished",
                    job_id=job.job_id,
                    result=str(result),
                    state=str(last_state) if last_state else None,
                    elapsed=round(elapsed, 3),
                    attempts=attempts,
                )
                return outcome

            self._sleep(min(config.interval_seconds, config.max_wait_seconds - elapsed))

    def _job_status(self, job: LaunchInfo) -> JobState | None:
        try:
            return self._launcher.get_job_status(job.job_id)
        except Exception as exc:
            logger.warning("operator.status_query_failed", job_id=job.job_id, error=str(exc))
            return None

    def _finish_quietly(self, config: PollConfig) -> None:
        try:
            self.cancel_job_and_finish(config)
        except Exception as exc:
            logger.error("operator.finish_failed", job_id=config.job.job_id, error=str(exc))


def _is_finished(state: JobState | None) -> bool:
    return state is not None and (state.is_terminal or state is JobState.CANCELLING)
