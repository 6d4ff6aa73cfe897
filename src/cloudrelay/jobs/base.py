"""
Job outcome shared by upload and refresh jobs.

A job never sleeps and never re-enqueues itself. It returns a JobOutcome
and the scheduler (queue worker, asyncio task, cron) acts on it:

    outcome = job.run(...)
    if outcome.should_reschedule:
        queue.enqueue(job_payload, attempt=outcome.next_attempt,
                      delay=outcome.delay_seconds)
    elif outcome.notify_user:
        notifier.send(user, outcome.user_message)

Every outcome is counted in the cloudrelay_job_outcomes_total metric.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType
from cloudrelay.metrics import record_job_outcome
from cloudrelay.resilience.recovery import RecoveryResult, RecoveryStrategy


class JobStatus(Enum):
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class JobOutcome:
    """
    What the scheduler should do after one job execution.

    Attributes:
        status: completed, retry, failed or skipped (feature disabled)
        attempt: 1-based execution number that produced this outcome
        delay_seconds: Wait before the next execution (retry only)
        error_type: Classified failure, if any
        recovery_strategy: Recommended remedial action for the failure
        user_message: Text for the user-facing notification
        notify_user: Surface the failure to the user now
        result: Return value of the work on success
        recovery: Result of the recovery this job attempted, if it was one
    """

    status: JobStatus
    attempt: int
    delay_seconds: float = 0.0
    error_type: Optional[Union[ErrorType, TokenRefreshErrorType]] = None
    recovery_strategy: Optional[RecoveryStrategy] = None
    user_message: Optional[str] = None
    notify_user: bool = False
    result: Any = field(default=None, compare=False)
    recovery: Optional[RecoveryResult] = field(default=None, compare=False)

    @property
    def should_reschedule(self) -> bool:
        return self.status == JobStatus.RETRY

    @property
    def next_attempt(self) -> int:
        return self.attempt + 1

    @classmethod
    def completed(cls, attempt: int, result: Any = None) -> "JobOutcome":
        return cls(JobStatus.COMPLETED, attempt, result=result)

    @classmethod
    def retry(
        cls,
        attempt: int,
        delay_seconds: float,
        error_type: Union[ErrorType, TokenRefreshErrorType],
        recovery_strategy: Optional[RecoveryStrategy] = None,
    ) -> "JobOutcome":
        return cls(
            JobStatus.RETRY,
            attempt,
            delay_seconds=delay_seconds,
            error_type=error_type,
            recovery_strategy=recovery_strategy,
        )

    @classmethod
    def failed(
        cls,
        attempt: int,
        error_type: Union[ErrorType, TokenRefreshErrorType],
        user_message: str,
        notify_user: bool = True,
        recovery_strategy: Optional[RecoveryStrategy] = None,
    ) -> "JobOutcome":
        return cls(
            JobStatus.FAILED,
            attempt,
            error_type=error_type,
            recovery_strategy=recovery_strategy,
            user_message=user_message,
            notify_user=notify_user,
        )

    @classmethod
    def skipped(cls, attempt: int) -> "JobOutcome":
        return cls(JobStatus.SKIPPED, attempt)

    def recorded(self, job: str) -> "JobOutcome":
        """Count this outcome under the job kind and return it."""
        record_job_outcome(job, self.status.value)
        return self


__all__ = ["JobOutcome", "JobStatus"]
