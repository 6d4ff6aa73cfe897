"""
Upload job.

Runs one provider operation (upload, folder create, listing) and turns a
failure into a JobOutcome: classify, update health, pick a recovery
strategy, consult the retry policy. Errors that need the user fail at once
with the provider-specific message; recoverable ones are rescheduled until
the policy runs out, then fail with a notification. With automatic recovery
turned off, recoverable failures fail at once too.

Usage:
    job = UploadJob(user_id, "google-drive", health=tracker, attempt=attempt)
    outcome = job.run(lambda: drive.upload(file))
    if outcome.recovery_strategy == RecoveryStrategy.TOKEN_REFRESH:
        enqueue_refresh(user_id, "google-drive")
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from cloudrelay.config.config import FeatureFlags, HealthSettings
from cloudrelay.errors.classifiers import classify
from cloudrelay.health.tracker import HealthTracker
from cloudrelay.jobs.base import JobOutcome
from cloudrelay.logging.context_managers import LogContext
from cloudrelay.resilience.recovery import RecoveryContext, RecoveryStrategy, select_strategy
from cloudrelay.resilience.retry import DEFAULT_RETRY_POLICY, RetryPolicy

logger = logging.getLogger(__name__)

JOB_NAME = "upload"


class UploadJob:
    """
    One execution of a retryable storage operation.

    Args:
        user_id: Connection owner
        provider: Provider key used for classification
        health: Tracker updated with the outcome
        retry_policy: Retry policy (default: module default)
        attempt: 1-based execution number persisted by the scheduler
        has_valid_refresh_token: Whether a usable refresh token is stored;
                                 without one, auth failures need the user
        provider_name: Display name for user messages
        features: Feature flags (automatic_recovery gates rescheduling)
    """

    def __init__(
        self,
        user_id: Any,
        provider: str,
        health: Optional[HealthTracker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        attempt: int = 1,
        has_valid_refresh_token: bool = True,
        provider_name: Optional[str] = None,
        features: Optional[FeatureFlags] = None,
    ):
        self.user_id = str(user_id)
        self.provider = provider
        self.health = health
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self.attempt = max(1, int(attempt))
        self.has_valid_refresh_token = has_valid_refresh_token
        self.provider_name = provider_name
        self.features = features or FeatureFlags()

    def run(self, operation: Callable[[], Any]) -> JobOutcome:
        with LogContext(user_id=self.user_id, provider=self.provider, operation="upload"):
            try:
                result = operation()
            except Exception as e:
                return self._on_failure(e).recorded(JOB_NAME)
            return self._on_success(result).recorded(JOB_NAME)

    async def run_async(self, operation: Callable[[], Awaitable[Any]]) -> JobOutcome:
        with LogContext(user_id=self.user_id, provider=self.provider, operation="upload"):
            try:
                result = await operation()
            except Exception as e:
                return self._on_failure(e).recorded(JOB_NAME)
            return self._on_success(result).recorded(JOB_NAME)

    def _on_success(self, result: Any) -> JobOutcome:
        if self.health is not None:
            self.health.record_success()
        if self.attempt > 1:
            logger.info(
                "Upload succeeded after retry",
                extra={"user_id": self.user_id, "provider": self.provider, "attempt": self.attempt},
            )
        return JobOutcome.completed(self.attempt, result=result)

    def _on_failure(self, error: Exception) -> JobOutcome:
        error_type = classify(error, provider=self.provider)

        failures = self.attempt
        unhealthy_threshold = HealthSettings.unhealthy_threshold
        if self.health is not None:
            status = self.health.record_failure(error_type, str(error))
            failures = status.consecutive_failures
            unhealthy_threshold = self.health.settings.unhealthy_threshold

        strategy = select_strategy(
            error_type,
            RecoveryContext(
                consecutive_failures=failures,
                has_valid_refresh_token=self.has_valid_refresh_token,
                unhealthy_threshold=unhealthy_threshold,
            ),
        )
        user_message = error_type.user_message(self.provider_name or self.provider)

        if (
            error_type.requires_user_intervention
            or strategy == RecoveryStrategy.USER_INTERVENTION_REQUIRED
        ):
            logger.warning(
                "Upload failed, user action required",
                extra={
                    "user_id": self.user_id,
                    "provider": self.provider,
                    "error_type": error_type.value,
                    "recovery_strategy": strategy.value,
                },
            )
            return JobOutcome.failed(
                self.attempt, error_type, user_message, notify_user=True, recovery_strategy=strategy
            )

        decision = self.retry_policy.decide(
            error_type, self.attempt, getattr(error, "retry_after", None)
        )
        if decision.should_retry and self.features.automatic_recovery:
            logger.info(
                "Upload will be retried",
                extra={
                    "user_id": self.user_id,
                    "provider": self.provider,
                    "error_type": error_type.value,
                    "attempt": self.attempt,
                    "max_attempts": decision.max_attempts,
                    "delay_seconds": decision.delay_seconds,
                    "recovery_strategy": strategy.value,
                },
            )
            return JobOutcome.retry(
                self.attempt, decision.delay_seconds, error_type, recovery_strategy=strategy
            )

        logger.error(
            "Upload failed permanently",
            extra={
                "user_id": self.user_id,
                "provider": self.provider,
                "error_type": error_type.value,
                "attempt": self.attempt,
                "error_message": str(error)[:200],
            },
        )
        return JobOutcome.failed(
            self.attempt, error_type, user_message, notify_user=True, recovery_strategy=strategy
        )


__all__ = ["UploadJob"]
