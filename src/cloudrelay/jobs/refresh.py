"""
Token refresh job.

Runs one coordinated refresh and turns the result into a JobOutcome using
the refresh taxonomy's retry economics. The persisted attempt number comes
from the scheduler; attempt 1 is the first execution.

A refresh job is the TOKEN_REFRESH recovery for a failed upload, so every
outcome that ran a refresh carries a RecoveryResult.

Feature flags (from the coordinator's config):
- background_maintenance off: background jobs are skipped
- automatic_recovery off: recoverable failures fail instead of retrying
"""

import logging
from dataclasses import replace
from typing import Any, Optional

from cloudrelay.auth.coordinator import RefreshFn, TokenRefreshCoordinator
from cloudrelay.auth.models import RefreshResult, RefreshStatus
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.health.tracker import HealthTracker
from cloudrelay.jobs.base import JobOutcome
from cloudrelay.resilience.recovery import RecoveryResult, RecoveryStrategy
from cloudrelay.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)

JOB_NAME = "token_refresh"


class RefreshTokenJob:
    """
    One execution of a (possibly retried) token refresh.

    Args:
        user_id: Token owner
        provider: Provider key
        coordinator: Refresh coordinator
        retry_policy: Policy for the refresh taxonomy (default: coordinator's)
        health: Tracker updated with the outcome
        attempt: 1-based execution number
        ip_address: Requesting IP for rate limiting
        background: True for scheduled maintenance refreshes (respects the
                    failure cool-down)
    """

    def __init__(
        self,
        user_id: Any,
        provider: str,
        coordinator: TokenRefreshCoordinator,
        retry_policy: Optional[RetryPolicy] = None,
        health: Optional[HealthTracker] = None,
        attempt: int = 1,
        ip_address: Optional[str] = None,
        background: bool = False,
    ):
        self.user_id = str(user_id)
        self.provider = provider
        self.coordinator = coordinator
        self.retry_policy = retry_policy or coordinator.retry_policy
        self.features = coordinator.config.features
        self.health = health
        self.attempt = max(1, int(attempt))
        self.ip_address = ip_address
        self.background = background

    def run(self, refresh_fn: RefreshFn, force: bool = False) -> JobOutcome:
        if self.background and not self.features.background_maintenance:
            logger.debug(
                "Background token maintenance disabled, skipping refresh",
                extra={"user_id": self.user_id, "provider": self.provider},
            )
            return JobOutcome.skipped(self.attempt).recorded(JOB_NAME)

        result = self.coordinator.refresh(
            self.user_id,
            self.provider,
            refresh_fn,
            ip_address=self.ip_address,
            force=force,
            background=self.background,
        )
        outcome = self._outcome_for(result)
        return replace(outcome, recovery=self._recovery_for(result)).recorded(JOB_NAME)

    def _outcome_for(self, result: RefreshResult) -> JobOutcome:
        if result.is_successful:
            if result.status == RefreshStatus.SUCCESS and self.health is not None:
                self.health.record_auth_success(result.token.expires_at)
            return JobOutcome.completed(self.attempt, result=result)

        error_type = result.error_type or TokenRefreshErrorType.UNKNOWN_ERROR
        if self.health is not None and result.status != RefreshStatus.RATE_LIMITED:
            self.health.record_failure(error_type, result.message)

        decision = self.retry_policy.decide(error_type, self.attempt)
        if decision.should_retry and self.features.automatic_recovery:
            logger.info(
                "Token refresh will be retried",
                extra={
                    "user_id": self.user_id,
                    "provider": self.provider,
                    "error_type": error_type.value,
                    "attempt": self.attempt,
                    "max_attempts": decision.max_attempts,
                    "delay_seconds": decision.delay_seconds,
                },
            )
            return JobOutcome.retry(
                self.attempt,
                decision.delay_seconds,
                error_type,
                recovery_strategy=RecoveryStrategy.TOKEN_REFRESH,
            )

        strategy = (
            RecoveryStrategy.USER_INTERVENTION_REQUIRED
            if error_type.requires_user_intervention
            else RecoveryStrategy.UNKNOWN
        )
        logger.error(
            "Token refresh failed permanently",
            extra={
                "user_id": self.user_id,
                "provider": self.provider,
                "error_type": error_type.value,
                "attempt": self.attempt,
                "severity": error_type.severity.value,
            },
        )
        return JobOutcome.failed(
            self.attempt,
            error_type,
            error_type.notification_message,
            notify_user=True,
            recovery_strategy=strategy,
        )

    def _recovery_for(self, result: RefreshResult) -> RecoveryResult:
        details = {"attempt": self.attempt, "refresh_result": result.status.value}
        if result.is_successful:
            return RecoveryResult.succeeded(
                RecoveryStrategy.TOKEN_REFRESH, result.message or "Token refreshed", **details
            )
        return RecoveryResult.failed(
            RecoveryStrategy.TOKEN_REFRESH,
            result.message or "Token refresh failed",
            error_type=result.error_type,
            **details,
        )


__all__ = ["RefreshTokenJob"]
