"""
Tests for upload and token refresh jobs.

Jobs never sleep; they return the delay and the scheduler re-enqueues
with attempt + 1.
"""

from datetime import timedelta

import pytest

from cloudrelay.auth.coordinator import TokenRefreshCoordinator
from cloudrelay.auth.models import RefreshStatus
from cloudrelay.config.config import FeatureFlags, ReliabilityConfig
from cloudrelay.errors.exceptions import ProviderError
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType
from cloudrelay.health.status import HealthState
from cloudrelay.health.tracker import HealthTracker
from cloudrelay.jobs import JobOutcome, JobStatus, RefreshTokenJob, UploadJob
from cloudrelay.metrics import REGISTRY
from cloudrelay.resilience.recovery import RecoveryStrategy

NEW_TOKEN = {"access_token": "access-new", "refresh_token": "refresh-new", "expires_in": 3600}


@pytest.fixture
def health(clock):
    tracker = HealthTracker("google-drive", user_id="42", clock=clock)
    tracker.record_auth_success(clock() + timedelta(minutes=5))
    return tracker


def failing(error):
    def _raise(*args, **kwargs):
        raise error

    return _raise


class TestJobOutcome:
    def test_retry_outcome(self):
        outcome = JobOutcome.retry(2, 4.0, ErrorType.NETWORK_ERROR)
        assert outcome.should_reschedule
        assert outcome.next_attempt == 3
        assert not outcome.notify_user

    def test_failed_outcome(self):
        outcome = JobOutcome.failed(1, ErrorType.STORAGE_QUOTA_EXCEEDED, "full")
        assert outcome.status == JobStatus.FAILED
        assert outcome.notify_user
        assert not outcome.should_reschedule


class TestUploadJob:
    def test_success(self, health):
        outcome = UploadJob("42", "google-drive", health=health).run(lambda: "file-id")
        assert outcome.status == JobStatus.COMPLETED
        assert outcome.result == "file-id"
        assert health.current().consecutive_failures == 0

    def test_network_error_is_rescheduled(self, health):
        job = UploadJob("42", "google-drive", health=health, attempt=1)
        outcome = job.run(failing(ConnectionError("Connection reset by peer")))

        assert outcome.status == JobStatus.RETRY
        assert outcome.delay_seconds == 1.0
        assert outcome.next_attempt == 2
        assert outcome.error_type == ErrorType.NETWORK_ERROR
        assert outcome.recovery_strategy == RecoveryStrategy.NETWORK_RETRY
        assert health.current().consecutive_failures == 1

    def test_backoff_grows_with_attempt(self):
        job = UploadJob("42", "google-drive", attempt=4)
        outcome = job.run(failing(ConnectionError("Connection reset by peer")))
        assert outcome.delay_seconds == 8.0

    def test_exhausted_retries_fail_and_notify(self):
        job = UploadJob("42", "google-drive", attempt=6, provider_name="Google Drive")
        outcome = job.run(failing(ConnectionError("Connection reset by peer")))

        assert outcome.status == JobStatus.FAILED
        assert outcome.notify_user
        assert "Google Drive" in outcome.user_message

    def test_user_intervention_fails_immediately(self, health):
        job = UploadJob("42", "google-drive", health=health, provider_name="Google Drive")
        error = ProviderError("Storage quota exceeded", status_code=403, reason="storageQuotaExceeded")

        outcome = job.run(failing(error))

        assert outcome.status == JobStatus.FAILED
        assert outcome.error_type == ErrorType.STORAGE_QUOTA_EXCEEDED
        assert outcome.recovery_strategy == RecoveryStrategy.USER_INTERVENTION_REQUIRED
        assert outcome.notify_user
        assert "Google Drive" in outcome.user_message

    def test_expired_token_asks_for_refresh(self):
        job = UploadJob("42", "google-drive")
        outcome = job.run(failing(ProviderError("Request had invalid authentication", status_code=401)))

        assert outcome.status == JobStatus.RETRY
        assert outcome.delay_seconds == 0.0
        assert outcome.recovery_strategy == RecoveryStrategy.TOKEN_REFRESH

    def test_expired_token_without_refresh_token_needs_user(self):
        job = UploadJob("42", "google-drive", has_valid_refresh_token=False)
        outcome = job.run(failing(ProviderError("Request had invalid authentication", status_code=401)))

        assert outcome.status == JobStatus.FAILED
        assert outcome.recovery_strategy == RecoveryStrategy.USER_INTERVENTION_REQUIRED

    def test_provider_retry_after_is_honoured(self):
        job = UploadJob("42", "amazon-s3")
        error = ProviderError("Slow down", status_code=503, error_code="SlowDown", retry_after=7200)
        outcome = job.run(failing(error))

        assert outcome.error_type == ErrorType.API_QUOTA_EXCEEDED
        assert outcome.delay_seconds == 7200.0

    def test_repeated_failures_mark_connection_unhealthy(self, health):
        for attempt in range(1, 6):
            UploadJob("42", "google-drive", health=health, attempt=attempt).run(
                failing(TimeoutError("timed out"))
            )
        assert health.current().status == HealthState.UNHEALTHY

    @pytest.mark.asyncio
    async def test_run_async_success(self, health):
        async def upload():
            return "file-id"

        outcome = await UploadJob("42", "google-drive", health=health).run_async(upload)
        assert outcome.status == JobStatus.COMPLETED
        assert outcome.result == "file-id"

    @pytest.mark.asyncio
    async def test_run_async_failure(self):
        async def upload():
            raise ProviderError("Backend Error", status_code=503)

        outcome = await UploadJob("42", "google-drive", attempt=2).run_async(upload)
        assert outcome.status == JobStatus.RETRY
        assert outcome.error_type == ErrorType.SERVICE_UNAVAILABLE
        assert outcome.delay_seconds == 120.0


class TestRefreshTokenJob:
    def test_success_reconnects_health(self, coordinator, repository, make_token, clock):
        repository.save(make_token())
        health = HealthTracker("google-drive", user_id="42", clock=clock)

        outcome = RefreshTokenJob("42", "google-drive", coordinator, health=health).run(lambda r: NEW_TOKEN)

        assert outcome.status == JobStatus.COMPLETED
        assert outcome.result.status == RefreshStatus.SUCCESS
        assert health.current().is_healthy()
        assert health.current().token_expires_at == clock() + timedelta(hours=1)

    def test_already_valid_does_not_touch_health(self, coordinator, repository, make_token, clock):
        repository.save(make_token(expires_in=timedelta(hours=2)))
        health = HealthTracker("google-drive", clock=clock)

        outcome = RefreshTokenJob("42", "google-drive", coordinator, health=health).run(lambda r: NEW_TOKEN)

        assert outcome.status == JobStatus.COMPLETED
        assert outcome.result.status == RefreshStatus.ALREADY_VALID
        assert health.current().is_disconnected()

    def test_network_timeout_is_rescheduled(self, coordinator, repository, make_token, health):
        repository.save(make_token())
        job = RefreshTokenJob("42", "google-drive", coordinator, health=health, attempt=2)

        outcome = job.run(failing(ConnectionError("Connection reset")))

        assert outcome.status == JobStatus.RETRY
        assert outcome.error_type == TokenRefreshErrorType.NETWORK_TIMEOUT
        assert outcome.delay_seconds == 2.0
        assert outcome.recovery_strategy == RecoveryStrategy.TOKEN_REFRESH
        assert health.current().consecutive_failures == 1

    def test_network_timeout_exhausted(self, coordinator, repository, make_token):
        repository.save(make_token())
        job = RefreshTokenJob("42", "google-drive", coordinator, attempt=6)

        outcome = job.run(failing(ConnectionError("Connection reset")))

        assert outcome.status == JobStatus.FAILED
        assert outcome.notify_user
        assert outcome.user_message == TokenRefreshErrorType.NETWORK_TIMEOUT.notification_message

    def test_revoked_token_disconnects_and_notifies(self, coordinator, repository, make_token, health):
        repository.save(make_token())
        job = RefreshTokenJob("42", "google-drive", coordinator, health=health)

        outcome = job.run(failing(ProviderError("invalid_grant")))

        assert outcome.status == JobStatus.FAILED
        assert outcome.error_type == TokenRefreshErrorType.INVALID_REFRESH_TOKEN
        assert outcome.recovery_strategy == RecoveryStrategy.USER_INTERVENTION_REQUIRED
        assert outcome.notify_user
        assert health.current().is_disconnected()

    def test_rate_limited_waits_for_window(self, coordinator, repository, security, make_token, health):
        repository.save(make_token())
        for _ in range(5):
            security.record_refresh_attempt("42")
        job = RefreshTokenJob("42", "google-drive", coordinator, health=health)

        outcome = job.run(lambda r: NEW_TOKEN)

        assert outcome.status == JobStatus.RETRY
        assert outcome.error_type == TokenRefreshErrorType.API_QUOTA_EXCEEDED
        assert outcome.delay_seconds == 3600.0
        assert health.current().consecutive_failures == 0

    def test_background_job_honours_cool_down(self, coordinator, repository, make_token, clock):
        token = make_token(refresh_failure_count=3)
        token.last_refresh_attempt_at = clock()
        repository.save(token)
        calls = []

        def provider(record):
            calls.append(record)
            return NEW_TOKEN

        outcome = RefreshTokenJob("42", "google-drive", coordinator, background=True).run(provider)

        assert outcome.status == JobStatus.RETRY
        assert outcome.error_type == TokenRefreshErrorType.SERVICE_UNAVAILABLE
        assert calls == []

    def test_success_carries_recovery_result(self, coordinator, repository, make_token):
        repository.save(make_token())

        outcome = RefreshTokenJob("42", "google-drive", coordinator).run(lambda r: NEW_TOKEN)

        assert outcome.recovery.success
        assert outcome.recovery.strategy == RecoveryStrategy.TOKEN_REFRESH
        assert outcome.recovery.details["refresh_result"] == "success"

    def test_failure_carries_recovery_result(self, coordinator, repository, make_token):
        repository.save(make_token())

        outcome = RefreshTokenJob("42", "google-drive", coordinator, attempt=3).run(
            failing(ProviderError("invalid_grant"))
        )

        assert not outcome.recovery.success
        assert outcome.recovery.strategy == RecoveryStrategy.TOKEN_REFRESH
        assert outcome.recovery.error_type == TokenRefreshErrorType.INVALID_REFRESH_TOKEN
        assert outcome.recovery.details["attempt"] == 3


def coordinator_with(repository, security, clock, **features):
    config = ReliabilityConfig(features=FeatureFlags(**features))
    return TokenRefreshCoordinator(repository, security, config=config, clock=clock)


class TestFeatureFlags:
    def test_upload_without_automatic_recovery_fails_at_once(self):
        job = UploadJob("42", "google-drive", features=FeatureFlags(automatic_recovery=False))
        outcome = job.run(failing(ConnectionError("Connection reset by peer")))

        assert outcome.status == JobStatus.FAILED
        assert outcome.error_type == ErrorType.NETWORK_ERROR
        assert outcome.notify_user

    def test_refresh_without_automatic_recovery_fails_at_once(self, repository, security, clock, make_token):
        repository.save(make_token())
        coordinator = coordinator_with(repository, security, clock, automatic_recovery=False)

        outcome = RefreshTokenJob("42", "google-drive", coordinator).run(failing(ConnectionError("reset")))

        assert outcome.status == JobStatus.FAILED
        assert outcome.error_type == TokenRefreshErrorType.NETWORK_TIMEOUT
        assert outcome.recovery_strategy == RecoveryStrategy.UNKNOWN

    def test_background_job_skipped_when_maintenance_disabled(self, repository, security, clock, make_token):
        repository.save(make_token())
        coordinator = coordinator_with(repository, security, clock, background_maintenance=False)
        calls = []

        def provider(record):
            calls.append(record)
            return NEW_TOKEN

        outcome = RefreshTokenJob("42", "google-drive", coordinator, background=True).run(provider)

        assert outcome.status == JobStatus.SKIPPED
        assert outcome.recovery is None
        assert not outcome.should_reschedule
        assert calls == []

    def test_interactive_job_runs_when_maintenance_disabled(self, repository, security, clock, make_token):
        repository.save(make_token())
        coordinator = coordinator_with(repository, security, clock, background_maintenance=False)

        outcome = RefreshTokenJob("42", "google-drive", coordinator).run(lambda r: NEW_TOKEN)

        assert outcome.status == JobStatus.COMPLETED
        assert outcome.result.status == RefreshStatus.SUCCESS


class TestRetryAfterHints:
    def test_string_retry_after_is_coerced(self):
        job = UploadJob("42", "amazon-s3")
        error = ProviderError("Slow down", status_code=503, error_code="SlowDown", retry_after="120")

        outcome = job.run(failing(error))

        assert outcome.status == JobStatus.RETRY
        assert outcome.error_type == ErrorType.API_QUOTA_EXCEEDED
        assert outcome.delay_seconds == 3600.0

    def test_string_hint_longer_than_policy_delay_wins(self):
        job = UploadJob("42", "google-drive")
        error = ProviderError("Backend Error", status_code=503, retry_after="900")

        outcome = job.run(failing(error))

        assert outcome.error_type == ErrorType.SERVICE_UNAVAILABLE
        assert outcome.delay_seconds == 900.0

    def test_unparseable_retry_after_attribute_is_ignored(self):
        class OddError(ConnectionError):
            retry_after = object()

        outcome = UploadJob("42", "google-drive").run(failing(OddError("Connection reset by peer")))

        assert outcome.status == JobStatus.RETRY
        assert outcome.delay_seconds == 1.0


class TestJobMetrics:
    @staticmethod
    def count(job, status):
        return REGISTRY.get_sample_value("cloudrelay_job_outcomes_total", {"job": job, "status": status}) or 0.0

    def test_upload_outcomes_are_counted(self):
        completed = self.count("upload", "completed")
        retried = self.count("upload", "retry")

        UploadJob("42", "google-drive").run(lambda: "file-id")
        UploadJob("42", "google-drive").run(failing(ConnectionError("Connection reset by peer")))

        assert self.count("upload", "completed") == completed + 1
        assert self.count("upload", "retry") == retried + 1

    def test_skipped_refresh_is_counted(self, repository, security, clock):
        coordinator = coordinator_with(repository, security, clock, background_maintenance=False)
        before = self.count("token_refresh", "skipped")

        RefreshTokenJob("42", "google-drive", coordinator, background=True).run(lambda r: NEW_TOKEN)

        assert self.count("token_refresh", "skipped") == before + 1
