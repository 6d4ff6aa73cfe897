"""
Coordinated token refresh.

Serializes refreshes per (user, provider) so concurrent jobs do not race to
spend the same refresh token, and runs every refresh through the security
coordinator (rate limits first, then rotation and audit).

Flow inside the lock:
1. user rate limit, then IP rate limit (blocked -> audit, no provider call)
2. load token (missing -> INVALID_REFRESH_TOKEN)
3. token not expiring within the proactive window (the background window
   for maintenance refreshes, zero when proactive refresh is off) -> already
   valid, or refreshed by another process if its last refresh happened after
   this call started
4. record attempt, call the provider, rotate, reset the user counter
5. on failure: classify into the refresh taxonomy, bump the failure count,
   audit; dead refresh tokens also audit a user intervention

Every refresh is reported to the RefreshMonitor (metrics, aggregates).

Usage:
    coordinator = TokenRefreshCoordinator(repository, security, config)
    result = coordinator.refresh(user_id, "google-drive", provider_refresh)
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Union

from cloudrelay.auth.models import NewTokenData, RefreshResult, TokenRecord
from cloudrelay.auth.refresh_monitor import RefreshMonitor
from cloudrelay.auth.repository import token_record_id
from cloudrelay.auth.token_security import EVENT_RATE_LIMITED, TokenSecurityCoordinator
from cloudrelay.config.config import ReliabilityConfig
from cloudrelay.errors.classifiers import classify_refresh_error
from cloudrelay.errors.exceptions import TokenRotationError
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.logging.context_managers import LogContext
from cloudrelay.logging.utilities import log_exception
from cloudrelay.resilience.retry import RetryPolicy
from cloudrelay.types import Clock, TokenRepository

logger = logging.getLogger(__name__)

RefreshFn = Callable[[TokenRecord], Union[NewTokenData, Mapping[str, Any]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRefreshCoordinator:
    """
    In-process coordination of token refreshes.

    Args:
        repository: Token persistence
        security: Rate limiting / rotation / audit coordinator
        config: Feature flags, timing (proactive windows, lock wait) and
                retry settings
        clock: UTC time source, injectable for tests
        monitor: Refresh metrics collector (default: one per coordinator)
    """

    def __init__(
        self,
        repository: TokenRepository,
        security: TokenSecurityCoordinator,
        config: Optional[ReliabilityConfig] = None,
        clock: Clock = _utcnow,
        monitor: Optional[RefreshMonitor] = None,
    ):
        self.repository = repository
        self.security = security
        self.config = config or ReliabilityConfig()
        self.monitor = monitor or RefreshMonitor(
            enhanced_logging=self.config.features.enhanced_logging
        )
        self.retry_policy = RetryPolicy(self.config.retry)
        self._clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def lock_key(user_id: Any, provider: str) -> str:
        return f"token_refresh_{user_id}_{provider}"

    def proactive_window(self, background: bool = False) -> timedelta:
        """How far ahead of expiry a token is considered due for refresh."""
        if not self.config.features.proactive_refresh:
            return timedelta(0)
        timing = self.config.timing
        minutes = timing.background_refresh_minutes if background else timing.proactive_refresh_minutes
        return timedelta(minutes=minutes)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def refresh(
        self,
        user_id: Any,
        provider: str,
        refresh_fn: RefreshFn,
        ip_address: Optional[str] = None,
        force: bool = False,
        background: bool = False,
    ) -> RefreshResult:
        """
        Refresh the user's token for provider if it needs it.

        Args:
            user_id: Token owner
            provider: Provider key
            refresh_fn: Calls the provider with the current record and
                        returns the new token data; raises on failure
            ip_address: Requesting IP for the IP rate limit
            force: Refresh even if the token is not expiring soon (e.g. the
                   provider rejected a token we believed valid)
            background: Scheduled maintenance refresh; uses the background
                        proactive window and skips the refresh while the
                        record is cooling down after consecutive failures

        Returns:
            RefreshResult; never raises for provider failures
        """
        user_id = str(user_id)
        operation_id = f"refresh_{uuid.uuid4().hex[:12]}"
        started_at = self._clock()
        key = self.lock_key(user_id, provider)
        start_time = time.perf_counter()

        with LogContext(user_id=user_id, provider=provider, operation="token_refresh", job_id=operation_id):
            self.monitor.record_start(user_id, provider, operation_id)
            lock = self._lock_for(key)
            wait = self.config.timing.coordination_lock_wait_seconds
            if lock.acquire(timeout=wait):
                try:
                    result = self._refresh_locked(
                        user_id, provider, refresh_fn, ip_address, force, background, started_at
                    )
                finally:
                    lock.release()
            else:
                logger.warning(
                    "Token refresh lock timeout",
                    extra={"user_id": user_id, "provider": provider, "delay_seconds": wait},
                )
                result = RefreshResult.failure(
                    TokenRefreshErrorType.UNKNOWN_ERROR,
                    "Token refresh operation timed out waiting for lock",
                )

            self.monitor.record_result(
                user_id, provider, operation_id, result, time.perf_counter() - start_time
            )
            logger.info(
                "Token refresh coordination finished",
                extra={
                    "user_id": user_id,
                    "provider": provider,
                    "refresh_result": result.status.value,
                    "error_type": result.error_type.value if result.error_type else None,
                },
            )
            return result

    def _refresh_locked(
        self,
        user_id: str,
        provider: str,
        refresh_fn: RefreshFn,
        ip_address: Optional[str],
        force: bool,
        background: bool,
        started_at: datetime,
    ) -> RefreshResult:
        context = {"provider": provider, "ip_address": ip_address}

        if not self.security.check_user_rate_limit(user_id):
            message = "User rate limit exceeded for token refresh"
            self.security.audit_refresh_failure(
                user_id, message, {**context, "reason": "rate_limit_exceeded"}
            )
            self.security.log_authentication_event(EVENT_RATE_LIMITED, user_id, {**context, "scope": "user"})
            return RefreshResult.rate_limited(message)

        if not self.security.check_ip_rate_limit(ip_address):
            message = "IP rate limit exceeded for token refresh"
            self.security.audit_refresh_failure(
                user_id, message, {**context, "reason": "ip_rate_limit_exceeded"}
            )
            self.security.log_authentication_event(EVENT_RATE_LIMITED, user_id, {**context, "scope": "ip"})
            return RefreshResult.rate_limited(message)

        record = self.repository.load(token_record_id(user_id, provider))
        if record is None or not record.has_refresh_token:
            logger.warning("No refresh token found for user", extra={"user_id": user_id, "provider": provider})
            return RefreshResult.failure(
                TokenRefreshErrorType.INVALID_REFRESH_TOKEN, "No authentication token found"
            )

        now = self._clock()
        proactive = self.proactive_window(background)
        if not force and not record.is_expiring_soon(proactive, now):
            if record.last_successful_refresh_at and record.last_successful_refresh_at >= started_at:
                return RefreshResult.refreshed_by_another_process(record)
            return RefreshResult.already_valid(record)

        if background and record.refresh_failure_count > 0 and record.last_refresh_attempt_at:
            backoff = self.retry_policy.refresh_backoff_seconds(record.refresh_failure_count)
            retry_at = record.last_refresh_attempt_at + timedelta(seconds=backoff)
            if now < retry_at:
                return RefreshResult.failure(
                    TokenRefreshErrorType.SERVICE_UNAVAILABLE,
                    f"Refresh backing off until {retry_at.isoformat()}",
                )

        self.security.record_refresh_attempt(user_id, ip_address)

        try:
            new_token_data = refresh_fn(record)
            rotated = self.security.rotate_token_on_refresh(record, new_token_data)
        except TokenRotationError as e:
            return self._handle_failure(record, e, TokenRefreshErrorType.UNKNOWN_ERROR, context)
        except Exception as e:
            return self._handle_failure(record, e, classify_refresh_error(e), context)

        self.security.reset_user_rate_limit(user_id)
        return RefreshResult.success(rotated)

    def _handle_failure(
        self,
        record: TokenRecord,
        error: Exception,
        error_type: TokenRefreshErrorType,
        context: dict[str, Any],
    ) -> RefreshResult:
        log_exception(
            logger,
            error,
            "Token refresh failed",
            level=logging.WARNING,
            include_traceback=False,
            user_id=record.user_id,
            provider=record.provider,
            error_type=error_type.value,
        )

        failed = replace(
            record,
            refresh_failure_count=record.refresh_failure_count + 1,
            last_refresh_attempt_at=self._clock(),
        )
        try:
            self.repository.save(failed)
        except Exception as save_error:
            log_exception(
                logger,
                save_error,
                "Failed to record token refresh failure",
                user_id=record.user_id,
                provider=record.provider,
            )

        self.security.audit_refresh_failure(
            record.user_id,
            error,
            {
                **context,
                "error_type": error_type.value,
                "refresh_failure_count": failed.refresh_failure_count,
            },
        )
        if error_type.requires_user_intervention:
            self.security.audit_user_intervention(
                record.user_id,
                "reconnect_provider",
                {"provider": record.provider, "error_type": error_type.value},
            )

        return RefreshResult.failure(error_type, error_type.description)


__all__ = ["RefreshFn", "TokenRefreshCoordinator"]
