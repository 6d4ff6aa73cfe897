"""
Health transitions for a single provider connection.

HealthTracker owns the current CloudStorageHealthStatus for one
(user, provider) pair and applies the transition rules after every
operation outcome:

- success: failures reset to 0, status healthy
- failure: failures + 1; degraded at degraded_threshold, unhealthy at
  unhealthy_threshold; a dead refresh token disconnects
- disconnect: status disconnected
- disconnected ignores success and failure until record_auth_success()
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from cloudrelay.config.config import HealthSettings, ReliabilityConfig
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType
from cloudrelay.health.status import CloudStorageHealthStatus, HealthState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def status_for_failures(failures: int, settings: HealthSettings) -> HealthState:
    """Health state implied by a consecutive failure count."""
    if failures >= settings.unhealthy_threshold:
        return HealthState.UNHEALTHY
    if failures >= settings.degraded_threshold:
        return HealthState.DEGRADED
    return HealthState.HEALTHY


class HealthTracker:
    """
    Thread-safe holder of one connection's health.

    Args:
        provider: Provider key
        user_id: Connection owner
        settings: Failure thresholds and expiry warning window
        initial: Starting status (default: disconnected until first auth)
        clock: UTC time source, injectable for tests
        monitoring_enabled: When False, operation outcomes leave the status
                            untouched; auth success and disconnect still apply
    """

    def __init__(
        self,
        provider: str,
        user_id: Optional[str] = None,
        settings: Optional[HealthSettings] = None,
        initial: Optional[CloudStorageHealthStatus] = None,
        clock: Callable[[], datetime] = _utcnow,
        monitoring_enabled: bool = True,
    ):
        self.provider = provider
        self.user_id = user_id
        self.settings = settings or HealthSettings()
        self.monitoring_enabled = monitoring_enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._status = initial or CloudStorageHealthStatus.disconnected(
            provider, user_id=user_id, checked_at=clock()
        )

    @classmethod
    def from_config(
        cls,
        config: ReliabilityConfig,
        provider: str,
        user_id: Optional[str] = None,
        **kwargs,
    ) -> "HealthTracker":
        return cls(
            provider,
            user_id=user_id,
            settings=config.health,
            monitoring_enabled=config.features.health_monitoring,
            **kwargs,
        )

    @property
    def expiring_soon_window(self) -> timedelta:
        return timedelta(hours=self.settings.token_expiring_soon_hours)

    def current(self) -> CloudStorageHealthStatus:
        with self._lock:
            return self._status

    def is_token_expiring_soon(self, now: Optional[datetime] = None) -> bool:
        """Expiry check using the configured warning window."""
        return self.current().is_token_expiring_soon(
            within=self.expiring_soon_window, now=now or self._clock()
        )

    def _set(self, new_status: CloudStorageHealthStatus) -> CloudStorageHealthStatus:
        old = self._status
        self._status = new_status
        if old.status != new_status.status:
            level = logging.INFO if new_status.is_healthy() else logging.WARNING
            logger.log(
                level,
                "Connection health changed",
                extra={
                    "provider": self.provider,
                    "user_id": self.user_id,
                    "previous_status": old.status.value,
                    "health_status": new_status.status.value,
                    "consecutive_failures": new_status.consecutive_failures,
                },
            )
        return new_status

    def record_success(self, at: Optional[datetime] = None) -> CloudStorageHealthStatus:
        """Operation succeeded. No effect while disconnected."""
        with self._lock:
            if not self.monitoring_enabled:
                return self._status
            if self._status.is_disconnected():
                logger.debug(
                    "Ignoring success while disconnected",
                    extra={"provider": self.provider, "user_id": self.user_id},
                )
                return self._status
            now = at or self._clock()
            return self._set(
                self._status.with_changes(
                    status=HealthState.HEALTHY,
                    consecutive_failures=0,
                    last_successful_operation_at=now,
                    requires_reconnection=False,
                    checked_at=now,
                )
            )

    def record_failure(
        self,
        error_type: Union[ErrorType, TokenRefreshErrorType, None] = None,
        message: Optional[str] = None,
    ) -> CloudStorageHealthStatus:
        """
        Operation failed. No effect while disconnected.

        A refresh-taxonomy error that requires user intervention (invalid or
        expired refresh token) is terminal and disconnects.
        """
        with self._lock:
            if not self.monitoring_enabled or self._status.is_disconnected():
                return self._status

            now = self._clock()
            failures = self._status.consecutive_failures + 1
            error_value = error_type.value if error_type is not None else None

            if (
                isinstance(error_type, TokenRefreshErrorType)
                and error_type.requires_user_intervention
            ):
                return self._set(
                    self._status.with_changes(
                        status=HealthState.DISCONNECTED,
                        consecutive_failures=failures,
                        last_error_message=message,
                        last_error_type=error_value,
                        requires_reconnection=True,
                        checked_at=now,
                    )
                )

            requires_reconnection = (
                isinstance(error_type, ErrorType) and error_type.requires_reconnection
            )
            return self._set(
                self._status.with_changes(
                    status=status_for_failures(failures, self.settings),
                    consecutive_failures=failures,
                    last_error_message=message,
                    last_error_type=error_value,
                    requires_reconnection=requires_reconnection,
                    checked_at=now,
                )
            )

    def disconnect(self, reason: Optional[str] = None) -> CloudStorageHealthStatus:
        """Explicit disconnect (user action or terminal auth failure)."""
        with self._lock:
            return self._set(
                CloudStorageHealthStatus.disconnected(
                    self.provider,
                    last_error_message=reason,
                    user_id=self.user_id,
                    last_successful_operation_at=self._status.last_successful_operation_at,
                    checked_at=self._clock(),
                )
            )

    def record_auth_success(
        self, token_expires_at: Optional[datetime] = None
    ) -> CloudStorageHealthStatus:
        """Fresh successful auth handshake; the only way out of disconnected."""
        with self._lock:
            now = self._clock()
            return self._set(
                CloudStorageHealthStatus.healthy(
                    self.provider,
                    now,
                    user_id=self.user_id,
                    token_expires_at=token_expires_at or self._status.token_expires_at,
                    checked_at=now,
                )
            )

    def update_token_expiry(self, token_expires_at: Optional[datetime]) -> CloudStorageHealthStatus:
        with self._lock:
            return self._set(self._status.with_changes(token_expires_at=token_expires_at))


__all__ = ["HealthTracker", "status_for_failures"]
