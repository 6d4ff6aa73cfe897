"""
Refresh-specific error taxonomy.

Token refresh failures escalate faster than generic cloud failures: a dead
refresh token is never retried and the user is told immediately, while a
quota error waits a full hour. Callers on the refresh path always use
TokenRefreshErrorType, never ErrorType.

Retry economics per type (owned by resilience.retry.RetryPolicy and its
RetrySettings; the defaults are):
    network_timeout        5 attempts, 1s doubling to 16s
    invalid_refresh_token  no retry, notify immediately
    expired_refresh_token  no retry, notify immediately
    api_quota_exceeded     3 attempts, 3600s each
    service_unavailable    3 attempts, 60s * attempt capped at 300s
    unknown_error          no retry
"""

from dataclasses import dataclass
from enum import Enum

from cloudrelay.errors.taxonomy import Severity


class TokenRefreshErrorType(Enum):
    """Classified failure of an OAuth token refresh."""

    NETWORK_TIMEOUT = "network_timeout"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    EXPIRED_REFRESH_TOKEN = "expired_refresh_token"
    API_QUOTA_EXCEEDED = "api_quota_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNKNOWN_ERROR = "unknown_error"

    @property
    def is_recoverable(self) -> bool:
        return REFRESH_ERROR_POLICIES[self].recoverable

    @property
    def max_retry_attempts(self) -> int:
        """Retries allowed under the default retry settings."""
        return _default_policy().max_attempts(self)

    def retry_delay(self, attempt: int, policy=None) -> float:
        """Seconds to wait before the given 1-based attempt."""
        return (policy or _default_policy()).retry_delay(self, attempt)

    @property
    def requires_user_intervention(self) -> bool:
        return REFRESH_ERROR_POLICIES[self].user_intervention

    @property
    def should_notify_immediately(self) -> bool:
        return REFRESH_ERROR_POLICIES[self].notify_immediately

    @property
    def severity(self) -> Severity:
        return REFRESH_ERROR_POLICIES[self].severity

    @property
    def description(self) -> str:
        return REFRESH_ERROR_POLICIES[self].description

    @property
    def notification_message(self) -> str:
        return REFRESH_ERROR_POLICIES[self].notification_message


@dataclass(frozen=True)
class RefreshErrorPolicy:
    recoverable: bool
    user_intervention: bool
    notify_immediately: bool
    severity: Severity
    description: str
    notification_message: str


REFRESH_ERROR_POLICIES: dict[TokenRefreshErrorType, RefreshErrorPolicy] = {
    TokenRefreshErrorType.NETWORK_TIMEOUT: RefreshErrorPolicy(
        recoverable=True,
        user_intervention=False,
        notify_immediately=False,
        severity=Severity.LOW,
        description="Network timeout during token refresh",
        notification_message=(
            "We're having trouble connecting to your cloud storage. "
            "We'll keep trying automatically."
        ),
    ),
    TokenRefreshErrorType.INVALID_REFRESH_TOKEN: RefreshErrorPolicy(
        recoverable=False,
        user_intervention=True,
        notify_immediately=True,
        severity=Severity.CRITICAL,
        description="Invalid refresh token - user needs to reconnect",
        notification_message=(
            "Your cloud storage connection is no longer valid. "
            "Please reconnect your account."
        ),
    ),
    TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN: RefreshErrorPolicy(
        recoverable=False,
        user_intervention=True,
        notify_immediately=True,
        severity=Severity.CRITICAL,
        description="Refresh token expired - user needs to reconnect",
        notification_message=(
            "Your cloud storage connection has expired. "
            "Please reconnect your account to continue uploading."
        ),
    ),
    TokenRefreshErrorType.API_QUOTA_EXCEEDED: RefreshErrorPolicy(
        recoverable=True,
        user_intervention=False,
        notify_immediately=False,
        severity=Severity.MEDIUM,
        description="API quota exceeded - will retry later",
        notification_message=(
            "Your cloud storage provider is limiting requests. "
            "We'll retry automatically in about an hour."
        ),
    ),
    TokenRefreshErrorType.SERVICE_UNAVAILABLE: RefreshErrorPolicy(
        recoverable=True,
        user_intervention=False,
        notify_immediately=False,
        severity=Severity.LOW,
        description="Service temporarily unavailable",
        notification_message=(
            "Your cloud storage provider is temporarily unavailable. "
            "We'll retry automatically."
        ),
    ),
    TokenRefreshErrorType.UNKNOWN_ERROR: RefreshErrorPolicy(
        recoverable=False,
        user_intervention=False,
        notify_immediately=False,
        severity=Severity.HIGH,
        description="Unknown error during token refresh",
        notification_message=(
            "An unexpected error occurred while refreshing your cloud storage "
            "connection. Please contact support if this keeps happening."
        ),
    ),
}


def _default_policy():
    # Imported late: resilience.retry depends on this module
    from cloudrelay.resilience.retry import DEFAULT_RETRY_POLICY

    return DEFAULT_RETRY_POLICY


_missing = set(TokenRefreshErrorType) - set(REFRESH_ERROR_POLICIES)
if _missing:
    raise RuntimeError(
        f"REFRESH_ERROR_POLICIES is missing entries for: {sorted(e.name for e in _missing)}"
    )
del _missing


__all__ = [
    "REFRESH_ERROR_POLICIES",
    "RefreshErrorPolicy",
    "TokenRefreshErrorType",
]
