"""
Connection health status value object.

One CloudStorageHealthStatus describes one user's connection to one
provider at a point in time. Instances are immutable: every health check or
operation outcome produces a new status that supersedes the previous one.

Usage:
    status = CloudStorageHealthStatus.healthy("google-drive", last_success)
    status.is_healthy()            # True
    status.status_message          # "Connection is working properly"
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from cloudrelay.config.config import HealthSettings

TOKEN_EXPIRING_SOON = timedelta(hours=HealthSettings.token_expiring_soon_hours)


class HealthState(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    DISCONNECTED = "disconnected"

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self]


STATUS_MESSAGES = {
    HealthState.HEALTHY: "Connection is working properly",
    HealthState.DEGRADED: "Connection has some issues but is functional",
    HealthState.UNHEALTHY: "Connection has significant problems",
    HealthState.DISCONNECTED: "Connection is not established",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CloudStorageHealthStatus:
    """
    Health of one provider connection for one user.

    Attributes:
        provider: Provider key (e.g. "google-drive")
        status: Current health state
        consecutive_failures: Failures since the last success (>= 0)
        last_error_message: Message of the most recent failure
        last_error_type: Value of the most recent classified error type
        last_successful_operation_at: When an operation last succeeded
        token_expires_at: Access token expiry, if known
        requires_reconnection: User has to re-authorize the provider
        user_id: Owner of the connection
        checked_at: When this status was produced
    """

    provider: str
    status: HealthState
    consecutive_failures: int = 0
    last_error_message: Optional[str] = None
    last_error_type: Optional[str] = None
    last_successful_operation_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = None
    requires_reconnection: bool = False
    user_id: Optional[str] = None
    checked_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.consecutive_failures < 0:
            raise ValueError(
                f"consecutive_failures must be >= 0, got {self.consecutive_failures}"
            )

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def healthy(
        cls,
        provider: str,
        last_successful_operation: Optional[datetime] = None,
        **kwargs: Any,
    ) -> "CloudStorageHealthStatus":
        return cls(
            provider=provider,
            status=HealthState.HEALTHY,
            consecutive_failures=0,
            last_successful_operation_at=last_successful_operation or _utcnow(),
            **kwargs,
        )

    @classmethod
    def degraded(
        cls,
        provider: str,
        consecutive_failures: int,
        last_error_message: Optional[str] = None,
        **kwargs: Any,
    ) -> "CloudStorageHealthStatus":
        return cls(
            provider=provider,
            status=HealthState.DEGRADED,
            consecutive_failures=consecutive_failures,
            last_error_message=last_error_message,
            **kwargs,
        )

    @classmethod
    def unhealthy(
        cls,
        provider: str,
        consecutive_failures: int,
        last_error_message: Optional[str] = None,
        **kwargs: Any,
    ) -> "CloudStorageHealthStatus":
        return cls(
            provider=provider,
            status=HealthState.UNHEALTHY,
            consecutive_failures=consecutive_failures,
            last_error_message=last_error_message,
            **kwargs,
        )

    @classmethod
    def disconnected(
        cls,
        provider: str,
        last_error_message: Optional[str] = None,
        **kwargs: Any,
    ) -> "CloudStorageHealthStatus":
        kwargs.setdefault("requires_reconnection", True)
        return cls(
            provider=provider,
            status=HealthState.DISCONNECTED,
            last_error_message=last_error_message,
            **kwargs,
        )

    def with_changes(self, **changes: Any) -> "CloudStorageHealthStatus":
        """Copy with changed fields and a fresh checked_at."""
        changes.setdefault("checked_at", _utcnow())
        return replace(self, **changes)

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_healthy(self) -> bool:
        return self.status == HealthState.HEALTHY

    def is_degraded(self) -> bool:
        return self.status == HealthState.DEGRADED

    def is_unhealthy(self) -> bool:
        return self.status == HealthState.UNHEALTHY

    def is_disconnected(self) -> bool:
        return self.status == HealthState.DISCONNECTED

    def is_token_expired(self, now: Optional[datetime] = None) -> bool:
        if self.token_expires_at is None:
            return False
        return self.token_expires_at <= (now or _utcnow())

    def is_token_expiring_soon(
        self,
        within: timedelta = TOKEN_EXPIRING_SOON,
        now: Optional[datetime] = None,
    ) -> bool:
        """True if the token expires within the window (already expired counts)."""
        if self.token_expires_at is None:
            return False
        return self.token_expires_at <= (now or _utcnow()) + within

    def time_since_last_success(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.last_successful_operation_at is None:
            return None
        return (now or _utcnow()) - self.last_successful_operation_at

    @property
    def status_message(self) -> str:
        return self.status.message

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for dashboards and alerting."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "provider": self.provider,
            "user_id": self.user_id,
            "status": self.status.value,
            "status_message": self.status_message,
            "consecutive_failures": self.consecutive_failures,
            "last_error_message": self.last_error_message,
            "last_error_type": self.last_error_type,
            "last_successful_operation_at": _iso(self.last_successful_operation_at),
            "token_expires_at": _iso(self.token_expires_at),
            "requires_reconnection": self.requires_reconnection,
            "checked_at": _iso(self.checked_at),
        }


__all__ = [
    "CloudStorageHealthStatus",
    "HealthState",
    "STATUS_MESSAGES",
    "TOKEN_EXPIRING_SOON",
]
