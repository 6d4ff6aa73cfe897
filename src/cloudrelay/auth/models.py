"""
Token and audit data models.

TokenRecord is the persisted credential set for one user's provider
connection. NewTokenData validates what a provider returns from a refresh.
AuditEvent is the stable {event, data, timestamp} schema handed to audit
sinks.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from cloudrelay.errors.refresh_errors import TokenRefreshErrorType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TokenRecord:
    """
    Persisted OAuth credentials for one (user, provider) connection.

    Only TokenSecurityCoordinator changes the security-relevant fields
    (tokens, expiry, failure count, last refresh), and always as a whole.
    Token values are excluded from repr.
    """

    record_id: str
    user_id: str
    provider: str
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    refresh_failure_count: int = 0
    last_successful_refresh_at: Optional[datetime] = None
    last_refresh_attempt_at: Optional[datetime] = None

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())

    def is_expiring_soon(self, within: timedelta, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow()) + within


class NewTokenData(BaseModel):
    """
    Token payload returned by a provider refresh.

    Example:
        >>> data = NewTokenData(access_token="ya29.a0...", expires_in=3599)
        >>> data.refresh_token is None   # provider kept the old one
        True
    """

    access_token: str = Field(..., min_length=1, description="New access token")
    refresh_token: Optional[str] = Field(
        default=None, description="New refresh token, if the provider rotated it"
    )
    expires_in: int = Field(default=3600, ge=0, description="Access token lifetime in seconds")

    @field_validator("access_token")
    @classmethod
    def validate_access_token(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("access_token cannot be empty or whitespace")
        return v.strip()


class AuditData(BaseModel):
    """Payload of an audit event. user_id and timestamp are always present."""

    user_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("error_code", mode="before")
    @classmethod
    def coerce_error_code(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class AuditEvent(BaseModel):
    """Security audit event: {event, data, timestamp}."""

    event: str = Field(..., min_length=1)
    data: AuditData
    timestamp: datetime = Field(default_factory=_utcnow)


class RefreshStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ALREADY_VALID = "already_valid"
    REFRESHED_BY_ANOTHER_PROCESS = "refreshed_by_another_process"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of a coordinated token refresh."""

    status: RefreshStatus
    message: str
    token: Optional[TokenRecord] = None
    error_type: Optional[TokenRefreshErrorType] = None

    @property
    def is_successful(self) -> bool:
        return self.status in (
            RefreshStatus.SUCCESS,
            RefreshStatus.ALREADY_VALID,
            RefreshStatus.REFRESHED_BY_ANOTHER_PROCESS,
        )

    @property
    def was_refreshed(self) -> bool:
        return self.status == RefreshStatus.SUCCESS

    @classmethod
    def success(cls, token: TokenRecord, message: str = "Token refreshed successfully") -> "RefreshResult":
        return cls(RefreshStatus.SUCCESS, message, token=token)

    @classmethod
    def already_valid(cls, token: TokenRecord, message: str = "Token is already valid") -> "RefreshResult":
        return cls(RefreshStatus.ALREADY_VALID, message, token=token)

    @classmethod
    def refreshed_by_another_process(
        cls, token: TokenRecord, message: str = "Token was refreshed by another process"
    ) -> "RefreshResult":
        return cls(RefreshStatus.REFRESHED_BY_ANOTHER_PROCESS, message, token=token)

    @classmethod
    def failure(cls, error_type: TokenRefreshErrorType, message: str) -> "RefreshResult":
        return cls(RefreshStatus.FAILURE, message, error_type=error_type)

    @classmethod
    def rate_limited(cls, message: str) -> "RefreshResult":
        return cls(
            RefreshStatus.RATE_LIMITED,
            message,
            error_type=TokenRefreshErrorType.API_QUOTA_EXCEEDED,
        )


__all__ = [
    "AuditData",
    "AuditEvent",
    "NewTokenData",
    "RefreshResult",
    "RefreshStatus",
    "TokenRecord",
]
