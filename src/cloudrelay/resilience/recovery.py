"""
Recovery strategy selection.

Maps a classified ErrorType plus a little context (failure count, whether a
refresh token exists, current health) onto the remedial action to take.
Selection is deterministic and never raises.

Usage:
    strategy = select_strategy(ErrorType.TOKEN_EXPIRED, RecoveryContext())
    strategy.is_automated                    # True
    strategy.expected_recovery_time_seconds  # 5
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType

logger = logging.getLogger(__name__)


class RecoveryStrategy(Enum):
    """Remedial action recommended for a classified error."""

    TOKEN_REFRESH = "token_refresh"
    NETWORK_RETRY = "network_retry"
    QUOTA_WAIT = "quota_wait"
    SERVICE_RETRY = "service_retry"
    HEALTH_CHECK_RETRY = "health_check_retry"
    USER_INTERVENTION_REQUIRED = "user_intervention_required"
    NO_ACTION_NEEDED = "no_action_needed"
    UNKNOWN = "unknown"

    @property
    def priority(self) -> int:
        """1 = act first."""
        return STRATEGY_METADATA[self][0]

    @property
    def expected_recovery_time_seconds(self) -> int:
        """-1 = indefinite/unknown, 0 = immediate."""
        return STRATEGY_METADATA[self][1]

    @property
    def is_automated(self) -> bool:
        return self not in (
            RecoveryStrategy.USER_INTERVENTION_REQUIRED,
            RecoveryStrategy.UNKNOWN,
        )

    @property
    def description(self) -> str:
        return STRATEGY_METADATA[self][2]


# strategy -> (priority, expected recovery seconds, description)
STRATEGY_METADATA: dict[RecoveryStrategy, tuple[int, int, str]] = {
    RecoveryStrategy.TOKEN_REFRESH: (1, 5, "Refresh authentication token"),
    RecoveryStrategy.NETWORK_RETRY: (2, 30, "Retry after network connectivity issue"),
    RecoveryStrategy.SERVICE_RETRY: (3, 300, "Retry after service becomes available"),
    RecoveryStrategy.QUOTA_WAIT: (4, 3600, "Wait for API quota to reset"),
    RecoveryStrategy.HEALTH_CHECK_RETRY: (5, 60, "Retry health check"),
    RecoveryStrategy.USER_INTERVENTION_REQUIRED: (6, -1, "User intervention required"),
    RecoveryStrategy.UNKNOWN: (7, -1, "Unknown recovery strategy"),
    RecoveryStrategy.NO_ACTION_NEEDED: (8, 0, "No action needed"),
}

# Direct error -> strategy table. Types absent here get HEALTH_CHECK_RETRY,
# or USER_INTERVENTION_REQUIRED when the type requires intervention.
ERROR_STRATEGY_MAPPING: dict[ErrorType, RecoveryStrategy] = {
    ErrorType.TOKEN_EXPIRED: RecoveryStrategy.TOKEN_REFRESH,
    ErrorType.INVALID_CREDENTIALS: RecoveryStrategy.TOKEN_REFRESH,
    ErrorType.NETWORK_ERROR: RecoveryStrategy.NETWORK_RETRY,
    ErrorType.TIMEOUT: RecoveryStrategy.NETWORK_RETRY,
    ErrorType.API_QUOTA_EXCEEDED: RecoveryStrategy.QUOTA_WAIT,
    ErrorType.TOKEN_REFRESH_RATE_LIMITED: RecoveryStrategy.QUOTA_WAIT,
    ErrorType.SERVICE_UNAVAILABLE: RecoveryStrategy.SERVICE_RETRY,
    ErrorType.UNKNOWN_ERROR: RecoveryStrategy.UNKNOWN,
}

TOKEN_ERROR_TYPES = frozenset({ErrorType.TOKEN_EXPIRED, ErrorType.INVALID_CREDENTIALS})


@dataclass
class RecoveryContext:
    """
    Inputs beyond the error type that influence strategy selection.

    Attributes:
        consecutive_failures: Failures since the last success
        has_valid_refresh_token: False when no usable refresh token is stored
        is_healthy: True when the connection's current health is healthy
        unhealthy_threshold: Failure count at which a health check is also
                             considered
    """

    consecutive_failures: int = 0
    has_valid_refresh_token: bool = True
    is_healthy: bool = False
    unhealthy_threshold: int = 5


def _candidates(error_type: ErrorType | None, context: RecoveryContext) -> list[RecoveryStrategy]:
    if error_type is None:
        return [RecoveryStrategy.HEALTH_CHECK_RETRY]

    primary = ERROR_STRATEGY_MAPPING.get(error_type)
    if error_type in TOKEN_ERROR_TYPES and not context.has_valid_refresh_token:
        primary = RecoveryStrategy.USER_INTERVENTION_REQUIRED
    elif primary is None:
        primary = (
            RecoveryStrategy.USER_INTERVENTION_REQUIRED
            if error_type.requires_user_intervention
            else RecoveryStrategy.HEALTH_CHECK_RETRY
        )

    candidates = [primary]
    if (
        primary.is_automated
        and context.consecutive_failures >= context.unhealthy_threshold
        and primary != RecoveryStrategy.HEALTH_CHECK_RETRY
    ):
        candidates.append(RecoveryStrategy.HEALTH_CHECK_RETRY)
    return candidates


def select_strategy(
    error_type: ErrorType | None,
    context: RecoveryContext | None = None,
) -> RecoveryStrategy:
    """
    Choose the recovery strategy for a classified error.

    NO_ACTION_NEEDED is returned only when the connection is already healthy.
    When several strategies apply, the automated one with the lowest
    priority number wins; a non-automated strategy is returned only when it
    is the sole candidate.
    """
    context = context or RecoveryContext()
    if context.is_healthy:
        return RecoveryStrategy.NO_ACTION_NEEDED

    candidates = _candidates(error_type, context)
    automated = [s for s in candidates if s.is_automated]
    pool = automated or candidates
    strategy = min(pool, key=lambda s: s.priority)
    logger.debug(
        "Selected recovery strategy",
        extra={
            "error_type": error_type.value if error_type else None,
            "recovery_strategy": strategy.value,
            "consecutive_failures": context.consecutive_failures,
        },
    )
    return strategy


@dataclass
class RecoveryResult:
    """Outcome of an attempted recovery, for logging and dashboards."""

    strategy: RecoveryStrategy
    success: bool
    message: str
    error_type: ErrorType | TokenRefreshErrorType | None = None
    attempted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def succeeded(cls, strategy: RecoveryStrategy, message: str, **details: Any) -> "RecoveryResult":
        return cls(strategy=strategy, success=True, message=message, details=details)

    @classmethod
    def failed(
        cls,
        strategy: RecoveryStrategy,
        message: str,
        error_type: ErrorType | TokenRefreshErrorType | None = None,
        **details: Any,
    ) -> "RecoveryResult":
        return cls(
            strategy=strategy,
            success=False,
            message=message,
            error_type=error_type,
            details=details,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "success": self.success,
            "message": self.message,
            "error_type": self.error_type.value if self.error_type else None,
            "attempted_at": self.attempted_at.isoformat(),
            "details": self.details,
        }


__all__ = [
    "ERROR_STRATEGY_MAPPING",
    "RecoveryContext",
    "RecoveryResult",
    "RecoveryStrategy",
    "STRATEGY_METADATA",
    "select_strategy",
]
