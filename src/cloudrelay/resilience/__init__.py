"""
Resilience: retry policy, recovery strategy selection, attempt limiting.

Provides:
- RetryPolicy: should_retry / retry_delay / max_attempts per error type
- select_strategy: error type + context -> RecoveryStrategy
- AttemptRateLimiter: fixed-window per-key attempt ceilings
"""

from cloudrelay.resilience.rate_limiter import (
    AttemptRateLimiter,
    RateLimiterConfig,
)
from cloudrelay.resilience.recovery import (
    RecoveryContext,
    RecoveryResult,
    RecoveryStrategy,
    select_strategy,
)
from cloudrelay.resilience.retry import (
    DEFAULT_RETRY_POLICY,
    BackoffKind,
    RetryDecision,
    RetryPolicy,
    with_retry,
    with_retry_async,
)

__all__ = [
    # Retry
    "BackoffKind",
    "DEFAULT_RETRY_POLICY",
    "RetryDecision",
    "RetryPolicy",
    "with_retry",
    "with_retry_async",
    # Recovery
    "RecoveryContext",
    "RecoveryResult",
    "RecoveryStrategy",
    "select_strategy",
    # Rate limiting
    "AttemptRateLimiter",
    "RateLimiterConfig",
]
