"""
Fixed-window attempt limiter over a shared keyed counter store.

Counts attempts per key (user id, IP address) and blocks once the count
reaches the ceiling. The window starts with the first recorded attempt and
the store's expiry resets it implicitly.

How it works:
- check(key): read-only, True while count < limit
- record(key): increment; the first increment in a window sets the TTL
- remaining(key): limit - count, floored at 0
- reset(key): delete the counter

check and record are separate calls, so concurrent callers can race past
the ceiling by a few attempts. The limit is an operational guard, not a
security boundary.

Usage:
    limiter = AttemptRateLimiter(
        store, RateLimiterConfig(limit=5, key_prefix="token_refresh_rate_limit_user")
    )

    if not limiter.check(user_id):
        return blocked_response()
    limiter.record(user_id)
"""

import logging
from dataclasses import dataclass

from cloudrelay.types import CounterStore

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for an attempt limiter."""

    # Attempts allowed per window
    limit: int = 5

    # Window length; counters expire this long after the first attempt
    window_seconds: int = 3600

    # Counter key prefix, also used as the limiter name in logs
    key_prefix: str = "rate_limit"

    # Enable/disable limiting (for testing or gradual rollout)
    enabled: bool = True

    def __post_init__(self):
        self.limit = int(self.limit)
        self.window_seconds = int(self.window_seconds)



class AttemptRateLimiter:
    """
    Per-key fixed-window attempt counter.

    Attributes:
        config: Limit, window and key prefix
        store: Shared counter store
    """

    def __init__(self, store: CounterStore, config: RateLimiterConfig | None = None):
        self.store = store
        self.config = config or RateLimiterConfig()

    def key_for(self, identifier: str) -> str:
        return f"{self.config.key_prefix}_{identifier}"

    def count(self, identifier: str) -> int:
        return max(self.store.get(self.key_for(identifier)), 0)

    def check(self, identifier: str) -> bool:
        """True if another attempt is allowed. Does not touch the counter."""
        if not self.config.enabled:
            return True
        return self.count(identifier) < self.config.limit

    def record(self, identifier: str) -> int:
        """Record one attempt and return the new count."""
        key = self.key_for(identifier)
        count = self.store.increment(key)
        if count == 1:
            self.store.expire(key, self.config.window_seconds)

        if count >= self.config.limit:
            logger.warning(
                "Rate limit ceiling reached",
                extra={
                    "limiter": self.config.key_prefix,
                    "rate_limit_key": key,
                    "attempt": count,
                    "limit": self.config.limit,
                },
            )
        return count

    def remaining(self, identifier: str) -> int:
        if not self.config.enabled:
            return self.config.limit
        return max(self.config.limit - self.count(identifier), 0)

    def reset(self, identifier: str) -> None:
        self.store.delete(self.key_for(identifier))
        logger.debug(
            "Rate limit reset",
            extra={"limiter": self.config.key_prefix, "rate_limit_key": self.key_for(identifier)},
        )


__all__ = [
    "AttemptRateLimiter",
    "RateLimiterConfig",
]
