"""
Thread-safe in-memory keyed counter store with expiration.

Implements the CounterStore protocol for single-process deployments and
tests. Multi-process deployments plug in a shared store (e.g. Redis with
INCR + EXPIRE) behind the same protocol.

Expired entries read as 0 and are dropped lazily on access. sweep()
removes every expired entry in one pass; call it periodically if keys are
written once and never read again.

Example:
    >>> store = InMemoryCounterStore()
    >>> store.increment("token_refresh_rate_limit_user_42")
    1
    >>> store.expire("token_refresh_rate_limit_user_42", 3600)
    >>> store.get("token_refresh_rate_limit_user_42")
    1
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: int
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class InMemoryCounterStore:
    """
    Keyed integer counters with per-key TTL.

    Attributes:
        _entries: key -> counter entry (protected by _lock)
        _clock: monotonic seconds source, injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(now):
            del self._entries[key]
            return None
        return entry

    def increment(self, key: str) -> int:
        """Atomically increment and return the new value."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                entry = _Entry(value=0)
                self._entries[key] = entry
            entry.value += 1
            return entry.value

    def get(self, key: str) -> int:
        with self._lock:
            entry = self._live(key, self._clock())
            return max(entry.value, 0) if entry else 0

    def expire(self, key: str, ttl_seconds: int) -> None:
        """Set key to expire ttl_seconds from now. No-op for missing keys."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is not None:
                entry.expires_at = now + ttl_seconds

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires, None if missing or without expiry."""
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None or entry.expires_at is None:
                return None
            return entry.expires_at - now

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept expired counters", extra={"records_processed": len(expired)})
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["InMemoryCounterStore"]
