"""
Collaborator protocols used across modules.

The reliability core never talks to a cache, database or log pipeline
directly. Callers plug in implementations of these protocols.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

# Returns the current UTC time. Injected so tests can freeze time.
Clock = Callable[[], datetime]


class CounterStore(Protocol):
    """
    Shared keyed counter store with expiry (e.g. Redis, memcached).

    Only per-key atomic increment-and-read is required. No cross-key
    transactions are assumed.
    """

    def increment(self, key: str) -> int:
        """Increment the counter for key and return the new value."""
        ...

    def get(self, key: str) -> int:
        """Return the current value, 0 when missing or expired."""
        ...

    def expire(self, key: str, ttl_seconds: int) -> None:
        """Expire key after ttl_seconds."""
        ...

    def delete(self, key: str) -> None:
        ...


class TokenRepository(Protocol):
    """Persistence for token records."""

    def load(self, record_id: str) -> Any:
        """
        Load a token record.

        Returns:
            TokenRecord, or None if no record exists for record_id
        """
        ...

    def save(self, record: Any) -> None:
        """Persist a token record. All fields are written together or not at all."""
        ...


class AuditSink(Protocol):
    """Append-only destination for security audit events."""

    def emit(self, event: Any) -> None:
        ...


__all__ = [
    "AuditSink",
    "Clock",
    "CounterStore",
    "TokenRepository",
]
