"""Keyed counter stores for rate limiting state."""

from cloudrelay.cache.store import InMemoryCounterStore

__all__ = ["InMemoryCounterStore"]
