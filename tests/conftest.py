"""
pytest configuration for cloudrelay tests.

Adds src directory to Python path for imports and provides shared fakes:
frozen clocks, in-memory stores and a recording audit sink.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Set test environment variables BEFORE any imports
os.environ.setdefault("TEST_MODE", "true")

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from cloudrelay.auth.coordinator import TokenRefreshCoordinator  # noqa: E402
from cloudrelay.auth.models import TokenRecord  # noqa: E402
from cloudrelay.auth.repository import InMemoryTokenRepository, token_record_id  # noqa: E402
from cloudrelay.auth.token_security import TokenSecurityCoordinator  # noqa: E402
from cloudrelay.cache.store import InMemoryCounterStore  # noqa: E402
from cloudrelay.config.config import ReliabilityConfig  # noqa: E402

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    """Callable monotonic seconds source for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> float:
        self.value += seconds
        return self.value


class RecordingAuditSink:
    """Audit sink that keeps every event in memory."""

    def __init__(self):
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.event for event in self.events]


def make_record(
    user_id: str = "42",
    provider: str = "google-drive",
    expires_in: timedelta | None = timedelta(minutes=5),
    refresh_token: str | None = "refresh-old",
    refresh_failure_count: int = 0,
    now: datetime = NOW,
) -> TokenRecord:
    return TokenRecord(
        record_id=token_record_id(user_id, provider),
        user_id=user_id,
        provider=provider,
        access_token="access-old",
        refresh_token=refresh_token,
        expires_at=now + expires_in if expires_in is not None else None,
        refresh_failure_count=refresh_failure_count,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def store(monotonic):
    return InMemoryCounterStore(clock=monotonic)


@pytest.fixture
def repository():
    return InMemoryTokenRepository()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def config():
    return ReliabilityConfig()


@pytest.fixture
def security(store, repository, audit_sink, clock, config):
    return TokenSecurityCoordinator(
        store,
        repository=repository,
        audit_sink=audit_sink,
        rate_limits=config.rate_limiting,
        security=config.security,
        clock=clock,
    )


@pytest.fixture
def coordinator(repository, security, config, clock):
    return TokenRefreshCoordinator(repository, security, config=config, clock=clock)


@pytest.fixture
def make_token(clock):
    """Factory for token records relative to the fake clock's current time."""

    def _make(**kwargs) -> TokenRecord:
        kwargs.setdefault("now", clock())
        return make_record(**kwargs)

    return _make
