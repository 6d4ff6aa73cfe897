"""Connection health status and transitions."""

from cloudrelay.health.status import (
    STATUS_MESSAGES,
    CloudStorageHealthStatus,
    HealthState,
)
from cloudrelay.health.tracker import HealthTracker, status_for_failures

__all__ = [
    "CloudStorageHealthStatus",
    "HealthState",
    "HealthTracker",
    "STATUS_MESSAGES",
    "status_for_failures",
]
