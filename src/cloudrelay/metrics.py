"""
Prometheus metrics for the reliability layer.

Focused on essential metrics:
- Token refresh operations by outcome, failures by error type, duration
- Retry policy decisions
- Job outcomes

All metrics live in REGISTRY, a dedicated CollectorRegistry, so embedding
applications choose whether and where to expose them:

    from prometheus_client import start_http_server
    start_http_server(9100, registry=REGISTRY)
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry()


# =============================================================================
# Core Metrics
# =============================================================================

# Token refresh
token_refresh_operations_counter = Counter(
    "cloudrelay_token_refresh_operations_total",
    "Coordinated token refreshes by provider and outcome",
    labelnames=["provider", "outcome"],
    registry=REGISTRY,
)

token_refresh_failures_counter = Counter(
    "cloudrelay_token_refresh_failures_total",
    "Failed token refreshes by provider and refresh error type",
    labelnames=["provider", "error_type"],
    registry=REGISTRY,
)

token_refresh_duration_seconds = Histogram(
    "cloudrelay_token_refresh_duration_seconds",
    "Time spent in a coordinated token refresh",
    labelnames=["provider", "outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

# Retry policy
retry_decisions_counter = Counter(
    "cloudrelay_retry_decisions_total",
    "Retry policy decisions by error type",
    labelnames=["taxonomy", "error_type", "decision"],
    registry=REGISTRY,
)

# Jobs
job_outcomes_counter = Counter(
    "cloudrelay_job_outcomes_total",
    "Job executions by job kind and resulting status",
    labelnames=["job", "status"],
    registry=REGISTRY,
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_token_refresh(
    provider: str,
    outcome: str,
    duration_seconds: float,
    error_type: str | None = None,
) -> None:
    """Record one coordinated refresh."""
    token_refresh_operations_counter.labels(provider=provider, outcome=outcome).inc()
    token_refresh_duration_seconds.labels(provider=provider, outcome=outcome).observe(
        max(duration_seconds, 0.0)
    )
    if error_type is not None:
        token_refresh_failures_counter.labels(provider=provider, error_type=error_type).inc()


def record_retry_decision(taxonomy: str, error_type: str, should_retry: bool) -> None:
    """Record a retry policy decision."""
    retry_decisions_counter.labels(
        taxonomy=taxonomy,
        error_type=error_type,
        decision="retry" if should_retry else "give_up",
    ).inc()


def record_job_outcome(job: str, status: str) -> None:
    """Record the status a job execution returned."""
    job_outcomes_counter.labels(job=job, status=status).inc()


__all__ = [
    "REGISTRY",
    # Metrics
    "job_outcomes_counter",
    "retry_decisions_counter",
    "token_refresh_duration_seconds",
    "token_refresh_failures_counter",
    "token_refresh_operations_counter",
    # Helper functions
    "record_job_outcome",
    "record_retry_decision",
    "record_token_refresh",
]
