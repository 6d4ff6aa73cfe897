"""
Token refresh monitoring.

RefreshMonitor sees every coordinated refresh. For each one it:
- exports Prometheus counters and a duration histogram (cloudrelay.metrics)
- keeps in-process per-provider aggregates for operator reports
- logs start / success / failure events when enhanced logging is on

Aggregates per provider:
    total_operations, successful_operations, failed_operations,
    success_rate, failure_rate, average_duration_ms (moving average),
    error_breakdown (failure count per refresh error type)

get_performance_metrics() adds alerts when the failure rate or the
average duration crosses its threshold.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from cloudrelay.auth.models import RefreshResult, RefreshStatus
from cloudrelay.metrics import record_token_refresh

logger = logging.getLogger(__name__)

FAILURE_RATE_THRESHOLD = 0.10
AVERAGE_DURATION_THRESHOLD_MS = 5000.0

# Smoothing factor for the moving average of refresh durations
DURATION_SMOOTHING = 0.1


@dataclass
class ProviderRefreshStats:
    successes: int = 0
    failures: int = 0
    average_duration_ms: float = 0.0
    error_breakdown: Counter = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return self.successes + self.failures

    def observe_duration(self, duration_ms: float) -> None:
        if self.total <= 1:
            self.average_duration_ms = duration_ms
        else:
            self.average_duration_ms = (
                DURATION_SMOOTHING * duration_ms
                + (1 - DURATION_SMOOTHING) * self.average_duration_ms
            )


class RefreshMonitor:
    """
    Collects refresh outcomes for metrics, reports and alerting.

    Args:
        enhanced_logging: Log start and success events at INFO (failures
                          are always logged)
    """

    def __init__(self, enhanced_logging: bool = True):
        self.enhanced_logging = enhanced_logging
        self._stats: dict[str, ProviderRefreshStats] = {}
        self._lock = threading.Lock()

    def record_start(self, user_id: str, provider: str, operation_id: str) -> None:
        if self.enhanced_logging:
            logger.info(
                "token_refresh_start",
                extra={
                    "event": "token_refresh_start",
                    "user_id": user_id,
                    "provider": provider,
                    "job_id": operation_id,
                },
            )

    def record_result(
        self,
        user_id: str,
        provider: str,
        operation_id: str,
        result: RefreshResult,
        duration_seconds: float,
    ) -> None:
        """
        Record a finished refresh.

        Only SUCCESS and FAILURE count towards the success rate. Refreshes
        that found the token valid or were rate limited are exported as
        outcomes but left out of the aggregates.
        """
        error_type = result.error_type.value if result.error_type else None
        duration_ms = round(duration_seconds * 1000, 2)
        record_token_refresh(
            provider,
            result.status.value,
            duration_seconds,
            error_type=error_type if result.status == RefreshStatus.FAILURE else None,
        )

        if result.status not in (RefreshStatus.SUCCESS, RefreshStatus.FAILURE):
            return

        with self._lock:
            stats = self._stats.setdefault(provider, ProviderRefreshStats())
            if result.status == RefreshStatus.SUCCESS:
                stats.successes += 1
            else:
                stats.failures += 1
                stats.error_breakdown[error_type] += 1
            stats.observe_duration(duration_ms)

        if result.status == RefreshStatus.SUCCESS:
            if self.enhanced_logging:
                logger.info(
                    "token_refresh_success",
                    extra={
                        "event": "token_refresh_success",
                        "user_id": user_id,
                        "provider": provider,
                        "job_id": operation_id,
                        "duration_ms": duration_ms,
                    },
                )
            return

        logger.warning(
            "token_refresh_failure",
            extra={
                "event": "token_refresh_failure",
                "user_id": user_id,
                "provider": provider,
                "job_id": operation_id,
                "duration_ms": duration_ms,
                "error_type": error_type,
                "error_message": result.message,
                "is_recoverable": result.error_type.is_recoverable if result.error_type else False,
            },
        )

    def get_performance_metrics(self, provider: str) -> dict[str, Any]:
        """Aggregates and active alerts for one provider."""
        with self._lock:
            stats = self._stats.get(provider) or ProviderRefreshStats()
            total = stats.total
            success_rate = stats.successes / total if total else 1.0
            refresh_operations = {
                "total_operations": total,
                "successful_operations": stats.successes,
                "failed_operations": stats.failures,
                "success_rate": round(success_rate, 4),
                "failure_rate": round(1 - success_rate, 4),
                "average_duration_ms": round(stats.average_duration_ms, 2),
                "error_breakdown": dict(stats.error_breakdown),
            }

        alerts = self._alerts(refresh_operations)
        for alert in alerts:
            logger.warning(
                "Alerting threshold exceeded",
                extra={"event": "threshold_alert", "provider": provider, **alert},
            )
        return {
            "provider": provider,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "refresh_operations": refresh_operations,
            "alerting_status": {"active_alerts": alerts, "alert_count": len(alerts)},
        }

    @staticmethod
    def _alerts(metrics: dict[str, Any]) -> list[dict[str, Any]]:
        alerts = []
        if metrics["total_operations"] and metrics["failure_rate"] > FAILURE_RATE_THRESHOLD:
            alerts.append(
                {
                    "alert_type": "high_failure_rate",
                    "severity": "critical",
                    "current_value": metrics["failure_rate"],
                    "threshold": FAILURE_RATE_THRESHOLD,
                }
            )
        if metrics["average_duration_ms"] > AVERAGE_DURATION_THRESHOLD_MS:
            alerts.append(
                {
                    "alert_type": "slow_refresh_operations",
                    "severity": "warning",
                    "current_value": metrics["average_duration_ms"],
                    "threshold": AVERAGE_DURATION_THRESHOLD_MS,
                }
            )
        return alerts

    def reset_metrics(self, provider: Optional[str] = None) -> None:
        """Clear aggregates for one provider, or all of them."""
        with self._lock:
            if provider is None:
                self._stats.clear()
            else:
                self._stats.pop(provider, None)
        logger.info("Token refresh metrics reset", extra={"provider": provider})


__all__ = [
    "AVERAGE_DURATION_THRESHOLD_MS",
    "FAILURE_RATE_THRESHOLD",
    "ProviderRefreshStats",
    "RefreshMonitor",
]
