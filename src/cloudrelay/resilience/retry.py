"""
Retry policy engine.

Separates the retry decision from the retry timing so callers can
pre-compute a schedule, re-enqueue a job with a delay, or sleep in place:

- should_retry(type, attempt): may this 1-based retry happen at all?
- retry_delay(type, attempt): how long to wait before it
- max_attempts(type): how many retries the type allows

Both taxonomies go through the same engine. Backoff families:
- exponential: base doubling per attempt, capped (network, timeout)
- flat: one long wait (quota exhaustion)
- linear: step * attempt, capped (service unavailable)
- immediate: retry once with no delay (expired access token)
- none: no retry (user intervention, unknown)

The engine never sleeps. with_retry / with_retry_async are conveniences
for blocking callers that want the policy applied in place.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Union

from cloudrelay.config.config import RetrySettings
from cloudrelay.errors.classifiers import classify
from cloudrelay.errors.exceptions import seconds_or_none
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType
from cloudrelay.metrics import record_retry_decision

logger = logging.getLogger(__name__)

AnyErrorType = Union[ErrorType, TokenRefreshErrorType]


class BackoffKind(Enum):
    EXPONENTIAL = "exponential"
    FLAT = "flat"
    LINEAR = "linear"
    IMMEDIATE = "immediate"
    NONE = "none"


# (backoff, max attempts). None as max means "use RetrySettings.max_attempts".
ERROR_TYPE_RETRY_RULES: dict[ErrorType, tuple[BackoffKind, int | None]] = {
    ErrorType.NETWORK_ERROR: (BackoffKind.EXPONENTIAL, None),
    ErrorType.TIMEOUT: (BackoffKind.EXPONENTIAL, None),
    ErrorType.API_QUOTA_EXCEEDED: (BackoffKind.FLAT, 3),
    ErrorType.TOKEN_REFRESH_RATE_LIMITED: (BackoffKind.FLAT, 3),
    ErrorType.SERVICE_UNAVAILABLE: (BackoffKind.LINEAR, 3),
    ErrorType.TOKEN_EXPIRED: (BackoffKind.IMMEDIATE, 1),
    ErrorType.PROVIDER_INITIALIZATION_FAILED: (BackoffKind.EXPONENTIAL, 3),
}

REFRESH_RETRY_RULES: dict[TokenRefreshErrorType, tuple[BackoffKind, int | None]] = {
    TokenRefreshErrorType.NETWORK_TIMEOUT: (BackoffKind.EXPONENTIAL, None),
    TokenRefreshErrorType.INVALID_REFRESH_TOKEN: (BackoffKind.NONE, 0),
    TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN: (BackoffKind.NONE, 0),
    TokenRefreshErrorType.API_QUOTA_EXCEEDED: (BackoffKind.FLAT, 3),
    TokenRefreshErrorType.SERVICE_UNAVAILABLE: (BackoffKind.LINEAR, 3),
    TokenRefreshErrorType.UNKNOWN_ERROR: (BackoffKind.NONE, 0),
}

_NO_RETRY = (BackoffKind.NONE, 0)


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of consulting the policy after a failure."""

    error_type: AnyErrorType
    attempt: int
    should_retry: bool
    delay_seconds: float
    max_attempts: int

    @property
    def exhausted(self) -> bool:
        return not self.should_retry


class RetryPolicy:
    """
    Retry decisions and timing for classified errors.

    Args:
        settings: Backoff parameters (defaults match the documented policy:
                  1s doubling to 16s, 3600s quota wait, 60s linear to 300s)
    """

    def __init__(self, settings: RetrySettings | None = None):
        self.settings = settings or RetrySettings()

    def _rule(self, error_type: AnyErrorType) -> tuple[BackoffKind, int]:
        if isinstance(error_type, TokenRefreshErrorType):
            kind, limit = REFRESH_RETRY_RULES.get(error_type, _NO_RETRY)
        elif not error_type.is_recoverable:
            return _NO_RETRY
        else:
            kind, limit = ERROR_TYPE_RETRY_RULES.get(error_type, _NO_RETRY)

        if limit is None:
            limit = self.settings.max_attempts
        return kind, limit

    def max_attempts(self, error_type: AnyErrorType) -> int:
        """Number of retries the error type allows (0 = never retry)."""
        return self._rule(error_type)[1]

    def should_retry(self, error_type: AnyErrorType, attempt: int) -> bool:
        """
        Whether the given 1-based retry may happen.

        False for non-recoverable types and for attempt > max_attempts,
        regardless of the delay the type would compute.
        """
        if not error_type.is_recoverable:
            return False
        return 1 <= attempt <= self.max_attempts(error_type)

    def retry_delay(
        self,
        error_type: AnyErrorType,
        attempt: int,
        retry_after: Any = None,
    ) -> float:
        """
        Seconds to wait before the given 1-based retry.

        Args:
            error_type: Classified error
            attempt: 1-based retry number
            retry_after: Provider-supplied wait hint; used when it asks for
                         longer than the computed delay. Values that are not
                         a non-negative number of seconds are ignored.
        """
        kind, _ = self._rule(error_type)
        attempt = max(1, attempt)
        s = self.settings
        hint = seconds_or_none(retry_after)

        if kind == BackoffKind.EXPONENTIAL:
            delay = min(s.base_delay_seconds * (2 ** min(attempt - 1, 32)), s.max_delay_seconds)
        elif kind == BackoffKind.FLAT:
            delay = s.quota_wait_seconds
        elif kind == BackoffKind.LINEAR:
            delay = min(s.linear_step_seconds * attempt, s.linear_cap_seconds)
        else:
            delay = 0.0

        if (
            kind != BackoffKind.NONE
            and s.respect_retry_after
            and hint is not None
            and hint > delay
        ):
            return hint
        return delay

    def schedule(self, error_type: AnyErrorType) -> list[float]:
        """Full list of delays for retries 1..max_attempts (empty if no retry)."""
        if not error_type.is_recoverable:
            return []
        return [
            self.retry_delay(error_type, attempt)
            for attempt in range(1, self.max_attempts(error_type) + 1)
        ]

    def decide(
        self,
        error_type: AnyErrorType,
        attempt: int,
        retry_after: Any = None,
    ) -> RetryDecision:
        """Combine should_retry and retry_delay into one decision."""
        retry = self.should_retry(error_type, attempt)
        record_retry_decision(
            "refresh" if isinstance(error_type, TokenRefreshErrorType) else "storage",
            error_type.value,
            retry,
        )
        return RetryDecision(
            error_type=error_type,
            attempt=attempt,
            should_retry=retry,
            delay_seconds=self.retry_delay(error_type, attempt, retry_after) if retry else 0.0,
            max_attempts=self.max_attempts(error_type),
        )

    def refresh_backoff_seconds(self, consecutive_failures: int) -> float:
        """
        Cool-down before refreshing a token that has failed repeatedly.

        base * 2^(failures-1) with the exponent capped at 4, then capped at
        refresh_backoff_cap_seconds. 0 when there are no failures.
        """
        if consecutive_failures <= 0:
            return 0.0
        s = self.settings
        delay = s.refresh_backoff_base_seconds * (2 ** min(consecutive_failures - 1, 4))
        return min(delay, s.refresh_backoff_cap_seconds)


DEFAULT_RETRY_POLICY = RetryPolicy()


def _log_retry_attempt(func_name: str, decision: RetryDecision, e: Exception) -> None:
    logger.warning(
        "Retryable error for %s, will retry",
        func_name,
        extra={
            "operation": func_name,
            "attempt": decision.attempt,
            "max_attempts": decision.max_attempts,
            "error_type": decision.error_type.value,
            "delay_seconds": round(decision.delay_seconds, 2),
            "error_message": str(e)[:200],
        },
    )


def _log_retry_failure(func_name: str, decision: RetryDecision, e: Exception) -> None:
    if not decision.error_type.is_recoverable:
        logger.warning(
            "Non-recoverable error for %s, not retrying: %s",
            func_name,
            str(e)[:200],
            extra={
                "operation": func_name,
                "error_type": decision.error_type.value,
                "error_message": str(e)[:200],
            },
        )
        return
    logger.error(
        "Max retries exhausted for %s: %s",
        func_name,
        str(e)[:200],
        extra={
            "operation": func_name,
            "error_type": decision.error_type.value,
            "max_attempts": decision.max_attempts,
            "error_message": str(e)[:200],
        },
    )


def _retry_after_of(e: Exception) -> float | None:
    return seconds_or_none(getattr(e, "retry_after", None))


def with_retry(
    policy: RetryPolicy | None = None,
    provider: str | None = None,
    classifier: Callable[[Exception], AnyErrorType] | None = None,
    on_auth_error: Callable[[], None] | None = None,
    sleep: Callable[[float], Any] = time.sleep,
):
    """
    Decorator applying the retry policy to a blocking call.

    Failures are classified (generic taxonomy for the given provider unless
    a classifier is supplied) and retried while the policy allows it.
    on_auth_error runs before retrying a TOKEN_EXPIRED failure.

    Usage:
        @with_retry(provider="google-drive", on_auth_error=refresh_token)
        def upload_chunk(...):
            ...
    """
    policy = policy or DEFAULT_RETRY_POLICY

    def _classify(e: Exception) -> AnyErrorType:
        if classifier is not None:
            return classifier(e)
        return classify(e, provider=provider)

    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(
                            "Retry succeeded for %s after %d retries",
                            func.__name__,
                            attempt,
                            extra={"operation": func.__name__, "attempt": attempt},
                        )
                    return result
                except Exception as e:
                    attempt += 1
                    error_type = _classify(e)
                    decision = policy.decide(error_type, attempt, _retry_after_of(e))
                    if not decision.should_retry:
                        _log_retry_failure(func.__name__, decision, e)
                        raise
                    if error_type == ErrorType.TOKEN_EXPIRED and on_auth_error:
                        on_auth_error()
                    _log_retry_attempt(func.__name__, decision, e)
                    sleep(decision.delay_seconds)

        return wrapper

    return decorator


def with_retry_async(
    policy: RetryPolicy | None = None,
    provider: str | None = None,
    classifier: Callable[[Exception], AnyErrorType] | None = None,
    on_auth_error: Callable[[], None] | Callable[[], Awaitable[None]] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
):
    """Async version of with_retry. Supports async on_auth_error callbacks."""
    policy = policy or DEFAULT_RETRY_POLICY

    def _classify(e: Exception) -> AnyErrorType:
        if classifier is not None:
            return classifier(e)
        return classify(e, provider=provider)

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(
                            "Retry succeeded for %s after %d retries",
                            func.__name__,
                            attempt,
                            extra={"operation": func.__name__, "attempt": attempt},
                        )
                    return result
                except Exception as e:
                    attempt += 1
                    error_type = _classify(e)
                    decision = policy.decide(error_type, attempt, _retry_after_of(e))
                    if not decision.should_retry:
                        _log_retry_failure(func.__name__, decision, e)
                        raise
                    if error_type == ErrorType.TOKEN_EXPIRED and on_auth_error:
                        if inspect.iscoroutinefunction(on_auth_error):
                            await on_auth_error()
                        else:
                            on_auth_error()
                    _log_retry_attempt(func.__name__, decision, e)
                    await sleep(decision.delay_seconds)

        return wrapper

    return decorator


__all__ = [
    "AnyErrorType",
    "BackoffKind",
    "DEFAULT_RETRY_POLICY",
    "ERROR_TYPE_RETRY_RULES",
    "REFRESH_RETRY_RULES",
    "RetryDecision",
    "RetryPolicy",
    "with_retry",
    "with_retry_async",
]
