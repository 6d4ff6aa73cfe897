"""
Exception types for cloudrelay.

ProviderError is the raw error handed to the classifiers by provider
adapters. CloudRelayError and its subclasses are raised by the library
itself.
"""

import math
from typing import Any


class ProviderError(Exception):
    """
    Raw failure reported by a storage provider's I/O layer.

    Attributes:
        message: Error message from the provider or SDK
        provider: Provider key (e.g. "google-drive", "amazon-s3")
        status_code: HTTP status code, if any
        error_code: SDK / API error code (e.g. "NoSuchBucket")
        reason: Provider-specific reason string (e.g. "rateLimitExceeded")
        retry_after: Seconds the provider asked us to wait, if given
        metadata: Any extra provider-specific details
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        error_code: str | None = None,
        reason: str | None = None,
        retry_after: float | str | None = None,
        metadata: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.message = message or ""
        self.provider = provider
        self.status_code = status_code
        self.error_code = error_code
        self.reason = reason
        self.retry_after = seconds_or_none(retry_after)
        self.metadata = metadata or {}
        self.cause = cause
        super().__init__(self.message)

    @classmethod
    def from_exception(
        cls, exc: BaseException, provider: str | None = None
    ) -> "ProviderError":
        """
        Wrap an arbitrary exception raised by a provider SDK.

        Lifts status and error codes from common SDK attribute names
        (status_code, status, code, response.status_code) when present.
        """
        if isinstance(exc, ProviderError):
            return exc

        status_code = _int_or_none(getattr(exc, "status_code", None))
        if status_code is None:
            status_code = _int_or_none(getattr(exc, "status", None))
        response = getattr(exc, "response", None)
        error_code = None
        if isinstance(response, dict):
            # botocore ClientError shape
            error_code = response.get("Error", {}).get("Code")
            if status_code is None:
                status_code = _int_or_none(
                    response.get("ResponseMetadata", {}).get("HTTPStatusCode")
                )
        elif status_code is None:
            status_code = _int_or_none(getattr(response, "status_code", None))

        code = getattr(exc, "code", None)
        if isinstance(code, str) and not code.isdigit():
            error_code = error_code or code
        elif status_code is None:
            status_code = _int_or_none(code)

        reason = getattr(exc, "reason", None)

        return cls(
            message=str(exc),
            provider=provider,
            status_code=status_code,
            error_code=error_code,
            reason=reason if isinstance(reason, str) else None,
            retry_after=getattr(exc, "retry_after", None),
            cause=exc if isinstance(exc, Exception) else None,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.error_code:
            parts.append(f"code={self.error_code}")
        return " | ".join(parts)


def seconds_or_none(value: Any) -> float | None:
    """
    Parse a Retry-After style wait into seconds.

    Accepts numbers and numeric strings ("120", " 1.5 "). Anything else,
    including negative, NaN and infinite values, gives None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    seconds = float(value)
    if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
        return None
    return seconds


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


# =============================================================================
# Library errors
# =============================================================================


class CloudRelayError(Exception):
    """
    Base exception for errors raised by cloudrelay itself.

    Attributes:
        message: Human-readable error description
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class ConfigurationError(CloudRelayError):
    """Invalid or missing configuration."""


class TokenRotationError(CloudRelayError):
    """Token rotation could not be persisted; the stored record is unchanged."""


class RateLimitExceededError(CloudRelayError):
    """Refresh attempt blocked by the user or IP rate limit."""

    def __init__(
        self,
        message: str,
        scope: str,
        retry_after: float | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, context=context)
        self.scope = scope  # "user" or "ip"
        self.retry_after = retry_after


__all__ = [
    "CloudRelayError",
    "ConfigurationError",
    "ProviderError",
    "RateLimitExceededError",
    "TokenRotationError",
    "seconds_or_none",
]
