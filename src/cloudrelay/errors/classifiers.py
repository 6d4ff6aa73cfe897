"""
Provider error classification.

Maps raw provider failures onto the universal ErrorType taxonomy (generic
cloud operations) or onto TokenRefreshErrorType (token refresh path).

Classification is a total, pure function: every input yields exactly one
type, unmatched input falls back to UNKNOWN_ERROR, and the classifiers never
raise. Rules are evaluated in order per provider family: auth/token rules,
then provider-specific status and code tables, then the common network and
timeout markers, then unknown.

Usage:
    error_type = classify(exc, provider="google-drive")
    refresh_type = classify_refresh_error(exc)
"""

import logging
import socket
from typing import Any

from cloudrelay.errors.exceptions import ProviderError
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType

logger = logging.getLogger(__name__)


# Substrings that indicate a transport-level connectivity failure
NETWORK_MARKERS = (
    "connection refused",
    "name resolution failed",
    "could not resolve host",
    "connection",
    "network",
    "dns",
    "resolve",
    "unreachable",
)

TIMEOUT_MARKERS = ("timeout", "timed out")

# Google Drive API error reasons (errors[0].reason in the JSON body)
DRIVE_RATE_LIMIT_REASONS = frozenset({"ratelimitexceeded", "userratelimitexceeded"})
DRIVE_STORAGE_QUOTA_REASONS = frozenset({"quotaexceeded", "storagequotaexceeded"})
DRIVE_SERVICE_REASONS = frozenset({"backenderror", "internalerror", "serviceunavailable"})
DRIVE_AUTH_REASONS = frozenset({"autherror", "unauthorized"})

# AWS S3 error codes. AccessDenied and InvalidRequest need the message to
# decide and are handled in S3ErrorClassifier._classify_code.
S3_ERROR_CODES: dict[str, ErrorType] = {
    "NoSuchBucket": ErrorType.BUCKET_NOT_FOUND,
    "InvalidBucketName": ErrorType.INVALID_BUCKET_NAME,
    "BucketNotEmpty": ErrorType.BUCKET_ACCESS_DENIED,
    "InvalidAccessKeyId": ErrorType.INVALID_CREDENTIALS,
    "SignatureDoesNotMatch": ErrorType.INVALID_CREDENTIALS,
    "TokenRefreshRequired": ErrorType.INVALID_CREDENTIALS,
    "ExpiredToken": ErrorType.TOKEN_EXPIRED,
    "NoSuchKey": ErrorType.FILE_NOT_FOUND,
    "EntityTooLarge": ErrorType.FILE_TOO_LARGE,
    "SlowDown": ErrorType.API_QUOTA_EXCEEDED,
    "RequestTimeTooSkewed": ErrorType.API_QUOTA_EXCEEDED,
    "RequestLimitExceeded": ErrorType.API_QUOTA_EXCEEDED,
    "Throttling": ErrorType.API_QUOTA_EXCEEDED,
    "ServiceUnavailable": ErrorType.SERVICE_UNAVAILABLE,
    "InternalError": ErrorType.SERVICE_UNAVAILABLE,
    "InternalFailure": ErrorType.SERVICE_UNAVAILABLE,
    "InvalidRegion": ErrorType.INVALID_REGION,
    "InvalidParameterValue": ErrorType.INVALID_REGION,
    "InvalidStorageClass": ErrorType.STORAGE_CLASS_NOT_SUPPORTED,
    "NotImplemented": ErrorType.FEATURE_NOT_SUPPORTED,
    "RequestTimeout": ErrorType.NETWORK_ERROR,
    "UnauthorizedOperation": ErrorType.INSUFFICIENT_PERMISSIONS,
    "InvalidArgument": ErrorType.INVALID_PARAMETER,
}

S3_STATUS_CODES: dict[int, ErrorType] = {
    401: ErrorType.INVALID_CREDENTIALS,
    403: ErrorType.INSUFFICIENT_PERMISSIONS,
    404: ErrorType.FILE_NOT_FOUND,
    413: ErrorType.FILE_TOO_LARGE,
    429: ErrorType.API_QUOTA_EXCEEDED,
}

# Generic taxonomy -> refresh taxonomy
REFRESH_ERROR_MAPPING: dict[ErrorType, TokenRefreshErrorType] = {
    ErrorType.INVALID_CREDENTIALS: TokenRefreshErrorType.INVALID_REFRESH_TOKEN,
    ErrorType.INSUFFICIENT_PERMISSIONS: TokenRefreshErrorType.INVALID_REFRESH_TOKEN,
    ErrorType.TOKEN_EXPIRED: TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN,
    ErrorType.NETWORK_ERROR: TokenRefreshErrorType.NETWORK_TIMEOUT,
    ErrorType.TIMEOUT: TokenRefreshErrorType.NETWORK_TIMEOUT,
    ErrorType.API_QUOTA_EXCEEDED: TokenRefreshErrorType.API_QUOTA_EXCEEDED,
    ErrorType.SERVICE_UNAVAILABLE: TokenRefreshErrorType.SERVICE_UNAVAILABLE,
}


def to_provider_error(error: Any, provider: str | None = None) -> ProviderError:
    """
    Normalize any raw error value into a ProviderError.

    Accepts ProviderError, any exception, a plain message string, or a dict
    with message/status_code/error_code/reason keys.
    """
    if isinstance(error, BaseException):
        return ProviderError.from_exception(error, provider=provider)
    if isinstance(error, dict):
        return ProviderError(
            message=str(error.get("message", "")),
            provider=error.get("provider", provider),
            status_code=error.get("status_code"),
            error_code=error.get("error_code"),
            reason=error.get("reason"),
            retry_after=error.get("retry_after"),
            metadata=error.get("metadata"),
        )
    return ProviderError(message="" if error is None else str(error), provider=provider)


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


class BaseErrorClassifier:
    """
    Common classification rules shared by every provider family.

    Subclasses override _classify_provider() to add provider-specific rules.
    It returns None when no provider rule matches, and the common network,
    timeout and unknown fallback then applies.
    """

    provider_name = "generic"

    def classify(self, error: Any, provider: str | None = None) -> ErrorType:
        """
        Classify a raw provider error.

        Args:
            error: Exception, ProviderError, message string or dict
            provider: Provider key used when error carries none

        Returns:
            ErrorType (UNKNOWN_ERROR when nothing matches)
        """
        try:
            raw = to_provider_error(error, provider=provider or self.provider_name)
            error_type = self._classify_provider(raw)
            if error_type is None:
                error_type = self._classify_common(raw)
        except Exception as e:
            logger.error(
                "Error classification failed, falling back to unknown",
                extra={"provider": provider or self.provider_name, "error": str(e)[:200]},
            )
            return ErrorType.UNKNOWN_ERROR

        logger.debug(
            "Classified provider error",
            extra={
                "provider": raw.provider or provider or self.provider_name,
                "error_type": error_type.value,
                "status_code": raw.status_code,
                "error_code": raw.error_code,
            },
        )
        return error_type

    def _classify_provider(self, raw: ProviderError) -> ErrorType | None:
        return None

    def _classify_common(self, raw: ProviderError) -> ErrorType:
        cause = raw.cause
        if isinstance(cause, TimeoutError):
            return ErrorType.TIMEOUT
        if isinstance(cause, (ConnectionError, socket.gaierror)):
            return ErrorType.NETWORK_ERROR

        message = raw.message.lower()
        if _contains_any(message, NETWORK_MARKERS):
            return ErrorType.NETWORK_ERROR
        if _contains_any(message, TIMEOUT_MARKERS):
            return ErrorType.TIMEOUT

        status = raw.status_code
        if status == 408:
            return ErrorType.TIMEOUT
        if status == 429:
            return ErrorType.API_QUOTA_EXCEEDED
        if status is not None and 500 <= status < 600:
            return ErrorType.SERVICE_UNAVAILABLE

        logger.warning(
            "Unclassified provider error",
            extra={
                "provider": raw.provider or self.provider_name,
                "error_message": raw.message[:200],
                "status_code": raw.status_code,
                "error_code": raw.error_code,
            },
        )
        return ErrorType.UNKNOWN_ERROR


class GoogleDriveErrorClassifier(BaseErrorClassifier):
    """Rules for OAuth-based hierarchical stores (Google Drive API v3)."""

    provider_name = "google-drive"

    def _classify_provider(self, raw: ProviderError) -> ErrorType | None:
        reason = (raw.reason or "").lower()
        message = raw.message.lower()

        status = raw.status_code
        if status == 401:
            return self._classify_unauthorized(reason, message)
        if status == 403:
            return self._classify_forbidden(reason, message)
        if status == 404:
            return self._not_found(message)
        if status == 413:
            return ErrorType.FILE_TOO_LARGE
        if status == 429:
            return ErrorType.API_QUOTA_EXCEEDED
        if status in (500, 502, 503, 504):
            return ErrorType.SERVICE_UNAVAILABLE

        return self._classify_reason(reason, message)

    @staticmethod
    def _classify_unauthorized(reason: str, message: str) -> ErrorType:
        if reason in DRIVE_AUTH_REASONS or "invalid_grant" in message:
            return ErrorType.TOKEN_EXPIRED
        if "credentials" in message or "client" in message:
            return ErrorType.INVALID_CREDENTIALS
        return ErrorType.TOKEN_EXPIRED

    @staticmethod
    def _classify_forbidden(reason: str, message: str) -> ErrorType:
        if reason == "insufficientpermissions" or "insufficient permission" in message:
            return ErrorType.INSUFFICIENT_PERMISSIONS
        if reason in DRIVE_RATE_LIMIT_REASONS or "rate limit" in message:
            return ErrorType.API_QUOTA_EXCEEDED
        if reason in DRIVE_STORAGE_QUOTA_REASONS or "quota" in message:
            return ErrorType.STORAGE_QUOTA_EXCEEDED
        if "folder" in message or "directory" in message:
            return ErrorType.FOLDER_ACCESS_DENIED
        return ErrorType.INSUFFICIENT_PERMISSIONS

    @staticmethod
    def _not_found(message: str) -> ErrorType:
        if "folder" in message or "parent" in message:
            return ErrorType.FOLDER_NOT_FOUND
        return ErrorType.FILE_NOT_FOUND

    def _classify_reason(self, reason: str, message: str) -> ErrorType | None:
        if not reason:
            if "invalid_grant" in message:
                return ErrorType.TOKEN_EXPIRED
            return None
        if reason == "notfound":
            return self._not_found(message)
        if reason in DRIVE_AUTH_REASONS:
            return ErrorType.TOKEN_EXPIRED
        if reason == "insufficientpermissions":
            return ErrorType.INSUFFICIENT_PERMISSIONS
        if reason in DRIVE_RATE_LIMIT_REASONS:
            return ErrorType.API_QUOTA_EXCEEDED
        if reason in DRIVE_STORAGE_QUOTA_REASONS:
            return ErrorType.STORAGE_QUOTA_EXCEEDED
        if reason in DRIVE_SERVICE_REASONS:
            return ErrorType.SERVICE_UNAVAILABLE
        if reason == "invalidfiletype":
            return ErrorType.INVALID_FILE_TYPE
        if reason == "filetoolarge":
            return ErrorType.FILE_TOO_LARGE
        if reason in ("invalidparameter", "badrequest"):
            return ErrorType.INVALID_PARAMETER
        return None


class S3ErrorClassifier(BaseErrorClassifier):
    """Rules for key-based flat stores speaking the S3 API."""

    provider_name = "amazon-s3"

    def _classify_provider(self, raw: ProviderError) -> ErrorType | None:
        if raw.error_code:
            error_type = self._classify_code(raw.error_code, raw.message.lower())
            if error_type is not None:
                return error_type

        status = raw.status_code
        if status in S3_STATUS_CODES:
            return S3_STATUS_CODES[status]
        if status is not None and 500 <= status < 600:
            return ErrorType.SERVICE_UNAVAILABLE
        return None

    @staticmethod
    def _classify_code(code: str, message: str) -> ErrorType | None:
        if code == "AccessDenied":
            if "bucket" in message:
                return ErrorType.BUCKET_ACCESS_DENIED
            return ErrorType.INSUFFICIENT_PERMISSIONS
        if code == "InvalidRequest":
            if "size" in message or "too large" in message:
                return ErrorType.FILE_TOO_LARGE
            if "content-type" in message or "content type" in message:
                return ErrorType.INVALID_FILE_CONTENT
            return ErrorType.UNKNOWN_ERROR
        return S3_ERROR_CODES.get(code)


_GENERIC = BaseErrorClassifier()
_DRIVE = GoogleDriveErrorClassifier()
_S3 = S3ErrorClassifier()

# Provider key -> classifier. Unknown providers use the generic rules.
PROVIDER_CLASSIFIERS: dict[str, BaseErrorClassifier] = {
    "google-drive": _DRIVE,
    "google_drive": _DRIVE,
    "amazon-s3": _S3,
    "amazon_s3": _S3,
    "s3": _S3,
    "s3-compatible": _S3,
    "cloudflare-r2": _S3,
    "backblaze-b2": _S3,
    "wasabi": _S3,
}


def get_classifier(provider: str | None) -> BaseErrorClassifier:
    """Return the classifier for a provider key (case-insensitive)."""
    if not provider:
        return _GENERIC
    return PROVIDER_CLASSIFIERS.get(provider.lower(), _GENERIC)


def classify(error: Any, provider: str | None = None) -> ErrorType:
    """
    Classify a raw error for generic cloud operations.

    The provider key is taken from the argument, else from the error itself
    when it is a ProviderError.
    """
    if provider is None and isinstance(error, ProviderError):
        provider = error.provider
    return get_classifier(provider).classify(error, provider=provider)


def classify_refresh_error(error: Any) -> TokenRefreshErrorType:
    """
    Classify a token refresh failure.

    Message rules are applied in order: network, invalid token, expired
    token, quota, service unavailable. Status codes 429 and 5xx are used only
    when no message rule matches.
    """
    try:
        raw = to_provider_error(error)
    except Exception as e:
        logger.error(
            "Refresh error classification failed, falling back to unknown",
            extra={"error": str(e)[:200]},
        )
        return TokenRefreshErrorType.UNKNOWN_ERROR

    if isinstance(raw.cause, (TimeoutError, ConnectionError)):
        return TokenRefreshErrorType.NETWORK_TIMEOUT

    message = raw.message.lower()

    if "timeout" in message or "connection" in message or "network" in message:
        return TokenRefreshErrorType.NETWORK_TIMEOUT

    if (
        "invalid_grant" in message
        or "invalid refresh token" in message
        or ("refresh token" in message and "invalid" in message)
    ):
        return TokenRefreshErrorType.INVALID_REFRESH_TOKEN

    if "expired" in message and "refresh" in message:
        return TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN

    if "quota" in message or "rate limit" in message or "too many requests" in message:
        return TokenRefreshErrorType.API_QUOTA_EXCEEDED

    if (
        "service unavailable" in message
        or "temporarily unavailable" in message
        or "503" in message
    ):
        return TokenRefreshErrorType.SERVICE_UNAVAILABLE

    if raw.status_code == 429:
        return TokenRefreshErrorType.API_QUOTA_EXCEEDED
    if raw.status_code is not None and 500 <= raw.status_code < 600:
        return TokenRefreshErrorType.SERVICE_UNAVAILABLE

    logger.warning(
        "Unclassified token refresh error",
        extra={"error_message": raw.message[:200], "status_code": raw.status_code},
    )
    return TokenRefreshErrorType.UNKNOWN_ERROR


def refresh_error_from_error_type(error_type: ErrorType) -> TokenRefreshErrorType:
    """Translate a generic ErrorType into the refresh taxonomy."""
    return REFRESH_ERROR_MAPPING.get(error_type, TokenRefreshErrorType.UNKNOWN_ERROR)


__all__ = [
    "BaseErrorClassifier",
    "GoogleDriveErrorClassifier",
    "NETWORK_MARKERS",
    "PROVIDER_CLASSIFIERS",
    "REFRESH_ERROR_MAPPING",
    "S3ErrorClassifier",
    "S3_ERROR_CODES",
    "S3_STATUS_CODES",
    "TIMEOUT_MARKERS",
    "classify",
    "classify_refresh_error",
    "get_classifier",
    "refresh_error_from_error_type",
    "to_provider_error",
]
