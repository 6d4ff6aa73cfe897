"""
Universal error taxonomy for cloud storage operations.

Every provider failure is reduced to one ErrorType. Metadata for each
variant (severity, recoverability, user intervention) lives in a single
mapping table, ERROR_TYPE_METADATA, which must cover every variant.
A missing entry fails at import time.

Usage:
    error_type = ErrorType.TOKEN_EXPIRED
    error_type.is_recoverable              # True
    error_type.requires_user_intervention  # False
    error_type.severity                    # Severity.HIGH
"""

from dataclasses import dataclass
from enum import Enum


class Severity(Enum):
    """
    Severity of a classified failure.

    ErrorType only uses LOW, MEDIUM and HIGH. CRITICAL is reserved for the
    refresh taxonomy, where a dead refresh token disconnects the user.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorType(Enum):
    """Cross-provider error category for generic cloud operations."""

    # Authentication
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REFRESH_RATE_LIMITED = "token_refresh_rate_limited"
    INVALID_CREDENTIALS = "invalid_credentials"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"

    # Quotas
    API_QUOTA_EXCEEDED = "api_quota_exceeded"
    STORAGE_QUOTA_EXCEEDED = "storage_quota_exceeded"

    # Files and folders
    FILE_NOT_FOUND = "file_not_found"
    FOLDER_NOT_FOUND = "folder_not_found"
    FOLDER_ACCESS_DENIED = "folder_access_denied"
    INVALID_FILE_TYPE = "invalid_file_type"
    FILE_TOO_LARGE = "file_too_large"
    INVALID_FILE_CONTENT = "invalid_file_content"

    # Transport
    NETWORK_ERROR = "network_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"

    # Bucket-based providers
    BUCKET_NOT_FOUND = "bucket_not_found"
    BUCKET_ACCESS_DENIED = "bucket_access_denied"
    INVALID_BUCKET_NAME = "invalid_bucket_name"
    INVALID_REGION = "invalid_region"
    STORAGE_CLASS_NOT_SUPPORTED = "storage_class_not_supported"

    # Provider setup
    FEATURE_NOT_SUPPORTED = "feature_not_supported"
    PROVIDER_NOT_CONFIGURED = "provider_not_configured"
    PROVIDER_INITIALIZATION_FAILED = "provider_initialization_failed"
    INVALID_PARAMETER = "invalid_parameter"

    UNKNOWN_ERROR = "unknown_error"

    @property
    def metadata(self) -> "ErrorTypeMetadata":
        return ERROR_TYPE_METADATA[self]

    @property
    def is_recoverable(self) -> bool:
        return ERROR_TYPE_METADATA[self].recoverable

    @property
    def requires_user_intervention(self) -> bool:
        return ERROR_TYPE_METADATA[self].user_intervention

    @property
    def severity(self) -> Severity:
        return ERROR_TYPE_METADATA[self].severity

    @property
    def description(self) -> str:
        return ERROR_TYPE_METADATA[self].description

    @property
    def requires_reconnection(self) -> bool:
        """True when the user has to re-authorize the provider connection."""
        return self in RECONNECTION_ERROR_TYPES

    def user_message(self, provider_name: str = "cloud storage") -> str:
        """User-facing explanation, with the provider's display name filled in."""
        return ERROR_TYPE_METADATA[self].user_message.format(provider=provider_name)


@dataclass(frozen=True)
class ErrorTypeMetadata:
    severity: Severity
    recoverable: bool
    user_intervention: bool
    description: str
    user_message: str


_M = ErrorTypeMetadata

ERROR_TYPE_METADATA: dict[ErrorType, ErrorTypeMetadata] = {
    ErrorType.TOKEN_EXPIRED: _M(
        Severity.HIGH, True, False,
        "Access token expired",
        "Your {provider} session expired. Reconnecting automatically.",
    ),
    ErrorType.TOKEN_REFRESH_RATE_LIMITED: _M(
        Severity.MEDIUM, True, False,
        "Too many token refresh attempts",
        "Too many reconnection attempts to {provider}. Please wait before trying again.",
    ),
    ErrorType.INVALID_CREDENTIALS: _M(
        Severity.HIGH, False, True,
        "Credentials rejected by provider",
        "Your {provider} credentials are invalid. Please reconnect your account.",
    ),
    ErrorType.INSUFFICIENT_PERMISSIONS: _M(
        Severity.HIGH, False, True,
        "Missing permissions for the requested operation",
        "The app no longer has permission to access {provider}. Please reconnect and grant access.",
    ),
    ErrorType.API_QUOTA_EXCEEDED: _M(
        Severity.MEDIUM, True, False,
        "Provider API quota or rate limit exceeded",
        "{provider} is limiting requests. Uploads will resume automatically.",
    ),
    ErrorType.STORAGE_QUOTA_EXCEEDED: _M(
        Severity.HIGH, False, True,
        "Storage quota exhausted",
        "Your {provider} storage is full. Free up space to continue uploading.",
    ),
    ErrorType.FILE_NOT_FOUND: _M(
        Severity.MEDIUM, False, False,
        "File does not exist",
        "The file could not be found in {provider}.",
    ),
    ErrorType.FOLDER_NOT_FOUND: _M(
        Severity.MEDIUM, False, False,
        "Target folder does not exist",
        "The destination folder could not be found in {provider}.",
    ),
    ErrorType.FOLDER_ACCESS_DENIED: _M(
        Severity.HIGH, False, True,
        "Access to target folder denied",
        "Access to the destination folder in {provider} was denied. Check folder permissions.",
    ),
    ErrorType.INVALID_FILE_TYPE: _M(
        Severity.LOW, False, True,
        "File type rejected by provider",
        "This file type is not accepted by {provider}.",
    ),
    ErrorType.FILE_TOO_LARGE: _M(
        Severity.LOW, False, True,
        "File exceeds provider size limit",
        "The file is too large to upload to {provider}.",
    ),
    ErrorType.INVALID_FILE_CONTENT: _M(
        Severity.LOW, False, True,
        "File content rejected by provider",
        "The file content was rejected by {provider}.",
    ),
    ErrorType.NETWORK_ERROR: _M(
        Severity.MEDIUM, True, False,
        "Network connectivity failure",
        "Could not reach {provider}. Retrying automatically.",
    ),
    ErrorType.SERVICE_UNAVAILABLE: _M(
        Severity.MEDIUM, True, False,
        "Provider service temporarily unavailable",
        "{provider} is temporarily unavailable. Retrying automatically.",
    ),
    ErrorType.TIMEOUT: _M(
        Severity.MEDIUM, True, False,
        "Operation timed out",
        "The request to {provider} timed out. Retrying automatically.",
    ),
    ErrorType.BUCKET_NOT_FOUND: _M(
        Severity.HIGH, False, False,
        "Bucket does not exist",
        "The configured {provider} bucket does not exist.",
    ),
    ErrorType.BUCKET_ACCESS_DENIED: _M(
        Severity.HIGH, False, True,
        "Access to bucket denied",
        "Access to the configured {provider} bucket was denied. Check bucket policy.",
    ),
    ErrorType.INVALID_BUCKET_NAME: _M(
        Severity.HIGH, False, True,
        "Bucket name is invalid",
        "The configured {provider} bucket name is invalid.",
    ),
    ErrorType.INVALID_REGION: _M(
        Severity.HIGH, False, True,
        "Region is invalid",
        "The configured {provider} region is invalid.",
    ),
    ErrorType.STORAGE_CLASS_NOT_SUPPORTED: _M(
        Severity.MEDIUM, False, False,
        "Storage class not supported",
        "The requested storage class is not supported by {provider}.",
    ),
    ErrorType.FEATURE_NOT_SUPPORTED: _M(
        Severity.LOW, False, True,
        "Feature not supported by provider",
        "This feature is not supported by {provider}.",
    ),
    ErrorType.PROVIDER_NOT_CONFIGURED: _M(
        Severity.HIGH, False, True,
        "Provider is not configured",
        "{provider} is not configured. Please contact an administrator.",
    ),
    ErrorType.PROVIDER_INITIALIZATION_FAILED: _M(
        Severity.HIGH, True, False,
        "Provider client failed to initialize",
        "Could not initialize the {provider} connection. Retrying automatically.",
    ),
    ErrorType.INVALID_PARAMETER: _M(
        Severity.MEDIUM, False, False,
        "Invalid request parameter",
        "The request to {provider} contained an invalid parameter.",
    ),
    ErrorType.UNKNOWN_ERROR: _M(
        Severity.MEDIUM, False, False,
        "Unclassified error",
        "An unexpected error occurred with {provider}.",
    ),
}

del _M

RECONNECTION_ERROR_TYPES = frozenset(
    {
        ErrorType.TOKEN_EXPIRED,
        ErrorType.INVALID_CREDENTIALS,
        ErrorType.INSUFFICIENT_PERMISSIONS,
    }
)

_missing = set(ErrorType) - set(ERROR_TYPE_METADATA)
if _missing:
    raise RuntimeError(
        f"ERROR_TYPE_METADATA is missing entries for: {sorted(e.name for e in _missing)}"
    )
del _missing


__all__ = [
    "ERROR_TYPE_METADATA",
    "ErrorType",
    "ErrorTypeMetadata",
    "RECONNECTION_ERROR_TYPES",
    "Severity",
]
