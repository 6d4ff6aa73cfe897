"""
Error taxonomy and classification.

Provides:
- ErrorType: universal category for generic cloud operations
- TokenRefreshErrorType: stricter taxonomy for the token refresh path
- ProviderError: raw error handed over by provider adapters
- classify / classify_refresh_error: total, pure classifiers
"""

from cloudrelay.errors.classifiers import (
    BaseErrorClassifier,
    GoogleDriveErrorClassifier,
    S3ErrorClassifier,
    classify,
    classify_refresh_error,
    get_classifier,
    refresh_error_from_error_type,
    to_provider_error,
)
from cloudrelay.errors.exceptions import (
    CloudRelayError,
    ConfigurationError,
    ProviderError,
    RateLimitExceededError,
    TokenRotationError,
)
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType, Severity

__all__ = [
    # Taxonomies
    "ErrorType",
    "Severity",
    "TokenRefreshErrorType",
    # Exceptions
    "CloudRelayError",
    "ConfigurationError",
    "ProviderError",
    "RateLimitExceededError",
    "TokenRotationError",
    # Classification
    "BaseErrorClassifier",
    "GoogleDriveErrorClassifier",
    "S3ErrorClassifier",
    "classify",
    "classify_refresh_error",
    "get_classifier",
    "refresh_error_from_error_type",
    "to_provider_error",
]
