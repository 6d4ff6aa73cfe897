"""
Tests for provider error classification.

Review checklist:
    [x] Google Drive status and reason rules
    [x] S3 error code and status rules, botocore-shaped exceptions
    [x] Common network / timeout fallbacks
    [x] Refresh taxonomy message rules
    [x] Total: never raises, unknown fallback
"""

import socket

import pytest

from cloudrelay.errors.classifiers import (
    GoogleDriveErrorClassifier,
    S3ErrorClassifier,
    classify,
    classify_refresh_error,
    get_classifier,
    refresh_error_from_error_type,
    to_provider_error,
)
from cloudrelay.errors.exceptions import ProviderError
from cloudrelay.errors.refresh_errors import TokenRefreshErrorType
from cloudrelay.errors.taxonomy import ErrorType
from cloudrelay.resilience.recovery import RecoveryStrategy, select_strategy


def drive_error(message="", status=None, reason=None):
    return ProviderError(message, provider="google-drive", status_code=status, reason=reason)


def s3_error(message="", code=None, status=None):
    return ProviderError(message, provider="amazon-s3", status_code=status, error_code=code)


class FakeClientError(Exception):
    """Shaped like botocore.exceptions.ClientError."""

    def __init__(self, code, message, status):
        self.response = {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        }
        super().__init__(f"An error occurred ({code}): {message}")


class BrokenError(Exception):
    def __str__(self):
        raise RuntimeError("cannot render")


class TestGoogleDriveClassifier:
    """Status and reason rules for Google Drive."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (drive_error("Invalid Credentials", 401), ErrorType.INVALID_CREDENTIALS),
            (drive_error("Request had invalid authentication", 401), ErrorType.TOKEN_EXPIRED),
            (drive_error("Unauthorized", 401, "authError"), ErrorType.TOKEN_EXPIRED),
            (drive_error("User rate limit exceeded", 403, "userRateLimitExceeded"), ErrorType.API_QUOTA_EXCEEDED),
            (drive_error("The user's Drive storage quota has been exceeded", 403, "storageQuotaExceeded"), ErrorType.STORAGE_QUOTA_EXCEEDED),
            (drive_error("Insufficient Permission", 403, "insufficientPermissions"), ErrorType.INSUFFICIENT_PERMISSIONS),
            (drive_error("The user does not have access to the folder", 403), ErrorType.FOLDER_ACCESS_DENIED),
            (drive_error("File not found: 1AbC", 404), ErrorType.FILE_NOT_FOUND),
            (drive_error("Parent folder not found", 404), ErrorType.FOLDER_NOT_FOUND),
            (drive_error("Request entity too large", 413), ErrorType.FILE_TOO_LARGE),
            (drive_error("Too many requests", 429), ErrorType.API_QUOTA_EXCEEDED),
            (drive_error("Backend Error", 503), ErrorType.SERVICE_UNAVAILABLE),
            (drive_error("Backend Error", reason="backendError"), ErrorType.SERVICE_UNAVAILABLE),
            (drive_error("Bad file", reason="invalidFileType"), ErrorType.INVALID_FILE_TYPE),
            (drive_error("Bad request", reason="badRequest"), ErrorType.INVALID_PARAMETER),
            (drive_error("invalid_grant"), ErrorType.TOKEN_EXPIRED),
        ],
    )
    def test_drive_rules(self, error, expected):
        assert classify(error) == expected

    def test_reason_matching_is_case_insensitive(self):
        error = drive_error("limit", 403, "RATELIMITEXCEEDED")
        assert classify(error) == ErrorType.API_QUOTA_EXCEEDED

    def test_unmatched_drive_error_is_unknown(self):
        assert classify(drive_error("Something odd happened", 400)) == ErrorType.UNKNOWN_ERROR


class TestS3Classifier:
    """Error code and status rules for S3-compatible providers."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (s3_error("The specified bucket does not exist", "NoSuchBucket", 404), ErrorType.BUCKET_NOT_FOUND),
            (s3_error("Access Denied to bucket uploads", "AccessDenied", 403), ErrorType.BUCKET_ACCESS_DENIED),
            (s3_error("Access Denied", "AccessDenied", 403), ErrorType.INSUFFICIENT_PERMISSIONS),
            (s3_error("Your proposed upload exceeds the maximum allowed size", "InvalidRequest", 400), ErrorType.FILE_TOO_LARGE),
            (s3_error("Invalid Content-Type header", "InvalidRequest", 400), ErrorType.INVALID_FILE_CONTENT),
            (s3_error("Something else", "InvalidRequest", 400), ErrorType.UNKNOWN_ERROR),
            (s3_error("Please reduce your request rate", "SlowDown", 503), ErrorType.API_QUOTA_EXCEEDED),
            (s3_error("The provided token has expired", "ExpiredToken", 400), ErrorType.TOKEN_EXPIRED),
            (s3_error("The AWS access key Id does not exist", "InvalidAccessKeyId", 403), ErrorType.INVALID_CREDENTIALS),
            (s3_error("Bad storage class", "InvalidStorageClass", 400), ErrorType.STORAGE_CLASS_NOT_SUPPORTED),
            (s3_error("Forbidden", status=403), ErrorType.INSUFFICIENT_PERMISSIONS),
            (s3_error("Internal", status=500), ErrorType.SERVICE_UNAVAILABLE),
        ],
    )
    def test_s3_rules(self, error, expected):
        assert classify(error) == expected

    def test_error_code_takes_precedence_over_status(self):
        error = s3_error("The specified key does not exist", "NoSuchKey", 403)
        assert classify(error) == ErrorType.FILE_NOT_FOUND

    def test_botocore_shaped_exception(self):
        exc = FakeClientError("NoSuchKey", "The specified key does not exist.", 404)
        assert classify(exc, provider="amazon-s3") == ErrorType.FILE_NOT_FOUND

    @pytest.mark.parametrize("provider", ["wasabi", "cloudflare-r2", "Backblaze-B2", "s3"])
    def test_s3_compatible_providers_share_rules(self, provider):
        assert isinstance(get_classifier(provider), S3ErrorClassifier)

    def test_drive_aliases(self):
        assert isinstance(get_classifier("google_drive"), GoogleDriveErrorClassifier)


class TestCommonRules:
    """Network, timeout and unknown fallbacks shared by all providers."""

    @pytest.mark.parametrize("provider", [None, "google-drive", "amazon-s3", "dropbox"])
    def test_connection_messages_are_network_errors(self, provider):
        assert classify("Connection reset by peer", provider=provider) == ErrorType.NETWORK_ERROR

    def test_dns_failure(self):
        assert classify("Could not resolve host: www.googleapis.com") == ErrorType.NETWORK_ERROR

    def test_timed_out_message(self):
        assert classify("Read timed out") == ErrorType.TIMEOUT

    def test_builtin_timeout_exception(self):
        assert classify(TimeoutError("boom"), provider="google-drive") == ErrorType.TIMEOUT

    def test_builtin_connection_exception(self):
        assert classify(ConnectionRefusedError("refused"), provider="amazon-s3") == ErrorType.NETWORK_ERROR

    def test_socket_resolution_failure(self):
        error = socket.gaierror(-2, "Name or service not known")
        assert classify(error, provider="google-drive") == ErrorType.NETWORK_ERROR

    def test_status_fallbacks_for_unknown_provider(self):
        assert classify(ProviderError("x", status_code=503), provider="dropbox") == ErrorType.SERVICE_UNAVAILABLE
        assert classify(ProviderError("x", status_code=429), provider="dropbox") == ErrorType.API_QUOTA_EXCEEDED
        assert classify(ProviderError("x", status_code=408), provider="dropbox") == ErrorType.TIMEOUT

    def test_dict_input(self):
        error = {"message": "Bucket missing", "error_code": "NoSuchBucket", "status_code": 404}
        assert classify(error, provider="amazon-s3") == ErrorType.BUCKET_NOT_FOUND


class TestTotality:
    """Classification never raises and is deterministic."""

    @pytest.mark.parametrize("value", [None, "", "???", 12345, object(), {}])
    def test_odd_inputs_are_unknown(self, value):
        assert classify(value) == ErrorType.UNKNOWN_ERROR

    def test_classifier_failure_falls_back_to_unknown(self):
        assert classify(BrokenError(), provider="google-drive") == ErrorType.UNKNOWN_ERROR
        assert classify_refresh_error(BrokenError()) == TokenRefreshErrorType.UNKNOWN_ERROR

    def test_classification_is_idempotent(self):
        error = drive_error("User rate limit exceeded", 403, "userRateLimitExceeded")
        assert classify(error) == classify(error)

    def test_classify_does_not_mutate_provider_error(self):
        error = ProviderError("Connection refused")
        classify(error, provider="amazon-s3")
        assert error.provider is None

    def test_to_provider_error_wraps_strings(self):
        raw = to_provider_error("boom", provider="wasabi")
        assert raw.message == "boom"
        assert raw.provider == "wasabi"


class TestRefreshClassification:
    """Token refresh failures map onto the refresh taxonomy."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            ("Connection timeout while contacting oauth2.googleapis.com", TokenRefreshErrorType.NETWORK_TIMEOUT),
            ("invalid_grant: Token has been expired or revoked.", TokenRefreshErrorType.INVALID_REFRESH_TOKEN),
            ("Invalid refresh token", TokenRefreshErrorType.INVALID_REFRESH_TOKEN),
            ("Refresh token expired", TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN),
            ("Quota exceeded for quota metric", TokenRefreshErrorType.API_QUOTA_EXCEEDED),
            ("Too many requests", TokenRefreshErrorType.API_QUOTA_EXCEEDED),
            ("Service Unavailable", TokenRefreshErrorType.SERVICE_UNAVAILABLE),
            ("mystery failure", TokenRefreshErrorType.UNKNOWN_ERROR),
        ],
    )
    def test_message_rules(self, error, expected):
        assert classify_refresh_error(error) == expected

    def test_status_used_when_message_is_silent(self):
        assert classify_refresh_error(ProviderError("boom", status_code=429)) == TokenRefreshErrorType.API_QUOTA_EXCEEDED
        assert classify_refresh_error(ProviderError("boom", status_code=502)) == TokenRefreshErrorType.SERVICE_UNAVAILABLE

    def test_builtin_network_exceptions(self):
        assert classify_refresh_error(ConnectionRefusedError()) == TokenRefreshErrorType.NETWORK_TIMEOUT
        assert classify_refresh_error(TimeoutError()) == TokenRefreshErrorType.NETWORK_TIMEOUT

    @pytest.mark.parametrize(
        "error_type,expected",
        [
            (ErrorType.INVALID_CREDENTIALS, TokenRefreshErrorType.INVALID_REFRESH_TOKEN),
            (ErrorType.TOKEN_EXPIRED, TokenRefreshErrorType.EXPIRED_REFRESH_TOKEN),
            (ErrorType.TIMEOUT, TokenRefreshErrorType.NETWORK_TIMEOUT),
            (ErrorType.SERVICE_UNAVAILABLE, TokenRefreshErrorType.SERVICE_UNAVAILABLE),
            (ErrorType.FILE_NOT_FOUND, TokenRefreshErrorType.UNKNOWN_ERROR),
        ],
    )
    def test_generic_to_refresh_mapping(self, error_type, expected):
        assert refresh_error_from_error_type(error_type) == expected


class TestInvalidGrantScenario:
    """A Drive 401 invalid_grant seen from both taxonomies."""

    def test_generic_path_refreshes_automatically(self):
        error = drive_error("invalid_grant", 401)
        error_type = classify(error)

        assert error_type == ErrorType.TOKEN_EXPIRED
        assert select_strategy(error_type) == RecoveryStrategy.TOKEN_REFRESH
        assert not error_type.requires_user_intervention

    def test_refresh_path_needs_the_user(self):
        refresh_type = classify_refresh_error(drive_error("invalid_grant", 401))

        assert refresh_type == TokenRefreshErrorType.INVALID_REFRESH_TOKEN
        assert refresh_type.requires_user_intervention
