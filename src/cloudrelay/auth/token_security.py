"""
Token refresh security: rate limiting, rotation and audit logging.

TokenSecurityCoordinator is consulted before any refresh network call:

    if not security.check_user_rate_limit(user_id):
        ...  # blocked, do not call the provider
    security.record_refresh_attempt(user_id, ip_address)
    new_data = provider.refresh(record.refresh_token)
    record = security.rotate_token_on_refresh(record, new_data)
    security.reset_user_rate_limit(user_id)

Rate limits are fixed windows per user (default 5/hour) and per IP
(default 20/hour), kept in the shared counter store under
token_refresh_rate_limit_user_{id} and token_refresh_rate_limit_ip_{ip}.
Check and record are separate calls; concurrent callers may overshoot the
ceiling slightly.

Audit events never block the primary operation: sink failures are logged
and swallowed.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Union

from cloudrelay.auth.models import AuditData, AuditEvent, NewTokenData, TokenRecord
from cloudrelay.config.config import RateLimitSettings, SecuritySettings
from cloudrelay.errors.exceptions import RateLimitExceededError, TokenRotationError
from cloudrelay.logging.audit import LoggingAuditSink
from cloudrelay.logging.utilities import log_exception
from cloudrelay.resilience.rate_limiter import AttemptRateLimiter, RateLimiterConfig
from cloudrelay.types import AuditSink, Clock, CounterStore, TokenRepository

logger = logging.getLogger(__name__)

USER_KEY_PREFIX = "token_refresh_rate_limit_user"
IP_KEY_PREFIX = "token_refresh_rate_limit_ip"

# Audit event names
EVENT_REFRESH_FAILURE = "token_refresh_failure"
EVENT_TOKEN_ROTATED = "token_rotated"
EVENT_USER_INTERVENTION = "user_intervention_required"
EVENT_RATE_LIMITED = "token_refresh_rate_limited"

# Context keys lifted into the top level of AuditData
_AUDIT_DATA_KEYS = ("ip_address", "user_agent", "error_code")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_code_of(error: Any) -> Optional[Any]:
    for attr in ("error_code", "code", "status_code"):
        value = getattr(error, attr, None)
        if value is not None:
            return value
    return None


class TokenSecurityCoordinator:
    """
    Rate limiting, atomic token rotation and security audit logging.

    Args:
        store: Shared counter store for rate limit state
        repository: Token persistence; rotation saves through it when given
        audit_sink: Destination for audit events (default: security logger)
        rate_limits: Ceilings and window
        security: Rotation / audit toggles and audit log level
        clock: UTC time source, injectable for tests
    """

    def __init__(
        self,
        store: CounterStore,
        repository: Optional[TokenRepository] = None,
        audit_sink: Optional[AuditSink] = None,
        rate_limits: Optional[RateLimitSettings] = None,
        security: Optional[SecuritySettings] = None,
        clock: Clock = _utcnow,
    ):
        self.rate_limits = rate_limits or RateLimitSettings()
        self.security = security or SecuritySettings()
        self.repository = repository
        self.audit_sink = audit_sink if audit_sink is not None else LoggingAuditSink(
            level=self.security.security_log_level
        )
        self._clock = clock

        self.user_limiter = AttemptRateLimiter(
            store,
            RateLimiterConfig(
                limit=self.rate_limits.max_attempts_per_user,
                window_seconds=self.rate_limits.window_seconds,
                key_prefix=USER_KEY_PREFIX,
            ),
        )
        self.ip_limiter = AttemptRateLimiter(
            store,
            RateLimiterConfig(
                limit=self.rate_limits.max_attempts_per_ip,
                window_seconds=self.rate_limits.window_seconds,
                key_prefix=IP_KEY_PREFIX,
                enabled=self.rate_limits.ip_based_limiting,
            ),
        )

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def check_user_rate_limit(self, user_id: Any) -> bool:
        """True if the user may attempt another refresh. Read-only."""
        allowed = self.user_limiter.check(str(user_id))
        if not allowed:
            logger.warning(
                "Token refresh rate limit exceeded for user",
                extra={
                    "user_id": str(user_id),
                    "limit": self.user_limiter.config.limit,
                },
            )
        return allowed

    def check_ip_rate_limit(self, ip_address: Optional[str]) -> bool:
        """True if the IP may attempt another refresh. Read-only."""
        if not ip_address:
            return True
        allowed = self.ip_limiter.check(ip_address)
        if not allowed:
            logger.warning(
                "Token refresh rate limit exceeded for IP",
                extra={"ip_address": ip_address, "limit": self.ip_limiter.config.limit},
            )
        return allowed

    def record_refresh_attempt(self, user_id: Any, ip_address: Optional[str] = None) -> None:
        """Count one refresh attempt against the user and, if given, the IP."""
        count = self.user_limiter.record(str(user_id))
        if ip_address and self.rate_limits.ip_based_limiting:
            self.ip_limiter.record(ip_address)
        logger.debug(
            "Recorded token refresh attempt",
            extra={"user_id": str(user_id), "ip_address": ip_address, "attempt": count},
        )

    def get_remaining_user_attempts(self, user_id: Any) -> int:
        return self.user_limiter.remaining(str(user_id))

    def get_remaining_ip_attempts(self, ip_address: str) -> int:
        return self.ip_limiter.remaining(ip_address)

    def reset_user_rate_limit(self, user_id: Any) -> None:
        """Clear the user's counter, e.g. after a confirmed successful refresh."""
        self.user_limiter.reset(str(user_id))
        logger.info("Token refresh rate limit reset", extra={"user_id": str(user_id)})

    def reset_ip_rate_limit(self, ip_address: str) -> None:
        self.ip_limiter.reset(ip_address)

    def get_rate_limit_reset_time(self, user_id: Any) -> Optional[datetime]:
        """
        When a blocked user may try again, None if not blocked.

        Uses the store's remaining TTL when it exposes ttl(), else assumes a
        full window from now.
        """
        if self.user_limiter.check(str(user_id)):
            return None
        seconds: Optional[float] = None
        ttl = getattr(self.user_limiter.store, "ttl", None)
        if callable(ttl):
            seconds = ttl(self.user_limiter.key_for(str(user_id)))
        if seconds is None:
            seconds = self.rate_limits.window_seconds
        return self._clock() + timedelta(seconds=seconds)

    def enforce_rate_limits(self, user_id: Any, ip_address: Optional[str] = None) -> None:
        """
        Raise instead of returning False when either limit blocks.

        For callers that surface the block as an error (API handlers)
        rather than a RefreshResult.

        Raises:
            RateLimitExceededError: scope is "user" or "ip"; retry_after is
                                    seconds until the user window resets
        """
        if not self.check_user_rate_limit(user_id):
            reset_at = self.get_rate_limit_reset_time(user_id)
            retry_after = (reset_at - self._clock()).total_seconds() if reset_at else None
            raise RateLimitExceededError(
                "User rate limit exceeded for token refresh",
                scope="user",
                retry_after=retry_after,
                context={"user_id": str(user_id)},
            )
        if not self.check_ip_rate_limit(ip_address):
            raise RateLimitExceededError(
                "IP rate limit exceeded for token refresh",
                scope="ip",
                retry_after=float(self.rate_limits.window_seconds),
                context={"user_id": str(user_id), "ip_address": ip_address},
            )

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate_token_on_refresh(
        self,
        token_record: TokenRecord,
        new_token_data: Union[NewTokenData, Mapping[str, Any]],
    ) -> TokenRecord:
        """
        Replace the record's credentials after a successful refresh.

        Builds a new record with the new access token, refresh token and
        expiry, a zero failure count and a fresh last-success stamp, then
        saves it in one repository call. The input record is never modified.

        When the provider returns no refresh token, or rotation is disabled,
        the existing refresh token is kept.

        Raises:
            TokenRotationError: the repository save failed; stored record unchanged
        """
        if not isinstance(new_token_data, NewTokenData):
            new_token_data = NewTokenData.model_validate(dict(new_token_data))

        now = self._clock()
        refresh_token = token_record.refresh_token
        if new_token_data.refresh_token and self.security.token_rotation:
            refresh_token = new_token_data.refresh_token

        rotated = replace(
            token_record,
            access_token=new_token_data.access_token,
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=new_token_data.expires_in),
            refresh_failure_count=0,
            last_successful_refresh_at=now,
            last_refresh_attempt_at=now,
        )

        if self.repository is not None:
            try:
                self.repository.save(rotated)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Token rotation failed, stored token left unchanged",
                    user_id=token_record.user_id,
                    provider=token_record.provider,
                )
                raise TokenRotationError(
                    "Failed to persist rotated token",
                    cause=e,
                    context={"user_id": token_record.user_id, "provider": token_record.provider},
                ) from e

        self.log_authentication_event(
            EVENT_TOKEN_ROTATED,
            token_record.user_id,
            {
                "provider": token_record.provider,
                "refresh_token_rotated": refresh_token != token_record.refresh_token,
                "expires_at": rotated.expires_at.isoformat(),
            },
        )
        return rotated

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit_refresh_failure(
        self,
        user_id: Any,
        error: Union[BaseException, str],
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        context = dict(context or {})
        context.setdefault("error_code", _error_code_of(error))
        self._emit(EVENT_REFRESH_FAILURE, user_id, context, error_message=str(error))

    def log_authentication_event(
        self,
        event_name: str,
        user_id: Any,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._emit(event_name, user_id, dict(context or {}))

    def audit_user_intervention(
        self,
        user_id: Any,
        action: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        context = dict(context or {})
        context["action"] = action
        self._emit(EVENT_USER_INTERVENTION, user_id, context)

    def _emit(
        self,
        event_name: str,
        user_id: Any,
        context: dict[str, Any],
        error_message: Optional[str] = None,
    ) -> None:
        if not self.security.audit_logging:
            return
        try:
            lifted = {key: context.pop(key, None) for key in _AUDIT_DATA_KEYS}
            now = self._clock()
            event = AuditEvent(
                event=event_name,
                data=AuditData(
                    user_id=user_id,
                    timestamp=now,
                    error_message=error_message,
                    context=context,
                    **lifted,
                ),
                timestamp=now,
            )
            self.audit_sink.emit(event)
        except Exception as e:
            # Audit must never block the operation being audited
            log_exception(
                logger,
                e,
                "Failed to emit security audit event",
                level=logging.ERROR,
                include_traceback=False,
                event=event_name,
                user_id=str(user_id),
            )


__all__ = [
    "EVENT_RATE_LIMITED",
    "EVENT_REFRESH_FAILURE",
    "EVENT_TOKEN_ROTATED",
    "EVENT_USER_INTERVENTION",
    "IP_KEY_PREFIX",
    "TokenSecurityCoordinator",
    "USER_KEY_PREFIX",
]
