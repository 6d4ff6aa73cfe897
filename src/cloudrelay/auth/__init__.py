"""
Token security and refresh coordination.

Provides:
- TokenRecord / NewTokenData / AuditEvent data models
- TokenSecurityCoordinator: rate limiting, atomic rotation, audit events
- TokenRefreshCoordinator: per-(user, provider) serialized refresh flow
- RefreshMonitor: refresh metrics, per-provider success rates and alerts
- InMemoryTokenRepository: TokenRepository for single-process use and tests
"""

from cloudrelay.auth.coordinator import TokenRefreshCoordinator
from cloudrelay.auth.models import (
    AuditData,
    AuditEvent,
    NewTokenData,
    RefreshResult,
    RefreshStatus,
    TokenRecord,
)
from cloudrelay.auth.refresh_monitor import RefreshMonitor
from cloudrelay.auth.repository import InMemoryTokenRepository, token_record_id
from cloudrelay.auth.token_security import TokenSecurityCoordinator

__all__ = [
    "AuditData",
    "AuditEvent",
    "InMemoryTokenRepository",
    "NewTokenData",
    "RefreshMonitor",
    "RefreshResult",
    "RefreshStatus",
    "TokenRecord",
    "TokenRefreshCoordinator",
    "TokenSecurityCoordinator",
    "token_record_id",
]
