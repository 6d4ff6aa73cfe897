"""
Audit sink writing security events to the dedicated security logger.

Each event becomes one log record on "cloudrelay.security" whose message is
the event name and whose extras carry the event payload. With the JSON
formatter that yields one append-only line per event:

    {"ts": "...", "level": "INFO", "logger": "cloudrelay.security",
     "message": "token_refresh_failure", "event": "token_refresh_failure",
     "user_id": "42", "audit": {...}}
"""

import logging
from typing import Any

from cloudrelay.logging.setup import SECURITY_LOGGER_NAME
from cloudrelay.logging.utilities import parse_log_level


class LoggingAuditSink:
    """
    AuditSink implementation backed by the standard logging module.

    Args:
        level: Level for audit records ("info", logging.WARNING, ...)
        logger: Target logger (default: cloudrelay.security)
    """

    def __init__(self, level: int | str = logging.INFO, logger: logging.Logger | None = None):
        self.level = parse_log_level(level)
        self.logger = logger or logging.getLogger(SECURITY_LOGGER_NAME)

    def emit(self, event: Any) -> None:
        payload = event.model_dump(mode="json") if hasattr(event, "model_dump") else dict(event)
        data = payload.get("data", {})
        self.logger.log(
            self.level,
            payload.get("event", "security_event"),
            extra={
                "event": payload.get("event"),
                "user_id": data.get("user_id"),
                "ip_address": data.get("ip_address"),
                "audit": payload,
            },
        )


__all__ = ["LoggingAuditSink"]
