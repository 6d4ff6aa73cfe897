"""
Structured logging module.

Provides JSON logging with context propagation and a security audit sink.
"""

from cloudrelay.logging.audit import LoggingAuditSink
from cloudrelay.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from cloudrelay.logging.context_managers import LogContext, OperationContext
from cloudrelay.logging.formatters import ConsoleFormatter, JSONFormatter, json_serializer
from cloudrelay.logging.setup import SECURITY_LOGGER_NAME, get_logger, setup_logging
from cloudrelay.logging.utilities import log_exception, log_with_context, parse_log_level

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    "SECURITY_LOGGER_NAME",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    "json_serializer",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "LogContext",
    "OperationContext",
    # Audit
    "LoggingAuditSink",
    # Utilities
    "log_with_context",
    "log_exception",
    "parse_log_level",
]
