"""Logging setup and configuration."""

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import TextIO

from cloudrelay.logging.formatters import ConsoleFormatter, JSONFormatter
from cloudrelay.logging.utilities import parse_log_level

# Default settings
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Dedicated logger for security audit events
SECURITY_LOGGER_NAME = "cloudrelay.security"

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "urllib3",
    "botocore",
    "googleapiclient.discovery",
    "google.auth",
]


def setup_logging(
    name: str = "cloudrelay",
    log_dir: Path | None = None,
    json_format: bool = True,
    json_console: bool = False,
    console_level: int | str = DEFAULT_CONSOLE_LEVEL,
    file_level: int | str = DEFAULT_FILE_LEVEL,
    security_level: int | str = logging.INFO,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    console_stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure logging with a console handler and optional rotating files.

    When log_dir is given, two time-rotated files are written:
        {log_dir}/{name}.log           all records at file_level
        {log_dir}/{name}_security.log  audit events only

    Args:
        name: Logger name and log file prefix
        log_dir: Directory for log files (None = console only)
        json_format: Use JSON format for file logs (default: True)
        json_console: Use JSON on the console too (containers)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        security_level: Level of the cloudrelay.security audit logger
        rotation_when: When to rotate logs - 'midnight', 'H', 'M'
        rotation_interval: Interval for rotation
        backup_count: Number of backup files to keep
        suppress_noisy: Quiet down SDK and HTTP client loggers
        console_stream: Console stream (default: stdout)

    Returns:
        Configured logger instance
    """
    console_level = parse_log_level(console_level)
    file_level = parse_log_level(file_level)

    console_handler = logging.StreamHandler(console_stream or sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(JSONFormatter() if json_console else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    # Remove handlers from a previous setup_logging() call
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(console_handler)

    security_logger = logging.getLogger(SECURITY_LOGGER_NAME)
    security_logger.setLevel(parse_log_level(security_level))
    for handler in security_logger.handlers[:]:
        security_logger.removeHandler(handler)
        handler.close()

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_formatter = (
            JSONFormatter()
            if json_format
            else logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
        )

        file_handler = TimedRotatingFileHandler(
            log_dir / f"{name}.log",
            when=rotation_when,
            interval=rotation_interval,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

        security_handler = TimedRotatingFileHandler(
            log_dir / f"{name}_security.log",
            when=rotation_when,
            interval=rotation_interval,
            backupCount=backup_count,
            encoding="utf-8",
        )
        security_handler.setFormatter(JSONFormatter())
        security_logger.addHandler(security_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug("Logging initialized", extra={"operation": "setup_logging"})
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.
    """
    return logging.getLogger(name)


__all__ = [
    "NOISY_LOGGERS",
    "SECURITY_LOGGER_NAME",
    "get_logger",
    "setup_logging",
]
