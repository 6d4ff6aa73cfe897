"""Context managers for structured logging."""

import logging
import time
from typing import Any, Dict, Optional

from cloudrelay.logging.context import get_log_context, set_log_context
from cloudrelay.logging.utilities import log_exception, log_with_context

_CONTEXT_KEYS = ("user_id", "provider", "operation", "job_id", "trace_id")


class LogContext:
    """
    Context manager for temporary log context.

    Usage:
        with LogContext(user_id=user.id, provider="google-drive"):
            # All logs in this block carry user_id and provider
            job.run()
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        job_id: Optional[str] = None,
        trace_id: Optional[str] = None,
    ):
        self.new_context = {
            "user_id": user_id,
            "provider": provider,
            "operation": operation,
            "job_id": job_id,
            "trace_id": trace_id,
        }
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        set_log_context(**{k: v for k, v in self.new_context.items() if v is not None})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**{key: self.old_context.get(key, "") for key in _CONTEXT_KEYS})
        return False


class OperationContext(LogContext):
    """
    Timed operation with automatic completion / failure logging.

    Usage:
        with OperationContext(logger, "token_refresh", user_id=user_id) as op:
            result = coordinator.refresh(...)
            op.add_context(result=result.status)
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.DEBUG,
        user_id: Optional[str] = None,
        provider: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(user_id=user_id, provider=provider, operation=operation)
        self.logger = logger
        self.operation = operation
        self.level = level
        self.context = context
        self._start_time: Optional[float] = None

    def __enter__(self) -> "OperationContext":
        super().__enter__()
        self._start_time = time.perf_counter()
        return self

    def add_context(self, **kwargs: Any) -> None:
        """Add context mid-operation."""
        self.context.update(kwargs)

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self._start_time) * 1000
        if exc_val is not None:
            log_exception(
                self.logger,
                exc_val,
                f"Failed: {self.operation}",
                duration_ms=round(duration_ms, 2),
                **self.context,
            )
        else:
            log_with_context(
                self.logger,
                self.level,
                f"Completed: {self.operation}",
                duration_ms=round(duration_ms, 2),
                **self.context,
            )
        return super().__exit__(exc_type, exc_val, exc_tb)
