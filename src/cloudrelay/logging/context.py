"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_user_id: ContextVar[str] = ContextVar("user_id", default="")
_provider: ContextVar[str] = ContextVar("provider", default="")
_operation: ContextVar[str] = ContextVar("operation", default="")
_job_id: ContextVar[str] = ContextVar("job_id", default="")
_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def set_log_context(
    user_id: Optional[str] = None,
    provider: Optional[str] = None,
    operation: Optional[str] = None,
    job_id: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> None:
    if user_id is not None:
        _user_id.set(str(user_id))
    if provider is not None:
        _provider.set(provider)
    if operation is not None:
        _operation.set(operation)
    if job_id is not None:
        _job_id.set(job_id)
    if trace_id is not None:
        _trace_id.set(trace_id)


def get_log_context() -> Dict[str, str]:
    context = {
        "user_id": _user_id.get(),
        "provider": _provider.get(),
        "operation": _operation.get(),
        "job_id": _job_id.get(),
        "trace_id": _trace_id.get(),
    }

    # Add OpenTelemetry trace context if available
    try:
        from opentelemetry import trace

        span_ctx = trace.get_current_span().get_span_context()
        if span_ctx.is_valid:
            context["otel_trace_id"] = format(span_ctx.trace_id, "032x")
            context["otel_span_id"] = format(span_ctx.span_id, "016x")
    except ImportError:
        pass

    return context


def clear_log_context() -> None:
    _user_id.set("")
    _provider.set("")
    _operation.set("")
    _job_id.set("")
    _trace_id.set("")
