"""
OpenTelemetry helpers.

Only the API is used here; spans are no-ops unless the host application
installs a tracer provider.
"""

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

TRACER_NAME = "builder_orchestrator"


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)


def record_error(span: Span, exc: BaseException, message: str) -> None:
    """Mark the span failed and attach the exception."""
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, f"{message}: {exc}"))
