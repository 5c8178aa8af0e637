"""
Span helpers used around backend calls and run phases.

Attribute values are passed through when OpenTelemetry accepts them
(str, bool, int, float) and stringified otherwise.
"""

from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from .tracer import get_tracer

_PRIMITIVES = (str, bool, int, float)


def _attribute(value):
    return value if isinstance(value, _PRIMITIVES) else str(value)


@contextmanager
def trace_operation(
    operation_name: str,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    **attributes
):
    """
    Run the body inside a span named operation_name.

    Exceptions are recorded on the span (error.type plus an ERROR status)
    and re-raised unchanged, so callers see exactly what they would see
    without tracing.

    Example:
        >>> with trace_operation("loadtest_setup", workload="crud"):
        ...     data = workload.setup(config)
    """
    tracer = get_tracer()

    with tracer.start_as_current_span(
        operation_name,
        kind=kind,
        attributes={key: _attribute(value) for key, value in attributes.items()},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("error.type", type(e).__name__)
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def add_span_attributes(**attributes):
    """Set attributes on the current span if it is being recorded."""
    current_span = trace.get_current_span()
    if current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, _attribute(value))
