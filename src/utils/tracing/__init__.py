"""
OpenTelemetry tracing for load test runs.

Spans cover:
- Run phases (setup, the run itself, teardown)
- Backend calls (PostgreSQL statements, Kafka REST requests)
- Connection pool acquisition

Nothing is exported unless initialize_tracing() is called, which the CLI
does when --otlp-endpoint or OTLP_ENDPOINT is set.
"""

from .context import add_span_attributes, trace_operation
from .tracer import (
    get_tracer,
    initialize_tracing,
    is_tracing_enabled,
    setup_auto_instrumentation,
    shutdown_tracing,
)

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "is_tracing_enabled",
    "shutdown_tracing",
    "setup_auto_instrumentation",
    "trace_operation",
    "add_span_attributes",
]
