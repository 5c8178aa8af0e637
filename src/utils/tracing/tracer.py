"""
Tracer setup for load test runs.

Tracing is opt-in. Until initialize_tracing() installs an SDK provider,
every span goes to the OpenTelemetry API's no-op tracer, so backends can
wrap their calls unconditionally.
"""

import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.psycopg2 import Psycopg2Instrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

logger = logging.getLogger(__name__)

TRACER_NAME = "perf-loadtest"

_tracer: trace.Tracer | None = None
_provider: TracerProvider | None = None
_instrumentors: list = []


def _sampling_rate_from_env() -> float:
    raw = os.getenv("OTLP_SAMPLING_RATE", "").strip()
    if not raw:
        return 1.0
    try:
        rate = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid OTLP_SAMPLING_RATE '{raw}'")
        return 1.0
    return min(max(rate, 0.0), 1.0)


def initialize_tracing(
    otlp_endpoint: str | None = None,
    service_name: str = TRACER_NAME,
    sampling_rate: float | None = None,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Install an SDK tracer provider exporting harness spans.

    Args:
        otlp_endpoint: OTLP gRPC collector (e.g. "localhost:4317"); falls
            back to the OTLP_ENDPOINT environment variable
        service_name: service.name resource attribute
        sampling_rate: Share of root spans to keep (0.0-1.0); defaults to
            OTLP_SAMPLING_RATE or 1.0
        console_export: Also print finished spans (TRACE_CONSOLE=true)

    Returns:
        The tracer used by trace_operation()
    """
    global _tracer, _provider

    if _provider is not None:
        logger.warning("Tracing already initialized, keeping existing provider")
        return _tracer

    from loadtest import __version__

    if sampling_rate is None:
        sampling_rate = _sampling_rate_from_env()
    otlp_endpoint = otlp_endpoint or os.getenv("OTLP_ENDPOINT")
    console_export = console_export or os.getenv("TRACE_CONSOLE", "").lower() == "true"

    provider = TracerProvider(
        resource=Resource(attributes={SERVICE_NAME: service_name, SERVICE_VERSION: __version__}),
        sampler=ParentBased(TraceIdRatioBased(sampling_rate)),
    )

    exporters = []
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        exporters.append(f"otlp({otlp_endpoint})")
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        exporters.append("console")
    if not exporters:
        logger.warning("No span exporters configured, spans will be dropped")

    trace.set_tracer_provider(provider)
    _provider = provider
    _tracer = provider.get_tracer(TRACER_NAME, __version__)

    logger.info(
        f"Tracing initialized for {service_name} "
        f"(exporters: {', '.join(exporters) or 'none'}, sampling: {sampling_rate})"
    )
    return _tracer


def get_tracer() -> trace.Tracer:
    """Return the harness tracer, or the API-level (no-op) one before setup."""
    if _tracer is not None:
        return _tracer
    return trace.get_tracer(TRACER_NAME)


def is_tracing_enabled() -> bool:
    return _provider is not None


def setup_auto_instrumentation() -> None:
    """Instrument psycopg2 and requests so driver calls nest under backend spans."""
    for instrumentor in (Psycopg2Instrumentor(), RequestsInstrumentor()):
        if instrumentor.is_instrumented_by_opentelemetry:
            continue
        instrumentor.instrument()
        _instrumentors.append(instrumentor)
        logger.debug(f"{type(instrumentor).__name__} enabled")


def shutdown_tracing() -> None:
    """
    Remove auto-instrumentation and flush pending spans.

    The CLI calls this after the summary is written; spans still queued in
    the batch processors are exported before it returns.
    """
    global _tracer, _provider

    while _instrumentors:
        _instrumentors.pop().uninstrument()

    if _provider is None:
        return
    try:
        _provider.force_flush()
        _provider.shutdown()
        logger.info("Tracing shutdown complete")
    except Exception as e:
        logger.error(f"Error during tracing shutdown: {e}")
    finally:
        _provider = None
        _tracer = None
