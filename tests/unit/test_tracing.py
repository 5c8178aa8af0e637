"""
Unit tests for tracing helpers

Tests verify:
- Spans created by trace_operation and their attributes
- Error recording without changing the raised exception
- add_span_attributes on recording and non-recording spans
- Sampling rate parsing from the environment
"""

import pytest
from unittest.mock import patch

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from utils.tracing import add_span_attributes, is_tracing_enabled, trace_operation
from utils.tracing.tracer import _sampling_rate_from_env


@pytest.fixture
def exporter():
    """Route trace_operation spans into an in-memory exporter"""
    memory = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(memory))
    with patch("utils.tracing.context.get_tracer", return_value=provider.get_tracer("tests")):
        yield memory


class TestTraceOperation:
    """Test the trace_operation context manager"""

    def test_span_has_name_kind_and_attributes(self, exporter):
        """Test that primitive attributes are kept and others stringified"""
        with trace_operation(
            "postgres_execute",
            kind=trace.SpanKind.CLIENT,
            db_statement="INSERT",
            rows=3,
            target=["a", "b"],
        ):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.name == "postgres_execute"
        assert span.kind == trace.SpanKind.CLIENT
        assert span.attributes["db_statement"] == "INSERT"
        assert span.attributes["rows"] == 3
        assert span.attributes["target"] == "['a', 'b']"

    def test_exception_is_recorded_and_reraised(self, exporter):
        """Test that errors mark the span and propagate unchanged"""
        with pytest.raises(KeyError):
            with trace_operation("kafka_produce"):
                raise KeyError("topic")

        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["error.type"] == "KeyError"
        assert span.events[0].name == "exception"

    def test_add_span_attributes_sets_on_current_span(self, exporter):
        """Test that attributes land on the enclosing span"""
        with trace_operation("loadtest_run"):
            add_span_attributes(exit_code=99, passed=False)

        (span,) = exporter.get_finished_spans()
        assert span.attributes["exit_code"] == 99
        assert span.attributes["passed"] is False

    def test_add_span_attributes_without_span_is_noop(self):
        """Test that no active span means nothing happens"""
        add_span_attributes(exit_code=0)

    def test_not_enabled_by_default(self):
        assert is_tracing_enabled() is False


class TestSamplingRate:
    """Test OTLP_SAMPLING_RATE parsing"""

    @pytest.mark.parametrize("raw,expected", [
        ("", 1.0),
        ("0.25", 0.25),
        ("5", 1.0),
        ("-1", 0.0),
        ("lots", 1.0),
    ])
    def test_sampling_rate(self, monkeypatch, raw, expected):
        monkeypatch.setenv("OTLP_SAMPLING_RATE", raw)

        assert _sampling_rate_from_env() == expected
