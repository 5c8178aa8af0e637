"""
Metric collection for load test runs.

Provides:
- MetricSink: thread-safe, typed series store shared by all virtual users
- series aggregates (trend, counter, rate, gauge) used by thresholds and reports
- Prometheus exposition of workload series and harness runtime metrics

Usage:
    from loadtest.metrics import MetricSink

    sink = MetricSink()
    insert_duration = sink.trend("db_insert_duration")
    rows_inserted = sink.counter("rows_inserted")

    with sink.time("db_insert_duration"):
        cursor.execute(...)
    rows_inserted.add(1)

    print(sink.snapshot("db_insert_duration").percentile(95))
"""

from .prometheus import MetricsPublisher, PrometheusOutput
from .series import (
    CounterAggregate,
    GaugeAggregate,
    MetricType,
    RateAggregate,
    TrendAggregate,
)
from .sink import MetricSink, Sample, SeriesHandle

__all__ = [
    "MetricSink",
    "Sample",
    "SeriesHandle",
    "MetricType",
    "TrendAggregate",
    "CounterAggregate",
    "RateAggregate",
    "GaugeAggregate",
    "MetricsPublisher",
    "PrometheusOutput",
]
