"""
Prometheus exposition for load test runs.

MetricsPublisher starts the HTTP endpoint; PrometheusOutput mirrors every
workload series recorded in the sink into a Prometheus registry so a run can
be watched live from Grafana or the Prometheus UI.
"""

import logging
import re
import threading
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Summary,
    start_http_server,
)

from .series import MetricType
from .sink import Sample

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def prometheus_name(series: str, prefix: str = "loadtest_series_") -> str:
    """Map a series name to a valid Prometheus metric name."""
    return prefix + _INVALID_NAME_CHARS.sub("_", series)


class MetricsPublisher:
    """
    Starts an HTTP server that exposes metrics on /metrics.
    """

    def __init__(
        self,
        port: int = 9091,
        registry: Optional[CollectorRegistry] = None,
    ):
        """
        Initialize metrics publisher

        Args:
            port: Port to expose metrics on (default: 9091)
            registry: Custom Prometheus registry (default: global REGISTRY)
        """
        self.port = port
        self.registry = registry or REGISTRY
        self._server_started = False

    def start(self) -> None:
        """Start the metrics HTTP server"""
        if self._server_started:
            logger.warning(f"Metrics server already running on port {self.port}")
            return

        try:
            start_http_server(self.port, registry=self.registry)
            self._server_started = True
            logger.info(f"Metrics server started on port {self.port}")
        except OSError as e:
            logger.error(f"Cannot start metrics server on port {self.port}: {e}")
            raise RuntimeError(
                f"Metrics server port {self.port} is unavailable: {e}"
            ) from e

    def is_started(self) -> bool:
        """Check if metrics server is running"""
        return self._server_started


class PrometheusOutput:
    """
    Sample listener that mirrors sink series into Prometheus collectors.

    trend -> Summary, counter -> Counter, rate -> Counter labelled by
    outcome, gauge -> Gauge.
    """

    name = "prometheus"

    def __init__(
        self,
        port: int = 9091,
        registry: Optional[CollectorRegistry] = None,
        publisher: Optional[MetricsPublisher] = None,
    ):
        self.registry = registry or REGISTRY
        self.publisher = publisher or MetricsPublisher(port=port, registry=self.registry)
        self._collectors: dict[str, object] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        self.publisher.start()

    def _collector(self, sample: Sample):
        collector = self._collectors.get(sample.series)
        if collector is not None:
            return collector
        with self._lock:
            collector = self._collectors.get(sample.series)
            if collector is None:
                name = prometheus_name(sample.series)
                doc = f"{sample.kind.value} series {sample.series}"
                if sample.kind is MetricType.TREND:
                    collector = Summary(name, doc, registry=self.registry)
                elif sample.kind is MetricType.COUNTER:
                    collector = Counter(name, doc, registry=self.registry)
                elif sample.kind is MetricType.RATE:
                    collector = Counter(name, doc, ["outcome"], registry=self.registry)
                else:
                    collector = Gauge(name, doc, registry=self.registry)
                self._collectors[sample.series] = collector
            return collector

    def __call__(self, sample: Sample) -> None:
        collector = self._collector(sample)
        if sample.kind is MetricType.TREND:
            collector.observe(sample.value)
        elif sample.kind is MetricType.COUNTER:
            collector.inc(sample.value)
        elif sample.kind is MetricType.RATE:
            collector.labels(outcome="true" if sample.value else "false").inc()
        else:
            collector.set(sample.value)

    def stop(self) -> None:
        # The HTTP server thread is a daemon and exits with the process
        logger.debug("Prometheus output stopped")
