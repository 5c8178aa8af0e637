"""
Thread-safe metric sink shared by all virtual users of a run.

Virtual users record samples into named series; the sink creates series on
first use, fans samples out to registered outputs and answers aggregate
queries for thresholds and the end-of-run summary.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from .series import (
    DEFAULT_MAX_TREND_SAMPLES,
    SERIES_CLASSES,
    MetricType,
    TrendSeries,
)

logger = logging.getLogger(__name__)

SampleListener = Callable[["Sample"], None]


@dataclass(frozen=True)
class Sample:
    """A single observation handed to the sink."""

    series: str
    value: float
    timestamp: float
    kind: MetricType


class SeriesHandle:
    """Typed handle returned by the sink accessors (sink.trend(...) etc.)."""

    def __init__(self, sink: "MetricSink", name: str, kind: MetricType):
        self._sink = sink
        self.name = name
        self.kind = kind

    def add(self, value: Any) -> bool:
        return self._sink.record(self.name, value, kind=self.kind)

    def __repr__(self) -> str:
        return f"<{self.kind.value} {self.name}>"


class MetricSink:
    """
    Collects samples keyed by series name.

    Type conflicts and invalid values never raise on the write path: the
    sample is dropped and the problem is kept in ``configuration_errors``
    so the orchestrator can surface it when the run ends.
    """

    def __init__(self, max_trend_samples: int = DEFAULT_MAX_TREND_SAMPLES):
        self.max_trend_samples = max_trend_samples
        self._series: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._errors: list[str] = []
        self._listeners: list[SampleListener] = []
        self._started = time.monotonic()
        self._closed = False

    # ---- declaration -------------------------------------------------------

    def _get_or_create(self, name: str, kind: MetricType):
        series = self._series.get(name)
        if series is not None:
            return series
        with self._lock:
            series = self._series.get(name)
            if series is None:
                if kind is MetricType.TREND:
                    series = TrendSeries(name, max_samples=self.max_trend_samples)
                else:
                    series = SERIES_CLASSES[kind](name)
                self._series[name] = series
                logger.debug(f"Created {kind.value} series '{name}'")
            return series

    def declare(self, name: str, kind: MetricType | str) -> SeriesHandle:
        kind = MetricType(kind)
        series = self._get_or_create(name, kind)
        if series.kind is not kind:
            self._add_error(
                f"Series '{name}' is a {series.kind.value}, "
                f"cannot redeclare it as {kind.value}"
            )
        return SeriesHandle(self, name, kind)

    def trend(self, name: str) -> SeriesHandle:
        return self.declare(name, MetricType.TREND)

    def counter(self, name: str) -> SeriesHandle:
        return self.declare(name, MetricType.COUNTER)

    def rate(self, name: str) -> SeriesHandle:
        return self.declare(name, MetricType.RATE)

    def gauge(self, name: str) -> SeriesHandle:
        return self.declare(name, MetricType.GAUGE)

    # ---- write path --------------------------------------------------------

    def record(
        self,
        name: str,
        value: Any,
        kind: MetricType | str | None = None,
        timestamp: float | None = None,
    ) -> bool:
        """
        Record one observation.

        When ``kind`` is omitted it is inferred: booleans go to a rate series,
        numbers to the existing numeric series or a new trend.

        Returns:
            True if the sample was accepted, False if it was dropped
        """
        if self._closed:
            return False

        existing = self._series.get(name)
        if kind is not None:
            kind = MetricType(kind)
        elif isinstance(value, bool):
            kind = MetricType.RATE
        elif existing is not None and existing.kind is not MetricType.RATE:
            kind = existing.kind
        else:
            kind = MetricType.TREND

        series = existing or self._get_or_create(name, kind)
        if series.kind is not kind:
            self._add_error(
                f"Series '{name}' is a {series.kind.value}, "
                f"dropped {kind.value} sample {value!r}"
            )
            return False

        try:
            series.add(value)
        except (TypeError, ValueError) as e:
            self._add_error(f"Invalid sample for '{name}': {e}")
            return False

        if self._listeners:
            sample = Sample(
                series=name,
                value=float(bool(value)) if kind is MetricType.RATE else float(value),
                timestamp=timestamp if timestamp is not None else time.time(),
                kind=kind,
            )
            for listener in list(self._listeners):
                try:
                    listener(sample)
                except Exception as e:
                    logger.error(f"Sample listener failed for '{name}': {e}")
        return True

    @contextmanager
    def time(self, name: str) -> Iterator[None]:
        """Record the elapsed wall time of the block, in milliseconds, into a trend."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, (time.perf_counter() - start) * 1000.0, kind=MetricType.TREND)

    # ---- read path ---------------------------------------------------------

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._started

    def has_series(self, name: str) -> bool:
        return name in self._series

    def kinds(self) -> dict[str, MetricType]:
        with self._lock:
            return {name: s.kind for name, s in self._series.items()}

    def snapshot(self, name: str):
        """Return the current aggregate of a series, or None if it does not exist."""
        series = self._series.get(name)
        if series is None:
            return None
        return series.snapshot(self.elapsed_seconds)

    def snapshot_all(self) -> dict[str, Any]:
        with self._lock:
            series = list(self._series.values())
        elapsed = self.elapsed_seconds
        return {s.name: s.snapshot(elapsed) for s in series}

    # ---- outputs and lifecycle ---------------------------------------------

    def add_listener(self, listener: SampleListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SampleListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def configuration_errors(self) -> list[str]:
        with self._lock:
            return list(self._errors)

    def _add_error(self, message: str) -> None:
        with self._lock:
            first = message not in self._errors
            if first:
                self._errors.append(message)
        if first:
            logger.error(message)

    def close(self) -> None:
        """Stop accepting samples; late writes from cancelled VUs are discarded."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
