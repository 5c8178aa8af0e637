"""
Metric series accumulators and their immutable aggregates.

Each series owns its own lock so writers from different virtual users only
contend when they write the same series. Snapshots copy the raw state under
the lock and do all sorting/arithmetic outside of it.
"""

import math
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_MAX_TREND_SAMPLES = 100_000


class MetricType(str, Enum):
    """Kind of a metric series. Fixed once a series is created."""

    TREND = "trend"
    COUNTER = "counter"
    RATE = "rate"
    GAUGE = "gauge"


def _percentile(values: tuple[float, ...], pct: float) -> float:
    """Linear interpolation between closest ranks over sorted values."""
    k = (len(values) - 1) * (pct / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return values[int(k)]
    low, high = values[f], values[c]
    return min(max(low + (high - low) * (k - f), low), high)


@dataclass(frozen=True)
class TrendAggregate:
    """Summary of a distribution of observed values."""

    name: str
    count: int
    total: float
    min: float
    max: float
    values: tuple[float, ...] = field(repr=False)
    kind: MetricType = MetricType.TREND

    @property
    def defined(self) -> bool:
        return self.count > 0

    @property
    def avg(self) -> float:
        return self.total / self.count if self.count else 0.0

    @property
    def med(self) -> float:
        return self.percentile(50)

    @property
    def exact(self) -> bool:
        """True while every observed value is retained."""
        return len(self.values) == self.count

    def percentile(self, pct: float) -> float:
        """
        Return the pct-th percentile (0-100) of the observed distribution.

        Computed from the retained reservoir, so the result is always bounded
        by the observed minimum and maximum. Returns 0.0 when empty.
        """
        if not 0 <= pct <= 100:
            raise ValueError(f"Percentile must be within [0, 100], got {pct}")
        if not self.values:
            return 0.0
        if pct == 0:
            return self.min
        if pct == 100:
            return self.max
        return _percentile(self.values, pct)

    def value(self, aggregate: str, arg: float | None = None) -> float:
        if aggregate == "p":
            return self.percentile(arg)
        if aggregate == "count":
            return float(self.count)
        if aggregate in ("avg", "med"):
            return getattr(self, aggregate)
        if aggregate in ("min", "max"):
            return getattr(self, aggregate) if self.count else 0.0
        raise KeyError(aggregate)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "count": self.count,
            "avg": self.avg,
            "min": self.min if self.count else 0.0,
            "med": self.med,
            "max": self.max if self.count else 0.0,
            "p(90)": self.percentile(90),
            "p(95)": self.percentile(95),
            "p(99)": self.percentile(99),
        }


@dataclass(frozen=True)
class CounterAggregate:
    """Running sum of a counter and its per-second rate."""

    name: str
    count: float
    elapsed_seconds: float
    kind: MetricType = MetricType.COUNTER

    @property
    def defined(self) -> bool:
        return True

    @property
    def rate(self) -> float:
        return self.count / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0

    def value(self, aggregate: str, arg: float | None = None) -> float:
        if aggregate == "count":
            return float(self.count)
        if aggregate == "rate":
            return self.rate
        raise KeyError(aggregate)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "count": self.count, "rate": self.rate}


@dataclass(frozen=True)
class RateAggregate:
    """Share of true observations among all observations."""

    name: str
    passes: int
    total: int
    kind: MetricType = MetricType.RATE

    @property
    def defined(self) -> bool:
        return self.total > 0

    @property
    def fails(self) -> int:
        return self.total - self.passes

    @property
    def rate(self) -> float:
        # Zero observations report a neutral 0.0 with defined=False
        return self.passes / self.total if self.total else 0.0

    def value(self, aggregate: str, arg: float | None = None) -> float:
        if aggregate == "rate":
            return self.rate
        if aggregate == "count":
            return float(self.total)
        raise KeyError(aggregate)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "rate": self.rate,
            "passes": self.passes,
            "fails": self.fails,
            "defined": self.defined,
        }


@dataclass(frozen=True)
class GaugeAggregate:
    """Last value written to a gauge together with its extremes."""

    name: str
    last: float
    min: float
    max: float
    updates: int
    kind: MetricType = MetricType.GAUGE

    @property
    def defined(self) -> bool:
        return self.updates > 0

    def value(self, aggregate: str, arg: float | None = None) -> float:
        if aggregate == "value":
            return self.last
        if aggregate in ("min", "max"):
            return getattr(self, aggregate) if self.updates else 0.0
        raise KeyError(aggregate)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "value": self.last,
            "min": self.min if self.updates else 0.0,
            "max": self.max if self.updates else 0.0,
        }


class TrendSeries:
    """
    Distribution accumulator with bounded memory.

    Count, sum, min and max are exact. Quantiles come from a uniform
    reservoir sample (Algorithm R) that retains every value until
    max_samples observations have been seen.
    """

    kind = MetricType.TREND

    def __init__(
        self,
        name: str,
        max_samples: int = DEFAULT_MAX_TREND_SAMPLES,
        rng: random.Random | None = None,
    ):
        if max_samples < 1:
            raise ValueError("max_samples must be at least 1")
        self.name = name
        self.max_samples = max_samples
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._count = 0
        self._total = 0.0
        self._min = math.inf
        self._max = -math.inf
        self._reservoir: list[float] = []

    def add(self, value: float) -> None:
        value = float(value)
        with self._lock:
            self._count += 1
            self._total += value
            if value < self._min:
                self._min = value
            if value > self._max:
                self._max = value
            if len(self._reservoir) < self.max_samples:
                self._reservoir.append(value)
            else:
                j = self._rng.randrange(self._count)
                if j < self.max_samples:
                    self._reservoir[j] = value

    def snapshot(self, elapsed_seconds: float = 0.0) -> TrendAggregate:
        with self._lock:
            count, total = self._count, self._total
            low, high = self._min, self._max
            values = list(self._reservoir)
        values.sort()
        return TrendAggregate(
            name=self.name,
            count=count,
            total=total,
            min=low,
            max=high,
            values=tuple(values),
        )


class CounterSeries:
    """Monotonically non-decreasing sum."""

    kind = MetricType.COUNTER

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._total = 0.0

    def add(self, value: float) -> None:
        value = float(value)
        if value < 0:
            raise ValueError(f"Counter '{self.name}' cannot be decreased (got {value})")
        with self._lock:
            self._total += value

    def snapshot(self, elapsed_seconds: float = 0.0) -> CounterAggregate:
        with self._lock:
            total = self._total
        if total.is_integer():
            total = int(total)
        return CounterAggregate(name=self.name, count=total, elapsed_seconds=elapsed_seconds)


class RateSeries:
    """Counts true observations against all observations."""

    kind = MetricType.RATE

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._passes = 0
        self._total = 0

    def add(self, value: Any) -> None:
        with self._lock:
            self._total += 1
            if value:
                self._passes += 1

    def snapshot(self, elapsed_seconds: float = 0.0) -> RateAggregate:
        with self._lock:
            return RateAggregate(name=self.name, passes=self._passes, total=self._total)


class GaugeSeries:
    """Keeps the most recent value plus min/max seen."""

    kind = MetricType.GAUGE

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._last = 0.0
        self._min = math.inf
        self._max = -math.inf
        self._updates = 0

    def add(self, value: float) -> None:
        value = float(value)
        with self._lock:
            self._last = value
            self._updates += 1
            self._min = min(self._min, value)
            self._max = max(self._max, value)

    def snapshot(self, elapsed_seconds: float = 0.0) -> GaugeAggregate:
        with self._lock:
            return GaugeAggregate(
                name=self.name,
                last=self._last,
                min=self._min,
                max=self._max,
                updates=self._updates,
            )


SERIES_CLASSES = {
    MetricType.TREND: TrendSeries,
    MetricType.COUNTER: CounterSeries,
    MetricType.RATE: RateSeries,
    MetricType.GAUGE: GaugeSeries,
}
