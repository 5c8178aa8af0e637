"""
Unit tests for metric series and their aggregates

Tests verify:
- Trend count/sum/min/max and percentile interpolation
- Reservoir bounding once max_samples is exceeded
- Counter monotonicity and rate
- Rate with zero observations
- Gauge last/min/max
"""

import random

import pytest

from loadtest.metrics.series import (
    CounterSeries,
    GaugeSeries,
    MetricType,
    RateSeries,
    TrendSeries,
)


class TestTrendSeries:
    """Test TrendSeries accumulator"""

    def test_basic_aggregates(self):
        series = TrendSeries("latency")
        for value in [10, 20, 30, 40]:
            series.add(value)

        agg = series.snapshot()

        assert agg.count == 4
        assert agg.total == 100
        assert agg.avg == 25
        assert agg.min == 10
        assert agg.max == 40
        assert agg.exact is True
        assert agg.kind is MetricType.TREND

    def test_percentile_linear_interpolation(self):
        series = TrendSeries("latency")
        for value in [1, 2, 3, 4]:
            series.add(value)

        agg = series.snapshot()

        assert agg.med == pytest.approx(2.5)
        assert agg.percentile(90) == pytest.approx(3.7)
        assert agg.percentile(0) == 1
        assert agg.percentile(100) == 4

    def test_single_value_percentiles(self):
        series = TrendSeries("latency")
        series.add(7.5)

        agg = series.snapshot()

        assert agg.percentile(1) == 7.5
        assert agg.percentile(99) == 7.5

    def test_percentile_out_of_range(self):
        series = TrendSeries("latency")
        series.add(1)

        with pytest.raises(ValueError):
            series.snapshot().percentile(101)

    def test_empty_trend_is_undefined(self):
        agg = TrendSeries("latency").snapshot()

        assert agg.defined is False
        assert agg.count == 0
        assert agg.percentile(95) == 0.0
        assert agg.value("max") == 0.0

    def test_reservoir_is_bounded_but_count_exact(self):
        series = TrendSeries("latency", max_samples=100, rng=random.Random(42))
        for value in range(1000):
            series.add(value)

        agg = series.snapshot()

        assert agg.count == 1000
        assert len(agg.values) == 100
        assert agg.exact is False
        assert agg.min == 0
        assert agg.max == 999
        assert agg.min <= agg.percentile(50) <= agg.max

    def test_invalid_max_samples(self):
        with pytest.raises(ValueError):
            TrendSeries("latency", max_samples=0)

    def test_value_lookup(self):
        series = TrendSeries("latency")
        for value in range(1, 101):
            series.add(value)

        agg = series.snapshot()

        assert agg.value("count") == 100
        assert agg.value("avg") == pytest.approx(50.5)
        assert agg.value("p", 95) == pytest.approx(95.05)
        with pytest.raises(KeyError):
            agg.value("rate")

    def test_to_dict(self):
        series = TrendSeries("latency")
        series.add(5)

        data = series.snapshot().to_dict()

        assert data["type"] == "trend"
        assert data["count"] == 1
        assert data["p(95)"] == 5


class TestCounterSeries:
    """Test CounterSeries accumulator"""

    def test_sum_and_rate(self):
        series = CounterSeries("rows")
        series.add(3)
        series.add(2)

        agg = series.snapshot(elapsed_seconds=10)

        assert agg.count == 5
        assert agg.rate == 0.5
        assert agg.value("count") == 5

    def test_rejects_negative_values(self):
        series = CounterSeries("rows")

        with pytest.raises(ValueError, match="cannot be decreased"):
            series.add(-1)

    def test_zero_elapsed_rate(self):
        series = CounterSeries("rows")
        series.add(1)

        assert series.snapshot(elapsed_seconds=0).rate == 0.0

    def test_count_is_int_when_whole(self):
        series = CounterSeries("rows")
        series.add(1.0)

        assert isinstance(series.snapshot().count, int)


class TestRateSeries:
    """Test RateSeries accumulator"""

    def test_rate(self):
        series = RateSeries("success")
        for outcome in [True, True, True, False]:
            series.add(outcome)

        agg = series.snapshot()

        assert agg.rate == 0.75
        assert agg.passes == 3
        assert agg.fails == 1
        assert agg.defined is True

    def test_zero_observations_is_neutral_and_undefined(self):
        agg = RateSeries("success").snapshot()

        assert agg.rate == 0.0
        assert agg.defined is False
        assert agg.to_dict()["defined"] is False


class TestGaugeSeries:
    """Test GaugeSeries accumulator"""

    def test_last_min_max(self):
        series = GaugeSeries("vus")
        for value in [3, 10, 1, 4]:
            series.add(value)

        agg = series.snapshot()

        assert agg.last == 4
        assert agg.min == 1
        assert agg.max == 10
        assert agg.value("value") == 4
        assert agg.value("max") == 10

    def test_unset_gauge(self):
        agg = GaugeSeries("vus").snapshot()

        assert agg.defined is False
        assert agg.to_dict()["min"] == 0.0
