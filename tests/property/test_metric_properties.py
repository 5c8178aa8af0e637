"""
Property-based tests for metric series and threshold evaluation.

Tests properties related to:
- Trend aggregates (count, bounds of percentiles, monotonic quantiles)
- Reservoir sampling keeping count/min/max exact
- Rate and counter arithmetic
- Threshold evaluation being a pure function of the snapshot
"""

import random

from hypothesis import given, settings
from hypothesis import strategies as st

from loadtest.metrics import MetricSink
from loadtest.metrics.series import CounterSeries, RateSeries, TrendSeries
from loadtest.thresholds import Threshold, evaluate_thresholds

# Latency-like samples; large magnitudes are fine, NaN/inf are not samples
sample_value = st.floats(min_value=-1e9, max_value=1e9, allow_nan=False, allow_infinity=False)
percentile = st.floats(min_value=0, max_value=100, allow_nan=False)


# Property: percentiles never leave the observed range
@given(values=st.lists(sample_value, min_size=1, max_size=200), pct=percentile)
def test_percentile_bounded_by_min_and_max(values, pct):
    """Any percentile lies within [min, max] of the observed values."""
    series = TrendSeries("latency")
    for value in values:
        series.add(value)

    agg = series.snapshot()

    assert agg.min <= agg.percentile(pct) <= agg.max
    assert agg.count == len(values)
    assert agg.min == min(values)
    assert agg.max == max(values)


# Property: higher percentiles are never smaller
@given(
    values=st.lists(sample_value, min_size=1, max_size=200),
    low=percentile,
    high=percentile,
)
def test_percentiles_are_monotonic(values, low, high):
    """p(low) <= p(high) whenever low <= high."""
    if low > high:
        low, high = high, low
    series = TrendSeries("latency")
    for value in values:
        series.add(value)

    agg = series.snapshot()

    assert agg.percentile(low) <= agg.percentile(high)


# Property: bounding memory never loses count, min or max
@settings(max_examples=50)
@given(
    values=st.lists(sample_value, min_size=1, max_size=500),
    max_samples=st.integers(min_value=1, max_value=50),
    seed=st.integers(min_value=0, max_value=2**32 - 1),
)
def test_reservoir_keeps_exact_count_and_extremes(values, max_samples, seed):
    """Count, min and max stay exact after the reservoir fills up."""
    series = TrendSeries("latency", max_samples=max_samples, rng=random.Random(seed))
    for value in values:
        series.add(value)

    agg = series.snapshot()

    assert agg.count == len(values)
    assert len(agg.values) == min(len(values), max_samples)
    assert agg.exact == (len(values) <= max_samples)
    assert agg.min == min(values)
    assert agg.max == max(values)
    assert agg.min <= agg.percentile(95) <= agg.max


# Property: rate is the share of true observations
@given(outcomes=st.lists(st.booleans(), max_size=300))
def test_rate_is_share_of_true(outcomes):
    """rate * total == passes and 0 <= rate <= 1."""
    series = RateSeries("errors")
    for outcome in outcomes:
        series.add(outcome)

    agg = series.snapshot()

    assert agg.total == len(outcomes)
    assert agg.passes == sum(outcomes)
    assert agg.fails == len(outcomes) - sum(outcomes)
    assert 0.0 <= agg.rate <= 1.0
    assert agg.defined == bool(outcomes)


# Property: counters only accumulate
@given(increments=st.lists(st.integers(min_value=0, max_value=10_000), max_size=100))
def test_counter_is_sum_of_increments(increments):
    """A counter equals the sum of non-negative increments."""
    series = CounterSeries("rows_inserted")
    for increment in increments:
        series.add(increment)

    assert series.snapshot().count == sum(increments)


# Property: evaluation is pure
@given(
    values=st.lists(st.floats(min_value=0, max_value=1000, allow_nan=False), max_size=50),
    bound=st.floats(min_value=0, max_value=1000, allow_nan=False),
)
def test_threshold_evaluation_is_idempotent(values, bound):
    """Evaluating the same snapshots twice gives identical results."""
    sink = MetricSink()
    sink.trend("latency")
    for value in values:
        sink.record("latency", value)
    thresholds = [
        Threshold.parse("latency", f"p(95)<{bound}"),
        Threshold.parse("latency", f"avg<={bound}"),
        Threshold.parse("latency", f"count>={len(values)}"),
        Threshold.parse("missing", "count==0"),
    ]
    snapshots = sink.snapshot_all()

    first = evaluate_thresholds(thresholds, snapshots)
    second = evaluate_thresholds(thresholds, snapshots)

    assert first == second
    assert first[2].passed is True
    assert first[3].passed is True


# Property: a trend threshold agrees with the aggregate it reads
@given(values=st.lists(st.integers(min_value=0, max_value=500), min_size=1, max_size=100))
def test_max_threshold_matches_aggregate(values):
    """max<B passes exactly when every observed value is below B."""
    series = TrendSeries("latency")
    for value in values:
        series.add(value)
    agg = series.snapshot()

    result = Threshold.parse("latency", "max<250").evaluate(agg)

    assert result.passed == all(v < 250 for v in values)
    assert result.observed == max(values)
