"""
Prometheus metrics describing the harness itself.

These track scheduler and run activity (not the workload's own series) and
are exported from the default registry when a Prometheus output is active.
"""

from collections.abc import Callable
from typing import TypeVar

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the one already registered under metric_name.

    Example:
        ITERATIONS = get_or_create_metric(
            lambda: Counter("loadtest_iterations_total", "Iterations", ["status"]),
            "loadtest_iterations_total"
        )
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


SCHEDULER_ACTIVE_VUS = get_or_create_metric(
    lambda: Gauge(
        "loadtest_active_vus",
        "Number of virtual users currently running iterations",
        ["workload"],
    ),
    "loadtest_active_vus",
)

SCHEDULER_TARGET_VUS = get_or_create_metric(
    lambda: Gauge(
        "loadtest_target_vus",
        "Concurrency the ramp profile currently asks for",
        ["workload"],
    ),
    "loadtest_target_vus",
)

ITERATIONS_TOTAL = get_or_create_metric(
    lambda: Counter(
        "loadtest_iterations_total",
        "Completed workload iterations",
        ["workload", "status"],  # success, failed, interrupted
    ),
    "loadtest_iterations",
)

RUN_PHASE_SECONDS = get_or_create_metric(
    lambda: Histogram(
        "loadtest_run_phase_seconds",
        "Wall time spent in each run phase",
        ["workload", "phase"],
        buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600, 1800],
    ),
    "loadtest_run_phase_seconds",
)

THRESHOLD_EVALUATIONS = get_or_create_metric(
    lambda: Counter(
        "loadtest_threshold_evaluations_total",
        "Threshold evaluations by outcome",
        ["workload", "outcome"],  # passed, failed
    ),
    "loadtest_threshold_evaluations",
)
