"""
Error taxonomy for load test runs.

ConfigurationError and SetupError are fatal and stop a run before any
virtual user is scheduled. IterationError and TeardownError are recovered
locally and only recorded. ThresholdFailure describes a failed verdict: the
abort monitor logs it and RunResult.threshold_failure reports it.
"""


class LoadTestError(Exception):
    """Base exception for load test errors."""

    pass


class ConfigurationError(LoadTestError):
    """Raised for invalid thresholds, metric type conflicts or bad settings."""

    pass


class SetupError(LoadTestError):
    """Raised when the workload setup step fails or times out."""

    pass


class IterationError(LoadTestError):
    """Wraps a failure raised from inside a single workload iteration."""

    def __init__(self, vu_id: int, iteration: int, cause: BaseException):
        self.vu_id = vu_id
        self.iteration = iteration
        self.cause = cause
        super().__init__(
            f"VU {vu_id} iteration {iteration} failed: "
            f"{type(cause).__name__}: {cause}"
        )


class TeardownError(LoadTestError):
    """Raised when the workload teardown step fails or times out."""

    pass


class ThresholdFailure(LoadTestError):
    """Raised when one or more thresholds did not pass."""

    def __init__(self, failed: list):
        self.failed = failed
        names = ", ".join(f"{t.series}: {t.expression}" for t in failed)
        super().__init__(f"{len(failed)} threshold(s) failed: {names}")
