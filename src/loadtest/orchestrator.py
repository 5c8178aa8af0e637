"""
Run lifecycle: setup, scheduled load, teardown and the final verdict.

    INIT -> SETUP -> RUNNING -> (ABORTING) -> TEARDOWN -> EVALUATING -> DONE

Setup and teardown run exactly once, outside the VU pool, each bounded by a
timeout. A failed setup skips the load phase and teardown. A failed teardown
is recorded but does not change the verdict. ``abort()`` may be called from
any thread (the CLI calls it from its SIGINT handler).
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from opentelemetry import trace

from utils.tracing import add_span_attributes, trace_operation

from .checks import CheckRecorder, CheckTally
from .config import HarnessConfig
from .errors import (
    ConfigurationError,
    LoadTestError,
    SetupError,
    TeardownError,
    ThresholdFailure,
)
from .metrics import MetricSink
from .metrics.runtime import RUN_PHASE_SECONDS, THRESHOLD_EVALUATIONS
from .scheduler import SchedulerResult, VirtualUserScheduler
from .scheduler.scheduler import DEFAULT_TICK
from .thresholds import AbortMonitor, ThresholdResult, evaluate_thresholds
from .workload import RunContext, Workload, WorkloadOptions

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_THRESHOLDS_FAILED = 99
EXIT_CONFIGURATION_ERROR = 104
EXIT_EXTERNAL_ABORT = 105
EXIT_SETUP_ERROR = 107

ABORT_INTERRUPTED = "interrupted"
ABORT_THRESHOLD = "threshold"


class RunState(str, Enum):
    INIT = "init"
    SETUP = "setup"
    RUNNING = "running"
    ABORTING = "aborting"
    TEARDOWN = "teardown"
    EVALUATING = "evaluating"
    DONE = "done"


TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.INIT: frozenset({RunState.SETUP, RunState.DONE}),
    RunState.SETUP: frozenset({RunState.RUNNING, RunState.ABORTING, RunState.EVALUATING}),
    RunState.RUNNING: frozenset({RunState.ABORTING, RunState.TEARDOWN}),
    RunState.ABORTING: frozenset({RunState.TEARDOWN}),
    RunState.TEARDOWN: frozenset({RunState.EVALUATING}),
    RunState.EVALUATING: frozenset({RunState.DONE}),
    RunState.DONE: frozenset(),
}


class InvalidStateTransition(LoadTestError):
    """Raised when the run lifecycle is driven out of order."""

    pass


@dataclass(frozen=True)
class RunResult:
    """Immutable outcome of one run."""

    workload: str
    scenario: str | None
    metrics: Mapping[str, Any]
    thresholds: tuple[ThresholdResult, ...]
    checks: Mapping[str, CheckTally]
    configuration_errors: tuple[str, ...]
    setup_error: str | None
    teardown_error: str | None
    abort_reason: str | None
    scheduler: SchedulerResult | None
    state_history: tuple[tuple[str, str], ...]
    started_at: str
    finished_at: str
    duration_seconds: float
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def failed_thresholds(self) -> list[ThresholdResult]:
        return [t for t in self.thresholds if not t.passed]

    @property
    def exit_code(self) -> int:
        if self.configuration_errors:
            return EXIT_CONFIGURATION_ERROR
        if self.setup_error is not None:
            return EXIT_SETUP_ERROR
        if self.failed_thresholds or self.abort_reason == ABORT_THRESHOLD:
            return EXIT_THRESHOLDS_FAILED
        if self.abort_reason == ABORT_INTERRUPTED:
            return EXIT_EXTERNAL_ABORT
        return EXIT_OK

    @property
    def passed(self) -> bool:
        return self.exit_code == EXIT_OK

    @property
    def threshold_failure(self) -> ThresholdFailure | None:
        """The failed thresholds as an error, or None when all passed."""
        failed = self.failed_thresholds
        return ThresholdFailure(failed) if failed else None

    def to_dict(self) -> dict[str, Any]:
        failure = self.threshold_failure
        return {
            "workload": self.workload,
            "scenario": self.scenario,
            "passed": self.passed,
            "exit_code": self.exit_code,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": self.duration_seconds,
            "abort_reason": self.abort_reason,
            "threshold_failure": str(failure) if failure else None,
            "setup_error": self.setup_error,
            "teardown_error": self.teardown_error,
            "configuration_errors": list(self.configuration_errors),
            "options": dict(self.options),
            "scheduler": self.scheduler.to_dict() if self.scheduler else None,
            "metrics": {name: agg.to_dict() for name, agg in sorted(self.metrics.items())},
            "thresholds": [t.to_dict() for t in self.thresholds],
            "checks": {name: tally.to_dict() for name, tally in sorted(self.checks.items())},
            "state_history": [list(entry) for entry in self.state_history],
        }


def run_with_timeout(func: Callable[[], Any], timeout: float, name: str) -> Any:
    """
    Run ``func`` in a daemon thread and wait at most ``timeout`` seconds.

    A timed-out call keeps running in the background; it cannot be killed.

    Raises:
        TimeoutError: If the call did not finish in time
        Exception: Whatever ``func`` raised
    """
    future: Future = Future()

    def target():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func())
        except BaseException as e:
            future.set_exception(e)

    threading.Thread(target=target, name=name, daemon=True).start()
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        raise TimeoutError(f"{name} did not finish within {timeout:.1f}s") from None


class RunOrchestrator:
    """
    Owns one run of a workload.

    Example:
        >>> orchestrator = RunOrchestrator(load_workload("crud"), HarnessConfig.from_env())
        >>> result = orchestrator.run()
        >>> sys.exit(result.exit_code)
    """

    def __init__(
        self,
        workload: Workload,
        config: HarnessConfig | None = None,
        sink: MetricSink | None = None,
        tick: float = DEFAULT_TICK,
    ):
        self.workload = workload
        self.config = config or HarnessConfig()
        self.sink = sink or MetricSink()
        self.checks = CheckRecorder(self.sink)
        self.tick = tick
        self.scheduler: VirtualUserScheduler | None = None

        self._state = RunState.INIT
        self._history: list[tuple[str, str]] = [
            (RunState.INIT.value, datetime.now(UTC).isoformat())
        ]
        self._lock = threading.Lock()
        self._abort_reason: str | None = None

    @property
    def state(self) -> RunState:
        return self._state

    def _transition(self, new_state: RunState) -> None:
        with self._lock:
            if new_state not in TRANSITIONS[self._state]:
                raise InvalidStateTransition(
                    f"Cannot move run from {self._state.value} to {new_state.value}"
                )
            self._state = new_state
            self._history.append((new_state.value, datetime.now(UTC).isoformat()))
        logger.debug(f"Run state -> {new_state.value}")

    def abort(self, reason: str = ABORT_INTERRUPTED) -> None:
        """Stop the run early; the first reason given wins."""
        with self._lock:
            if self._abort_reason is None:
                self._abort_reason = reason
                logger.warning(f"Aborting run of '{self.workload.name}' ({reason})")
            scheduler = self.scheduler
            if self._state is RunState.RUNNING:
                self._state = RunState.ABORTING
                self._history.append((RunState.ABORTING.value, datetime.now(UTC).isoformat()))
        if scheduler is not None:
            scheduler.stop(self._abort_reason)

    @property
    def abort_reason(self) -> str | None:
        return self._abort_reason

    def _on_threshold_failure(self, failures: list[ThresholdResult]) -> None:
        logger.error(f"Abort-on-fail threshold tripped: {ThresholdFailure(failures)}")
        self.abort(ABORT_THRESHOLD)

    def _run_phase(self, phase: str, func: Callable[[], Any], timeout: float) -> Any:
        error_class = SetupError if phase == "setup" else TeardownError
        started = time.monotonic()
        with trace_operation(f"loadtest_{phase}", kind=trace.SpanKind.INTERNAL, workload=self.workload.name):
            try:
                return run_with_timeout(func, timeout, name=f"{self.workload.name}-{phase}")
            except TimeoutError as e:
                raise error_class(f"{phase} timed out after {timeout:.1f}s") from e
            except Exception as e:
                raise error_class(f"{phase} failed: {type(e).__name__}: {e}") from e
            finally:
                RUN_PHASE_SECONDS.labels(workload=self.workload.name, phase=phase).observe(
                    time.monotonic() - started
                )

    def run(self) -> RunResult:
        """Execute the whole lifecycle. Never raises for workload failures."""
        started_at = datetime.now(UTC)
        started = time.monotonic()
        configuration_errors: list[str] = []
        setup_error: str | None = None
        teardown_error: str | None = None
        scheduler_result: SchedulerResult | None = None
        options: WorkloadOptions | None = None
        results: list[ThresholdResult] = []

        with trace_operation("loadtest_run", kind=trace.SpanKind.INTERNAL, workload=self.workload.name):
            try:
                options = WorkloadOptions.from_dict(self.workload.get_options(self.config))
            except ConfigurationError as e:
                configuration_errors.append(str(e))
                logger.error(f"Invalid configuration for '{self.workload.name}': {e}")
            else:
                try:
                    self.workload.define_metrics(self.sink)
                except Exception as e:
                    options = None
                    configuration_errors.append(f"Declaring metrics failed: {type(e).__name__}: {e}")
                    logger.error(f"Could not declare metrics for '{self.workload.name}': {e}")

            if options is None or self._abort_reason is not None:
                self._transition(RunState.DONE)
                return self._result(
                    started_at, started, options, configuration_errors,
                    None, None, None, [],
                )

            ctx = RunContext(
                config=self.config,
                sink=self.sink,
                checks=self.checks,
                workload=self.workload.name,
            )

            self._transition(RunState.SETUP)
            logger.info(f"Running setup for '{self.workload.name}'")
            data = None
            try:
                data = self._run_phase("setup", lambda: self.workload.setup(ctx), options.setup_timeout)
            except SetupError as e:
                setup_error = str(e)
                logger.error(f"Setup of '{self.workload.name}' failed, no VUs will start: {e}")

            if setup_error is None:
                if self._abort_reason is not None:
                    self._transition(RunState.ABORTING)
                else:
                    scheduler_result = self._run_load(ctx, options, data)

                self._transition(RunState.TEARDOWN)
                logger.info(f"Running teardown for '{self.workload.name}'")
                try:
                    self._run_phase(
                        "teardown", lambda: self.workload.teardown(ctx, data), options.teardown_timeout
                    )
                except TeardownError as e:
                    teardown_error = str(e)
                    logger.error(f"Teardown of '{self.workload.name}' failed: {e}")

            self._transition(RunState.EVALUATING)
            self.sink.close()
            results = evaluate_thresholds(list(options.thresholds), self.sink.snapshot_all())
            for outcome in results:
                THRESHOLD_EVALUATIONS.labels(
                    workload=self.workload.name,
                    outcome="passed" if outcome.passed else "failed",
                ).inc()
                if not outcome.passed:
                    logger.warning(
                        f"Threshold failed: {outcome.series} {outcome.expression} "
                        f"(observed {outcome.observed}"
                        f"{'; ' + outcome.error if outcome.error else ''})"
                    )
            configuration_errors.extend(self.sink.configuration_errors)
            self._transition(RunState.DONE)

            result = self._result(
                started_at, started, options, configuration_errors,
                setup_error, teardown_error, scheduler_result, results,
            )
            add_span_attributes(exit_code=result.exit_code, passed=result.passed)
        logger.info(
            f"Run of '{self.workload.name}' finished: "
            f"{'PASSED' if result.passed else 'FAILED'} (exit code {result.exit_code})"
        )
        return result

    def _run_load(self, ctx: RunContext, options: WorkloadOptions, data: Any) -> SchedulerResult:
        scheduler = VirtualUserScheduler(
            options.scenario,
            self.workload.iteration,
            self.sink,
            config=self.config,
            data=data,
            open_vu=lambda vu: self.workload.open_vu(ctx, vu),
            close_vu=lambda vu: self.workload.close_vu(ctx, vu),
            checks=self.checks,
            name=self.workload.name,
            tick=self.tick,
        )
        with self._lock:
            self.scheduler = scheduler
            aborted = self._abort_reason is not None
        if aborted:
            scheduler.stop(self._abort_reason)

        self._transition(RunState.RUNNING)
        monitor = AbortMonitor(
            list(options.thresholds),
            self.sink.snapshot,
            self._on_threshold_failure,
            interval=options.threshold_interval,
        )
        started = time.monotonic()
        monitor.start()
        try:
            scheduler_result = scheduler.run()
        finally:
            monitor.stop()
            RUN_PHASE_SECONDS.labels(workload=self.workload.name, phase="run").observe(
                time.monotonic() - started
            )
        if self._abort_reason is not None and self._state is RunState.RUNNING:
            self._transition(RunState.ABORTING)
        return scheduler_result

    def _result(
        self,
        started_at: datetime,
        started: float,
        options: WorkloadOptions | None,
        configuration_errors: list[str],
        setup_error: str | None,
        teardown_error: str | None,
        scheduler_result: SchedulerResult | None,
        thresholds: list[ThresholdResult],
    ) -> RunResult:
        return RunResult(
            workload=self.workload.name,
            scenario=options.scenario_name if options else None,
            metrics=self.sink.snapshot_all(),
            thresholds=tuple(thresholds),
            checks=self.checks.tallies(),
            configuration_errors=tuple(configuration_errors),
            setup_error=setup_error,
            teardown_error=teardown_error,
            abort_reason=self._abort_reason,
            scheduler=scheduler_result,
            state_history=tuple(self._history),
            started_at=started_at.isoformat(),
            finished_at=datetime.now(UTC).isoformat(),
            duration_seconds=time.monotonic() - started,
            options=options.scenario.to_dict() if options else {},
        )
