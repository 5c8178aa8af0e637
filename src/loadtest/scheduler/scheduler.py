"""
Virtual-user scheduler.

Runs one thread per virtual user. A controller loop in the calling thread
follows the stage profile: it starts VUs (lowest ordinals first) when the
target rises and deactivates them (highest ordinals first) when it falls.
Deactivated VUs finish their in-flight iteration; one that overruns
``graceful_ramp_down`` is interrupted through its cancel token.

When the profile ends or ``stop()`` is called no new iterations start, and
in-flight ones get ``graceful_stop`` seconds before their VUs are abandoned.
Python threads cannot be killed, so an abandoned VU keeps running in a
daemon thread with its cancel token set; samples it records after the
orchestrator closes the sink are discarded.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..checks import CheckRecorder
from ..config import HarnessConfig
from ..errors import IterationError
from ..metrics import MetricSink
from ..metrics.runtime import ITERATIONS_TOTAL, SCHEDULER_ACTIVE_VUS, SCHEDULER_TARGET_VUS
from .options import ScenarioOptions
from .stages import target_at
from .vu import VirtualUser

logger = logging.getLogger(__name__)

ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
ITERATIONS_FAILED = "iterations_failed"
ITERATIONS_INTERRUPTED = "iterations_interrupted"
VUS = "vus"
VUS_MAX = "vus_max"

DEFAULT_TICK = 0.05


class VUState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    INTERRUPTED = "interrupted"
    FINISHED = "finished"


class _Slot:
    """Scheduler-side bookkeeping for one virtual user."""

    def __init__(self, vu: VirtualUser):
        self.vu = vu
        self.state = VUState.IDLE
        self.thread: threading.Thread | None = None
        self.first_started: float | None = None
        self.deactivated_at: float | None = None
        self.iteration_started: float | None = None


@dataclass(frozen=True)
class SchedulerResult:
    stop_reason: str
    duration_seconds: float
    iterations: int
    iterations_failed: int
    iterations_interrupted: int
    max_vus: int
    max_active_vus: int
    abandoned_vus: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "stop_reason": self.stop_reason,
            "duration_seconds": self.duration_seconds,
            "iterations": self.iterations,
            "iterations_failed": self.iterations_failed,
            "iterations_interrupted": self.iterations_interrupted,
            "max_vus": self.max_vus,
            "max_active_vus": self.max_active_vus,
            "abandoned_vus": self.abandoned_vus,
        }


class VirtualUserScheduler:
    """
    Drives a workload's iteration function across a pool of virtual users.

    Example:
        >>> scheduler = VirtualUserScheduler(options, workload.iteration, sink, config)
        >>> result = scheduler.run()
        >>> print(f"{result.iterations} iterations, stopped by {result.stop_reason}")
    """

    def __init__(
        self,
        options: ScenarioOptions,
        iteration: Callable[[VirtualUser], Any],
        sink: MetricSink,
        config: HarnessConfig | None = None,
        data: Any = None,
        open_vu: Callable[[VirtualUser], Any] | None = None,
        close_vu: Callable[[VirtualUser], None] | None = None,
        checks: CheckRecorder | None = None,
        name: str = "workload",
        tick: float = DEFAULT_TICK,
    ):
        """
        Args:
            options: Executor settings (stages and per-VU budgets)
            iteration: Called once per iteration with the VirtualUser
            sink: Metric sink for built-in series
            config: Harness configuration handed to each VU
            data: Setup data handed to each VU
            open_vu: Builds a VU's resources before its first iteration
            close_vu: Releases a VU's resources after the run
            checks: Shared check recorder
            name: Workload name used in logs and runtime metrics
            tick: Controller loop interval in seconds
        """
        self.options = options
        self.iteration = iteration
        self.sink = sink
        self.config = config or HarnessConfig()
        self.data = data
        self.open_vu = open_vu
        self.close_vu = close_vu
        self.checks = checks or CheckRecorder(sink)
        self.name = name
        self.tick = tick

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._stopping = threading.Event()
        self._stop_reason: str | None = None
        self._slots: list[_Slot] = []
        self._started_at: float | None = None
        self._target = 0
        self._stage = 0
        self._published_active = -1
        self._iterations = 0
        self._failed = 0
        self._interrupted = 0
        self._max_active = 0
        self._abandoned = 0

    # ---- control -----------------------------------------------------------

    def stop(self, reason: str = "stopped") -> None:
        """Ask the run to end; safe to call from any thread."""
        with self._lock:
            if self._stop_reason is None:
                self._stop_reason = reason
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> SchedulerResult:
        """Run the profile to completion and return its tallies. Blocks."""
        if self._started_at is not None:
            raise RuntimeError("Scheduler can only be run once")
        self._started_at = time.monotonic()

        max_vus = self.options.max_vus
        self._slots = [
            _Slot(
                VirtualUser(
                    vu_id,
                    sink=self.sink,
                    config=self.config,
                    data=self.data,
                    checks=self.checks,
                    workload=self.name,
                )
            )
            for vu_id in range(1, max_vus + 1)
        ]
        for series in (ITERATIONS, ITERATIONS_FAILED, ITERATIONS_INTERRUPTED):
            self.sink.counter(series)
        self.sink.trend(ITERATION_DURATION)
        self.sink.gauge(VUS_MAX).add(max_vus)
        self._publish()

        logger.info(
            f"Starting {self.options.executor} for '{self.name}': "
            f"max_vus={max_vus}, duration={self.options.duration:.1f}s"
            + (f", iterations={self.options.iterations}" if self.options.iterations else "")
        )

        reason = "duration"
        try:
            while True:
                elapsed = time.monotonic() - self._started_at
                if self._stop_event.is_set():
                    reason = self._stop_reason or "stopped"
                    break
                if elapsed >= self.options.duration:
                    break

                self._target, self._stage = target_at(
                    self.options.stages, elapsed, self.options.start_vus, self.options.profile
                )
                self._reconcile(self._target)
                self._interrupt_overdue()
                self._publish()

                if self._all_finished():
                    reason = "iterations"
                    break
                self._stop_event.wait(min(self.tick, max(self.options.duration - elapsed, 0.001)))
        finally:
            self._graceful_stop()
            self._release_resources()
            self._target = 0
            self._publish()

        duration = time.monotonic() - self._started_at
        logger.info(
            f"Scheduler for '{self.name}' finished ({reason}) after {duration:.1f}s: "
            f"{self._iterations} iterations, {self._failed} failed, "
            f"{self._interrupted} interrupted"
        )
        return SchedulerResult(
            stop_reason=reason,
            duration_seconds=duration,
            iterations=self._iterations,
            iterations_failed=self._failed,
            iterations_interrupted=self._interrupted,
            max_vus=max_vus,
            max_active_vus=self._max_active,
            abandoned_vus=self._abandoned,
        )

    # ---- controller --------------------------------------------------------

    def _reconcile(self, target: int) -> None:
        now = time.monotonic()
        with self._lock:
            running = [s for s in self._slots if s.state is VUState.RUNNING]
            if len(running) < target:
                candidates = [
                    s for s in self._slots if s.state in (VUState.IDLE, VUState.STOPPING)
                ]
                for slot in candidates[: target - len(running)]:
                    self._activate(slot, now)
            elif len(running) > target:
                for slot in sorted(running, key=lambda s: s.vu.id, reverse=True)[
                    : len(running) - target
                ]:
                    slot.state = VUState.STOPPING
                    slot.deactivated_at = now
            active = sum(1 for s in self._slots if s.state is VUState.RUNNING)
            self._max_active = max(self._max_active, active)

    def _activate(self, slot: _Slot, now: float) -> None:
        if slot.state is VUState.STOPPING:
            # Still finishing its last iteration; keep the thread going
            slot.state = VUState.RUNNING
            slot.deactivated_at = None
            return
        slot.state = VUState.RUNNING
        slot.deactivated_at = None
        slot.vu._reset_cancel()
        if slot.first_started is None:
            slot.first_started = now
        slot.thread = threading.Thread(
            target=self._run_vu, args=(slot,), name=f"vu-{slot.vu.id}", daemon=True
        )
        slot.thread.start()

    def _interrupt_overdue(self) -> None:
        now = time.monotonic()
        with self._lock:
            for slot in self._slots:
                if (
                    slot.state is VUState.STOPPING
                    and slot.iteration_started is not None
                    and slot.deactivated_at is not None
                    and now - slot.deactivated_at >= self.options.graceful_ramp_down
                ):
                    self._interrupt(slot, "graceful ramp-down elapsed")

    def _interrupt(self, slot: _Slot, why: str) -> None:
        """Cancel the in-flight iteration of a slot. Caller holds the lock."""
        slot.state = VUState.INTERRUPTED
        slot.vu.cancel_token.set()
        self._interrupted += 1
        self.sink.record(ITERATIONS_INTERRUPTED, 1, kind="counter")
        ITERATIONS_TOTAL.labels(workload=self.name, status="interrupted").inc()
        slot.vu.log.warning(f"Interrupted iteration {slot.vu.iteration}: {why}")

    def _all_finished(self) -> bool:
        with self._lock:
            return bool(self._slots) and all(s.state is VUState.FINISHED for s in self._slots)

    def _publish(self) -> None:
        with self._lock:
            active = sum(1 for s in self._slots if s.state is VUState.RUNNING)
        SCHEDULER_ACTIVE_VUS.labels(workload=self.name).set(active)
        SCHEDULER_TARGET_VUS.labels(workload=self.name).set(self._target)
        if active != self._published_active:
            self._published_active = active
            self.sink.record(VUS, active, kind="gauge")

    def _graceful_stop(self) -> None:
        self._stopping.set()
        deadline = time.monotonic() + self.options.graceful_stop
        with self._lock:
            threads = [s.thread for s in self._slots if s.thread is not None]
        for thread in threads:
            thread.join(max(deadline - time.monotonic(), 0))

        with self._lock:
            leftovers = [s for s in self._slots if s.thread is not None and s.thread.is_alive()]
            for slot in leftovers:
                if slot.state is not VUState.INTERRUPTED and slot.iteration_started is not None:
                    self._interrupt(slot, "graceful stop elapsed")
                slot.vu.cancel_token.set()
                self._abandoned += 1
        if leftovers:
            logger.warning(
                f"Abandoned {len(leftovers)} VU(s) still running after "
                f"{self.options.graceful_stop:.1f}s graceful stop"
            )

    def _release_resources(self) -> None:
        if self.close_vu is None:
            return
        for slot in self._slots:
            vu = slot.vu
            if not vu.resources_open:
                continue
            if slot.thread is not None and slot.thread.is_alive():
                logger.debug(f"Leaving resources of abandoned VU {vu.id} open")
                continue
            try:
                self.close_vu(vu)
            except Exception as e:
                logger.warning(f"Failed to release resources of VU {vu.id}: {e}")
            vu.resources_open = False

    # ---- VU threads --------------------------------------------------------

    def _budget_exhausted(self, slot: _Slot) -> bool:
        if self.options.iterations is not None and slot.vu.completed >= self.options.iterations:
            return True
        if (
            self.options.max_duration is not None
            and slot.first_started is not None
            and time.monotonic() - slot.first_started >= self.options.max_duration
        ):
            return True
        return False

    def _run_vu(self, slot: _Slot) -> None:
        while True:
            with self._lock:
                if slot.state is not VUState.RUNNING or self._stopping.is_set():
                    if slot.state is not VUState.FINISHED:
                        slot.state = VUState.IDLE
                    slot.thread = None
                    slot.deactivated_at = None
                    return
                if self._budget_exhausted(slot):
                    slot.state = VUState.FINISHED
                    slot.thread = None
                    return
                slot.iteration_started = time.monotonic()
            self._iterate(slot)

    def _iterate(self, slot: _Slot) -> None:
        vu = slot.vu
        vu._begin_iteration()
        error: IterationError | None = None
        start = time.perf_counter()
        try:
            if self.open_vu is not None and not vu.resources_open:
                vu.resources = self.open_vu(vu)
                vu.resources_open = True
            self.iteration(vu)
        except Exception as e:
            error = IterationError(vu.id, vu.iteration, e)
        duration_ms = (time.perf_counter() - start) * 1000.0

        with self._lock:
            interrupted = slot.state is VUState.INTERRUPTED or vu.cancelled
            slot.iteration_started = None
            if not interrupted:
                self._iterations += 1
                if error is not None:
                    self._failed += 1

        if not interrupted:
            self.sink.record(ITERATIONS, 1, kind="counter")
            self.sink.record(ITERATION_DURATION, duration_ms, kind="trend")
            status = "success"
            if error is not None:
                status = "failed"
                self.sink.record(ITERATIONS_FAILED, 1, kind="counter")
                vu.log.error(str(error), error_type=type(error.cause).__name__)
                vu.log.debug("Iteration traceback", exc_info=error.cause)
            ITERATIONS_TOTAL.labels(workload=self.name, status=status).inc()

        vu._end_iteration()
        if vu.stop_requested:
            with self._lock:
                if slot.state in (VUState.RUNNING, VUState.STOPPING):
                    slot.state = VUState.FINISHED
            vu.log.debug("VU stopped by workload")

    # ---- status ------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Current scheduler status."""
        with self._lock:
            states = [s.state for s in self._slots]
            stats = {
                "name": self.name,
                "executor": self.options.executor,
                "stage": self._stage,
                "target_vus": self._target,
                "active_vus": states.count(VUState.RUNNING),
                "stopping_vus": states.count(VUState.STOPPING) + states.count(VUState.INTERRUPTED),
                "finished_vus": states.count(VUState.FINISHED),
                "max_vus": self.options.max_vus,
                "max_active_vus": self._max_active,
                "iterations": self._iterations,
                "iterations_failed": self._failed,
                "iterations_interrupted": self._interrupted,
                "elapsed_seconds": (
                    time.monotonic() - self._started_at if self._started_at is not None else 0.0
                ),
            }
        return stats
