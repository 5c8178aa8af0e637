"""Virtual user: the object a workload iteration receives."""

import threading
from collections.abc import Callable, Mapping
from typing import Any

from utils.logging import ContextLogger

from ..checks import CheckRecorder
from ..config import HarnessConfig
from ..metrics import MetricSink


class VirtualUser:
    """
    One simulated client.

    Attributes:
        id: 1-based ordinal, stable for the whole run
        iteration: 0-based index of the current iteration
        resources: Whatever the workload's ``open_vu`` returned for this VU
        data: Value returned by the workload's setup step
        sink: Metric sink of the run
        config: Harness configuration
        log: Logger carrying the workload name, VU id and iteration
    """

    def __init__(
        self,
        vu_id: int,
        sink: MetricSink,
        config: HarnessConfig,
        data: Any = None,
        checks: CheckRecorder | None = None,
        workload: str = "workload",
    ):
        self.id = vu_id
        self.iteration = 0
        self.completed = 0
        self.resources: Any = None
        self.resources_open = False
        self.data = data
        self.sink = sink
        self.config = config
        self.log = ContextLogger("loadtest.vu", workload=workload, vu=vu_id)
        self._checks = checks or CheckRecorder(sink)
        self._stop_requested = False
        self._cancel = threading.Event()

    def stop(self) -> None:
        """End this VU after the current iteration. Not an error."""
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def cancelled(self) -> bool:
        """True once the scheduler has interrupted the in-flight iteration."""
        return self._cancel.is_set()

    @property
    def cancel_token(self) -> threading.Event:
        return self._cancel

    def sleep(self, seconds: float) -> bool:
        """
        Pause the iteration, waking early if the VU is cancelled.

        Returns:
            True if the full pause elapsed
        """
        if seconds <= 0:
            return not self._cancel.is_set()
        return not self._cancel.wait(seconds)

    def check(self, value: Any, conditions: Mapping[str, Callable[[Any], Any]]) -> bool:
        return self._checks.check(value, conditions)

    def _begin_iteration(self) -> None:
        self.log.update_context(iteration=self.iteration)

    def _end_iteration(self) -> None:
        self.iteration += 1
        self.completed += 1

    def _reset_cancel(self) -> None:
        self._cancel = threading.Event()

    def __repr__(self) -> str:
        return f"<VirtualUser {self.id} iteration={self.iteration}>"
