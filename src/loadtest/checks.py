"""
Non-fatal assertions made from inside iterations.

A check evaluates named predicates against a value and records each outcome
into the ``checks`` rate series and a per-name tally. Checks never raise and
never change control flow; a predicate that raises counts as a failure.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .metrics import MetricSink

logger = logging.getLogger(__name__)

CHECKS_SERIES = "checks"


@dataclass(frozen=True)
class CheckTally:
    name: str
    passes: int
    fails: int

    @property
    def total(self) -> int:
        return self.passes + self.fails

    @property
    def rate(self) -> float:
        return self.passes / self.total if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "passes": self.passes, "fails": self.fails, "rate": self.rate}


class CheckRecorder:
    """Run-wide check bookkeeping shared by every virtual user."""

    def __init__(self, sink: MetricSink):
        self.sink = sink
        self._tallies: dict[str, list[int]] = {}
        self._lock = threading.Lock()

    def check(self, value: Any, conditions: Mapping[str, Callable[[Any], Any]]) -> bool:
        """
        Evaluate every condition against ``value``.

        Returns:
            True when all conditions passed
        """
        all_passed = True
        for name, predicate in conditions.items():
            try:
                passed = bool(predicate(value))
            except Exception as e:
                logger.debug(f"Check '{name}' raised {type(e).__name__}: {e}")
                passed = False
            all_passed = all_passed and passed
            with self._lock:
                tally = self._tallies.setdefault(name, [0, 0])
                tally[0 if passed else 1] += 1
            self.sink.record(CHECKS_SERIES, passed)
        return all_passed

    def tallies(self) -> dict[str, CheckTally]:
        with self._lock:
            return {
                name: CheckTally(name=name, passes=t[0], fails=t[1])
                for name, t in self._tallies.items()
            }
