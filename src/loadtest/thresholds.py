"""
Pass/fail criteria over metric aggregates.

Thresholds are declared per series as expressions of the form
``<aggregate> <op> <number>``:

    thresholds = {
        "db_insert_duration": ["p(95)<50"],
        "kafka_reader_error_count": [{"threshold": "rate<0.01", "abort_on_fail": True}],
    }

Evaluation is a pure function of a snapshot mapping, so running it twice on
the same snapshots gives the same verdicts. Abort-on-fail thresholds are also
checked periodically while the run is in progress by ``AbortMonitor``.
"""

import logging
import operator
import re
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ConfigurationError
from .scheduler.stages import parse_duration

logger = logging.getLogger(__name__)

AGGREGATES = ("avg", "min", "max", "med", "count", "rate", "value", "p")

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_EXPRESSION = re.compile(
    r"^\s*(?P<aggregate>avg|min|max|med|count|rate|value|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)"
    r"\s*(?P<bound>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)\s*$"
)

DEFAULT_EVALUATION_INTERVAL = 2.0


@dataclass(frozen=True)
class Threshold:
    series: str
    expression: str
    aggregate: str
    op: str
    bound: float
    percentile: float | None = None
    abort_on_fail: bool = False
    delay_abort_eval: float = 0.0

    @classmethod
    def parse(
        cls,
        series: str,
        expression: str,
        abort_on_fail: bool = False,
        delay_abort_eval: float | str = 0.0,
    ) -> "Threshold":
        """
        Parse one threshold expression.

        Raises:
            ConfigurationError: If the expression does not match the grammar
        """
        if not isinstance(expression, str):
            raise ConfigurationError(
                f"Threshold for '{series}' must be a string, got {expression!r}"
            )
        match = _EXPRESSION.match(expression)
        if match is None:
            raise ConfigurationError(
                f"Invalid threshold '{expression}' for '{series}': expected "
                f"'<aggregate> <op> <number>' with aggregate one of "
                f"avg, min, max, med, count, rate, value, p(N)"
            )
        pct = match.group("pct")
        percentile = float(pct) if pct is not None else None
        if percentile is not None and not 0 <= percentile <= 100:
            raise ConfigurationError(
                f"Invalid threshold '{expression}' for '{series}': percentile must be within [0, 100]"
            )
        return cls(
            series=series,
            expression=expression.strip(),
            aggregate="p" if percentile is not None else match.group("aggregate"),
            op=match.group("op"),
            bound=float(match.group("bound")),
            percentile=percentile,
            abort_on_fail=bool(abort_on_fail),
            delay_abort_eval=parse_duration(delay_abort_eval),
        )

    @property
    def label(self) -> str:
        if self.aggregate == "p":
            return f"p({self.percentile:g})"
        return self.aggregate

    def evaluate(self, aggregate: Any | None) -> "ThresholdResult":
        """
        Evaluate against one series aggregate (None when the series never
        received a sample).
        """
        if aggregate is None:
            if self.aggregate == "count":
                return self._compare(0.0)
            return ThresholdResult(self, passed=True, observed=None, no_data=True)

        try:
            observed = aggregate.value(self.aggregate, self.percentile)
        except KeyError:
            return ThresholdResult(
                self,
                passed=False,
                observed=None,
                error=(
                    f"'{self.label}' is not available for {aggregate.kind.value} "
                    f"series '{self.series}'"
                ),
            )

        if self.aggregate != "count" and not aggregate.defined:
            return ThresholdResult(self, passed=True, observed=None, no_data=True)
        return self._compare(observed)

    def _compare(self, observed: float) -> "ThresholdResult":
        passed = OPERATORS[self.op](observed, self.bound)
        return ThresholdResult(self, passed=passed, observed=observed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "series": self.series,
            "expression": self.expression,
            "abort_on_fail": self.abort_on_fail,
            "delay_abort_eval": self.delay_abort_eval,
        }


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    passed: bool
    observed: float | None
    no_data: bool = False
    error: str | None = None

    @property
    def series(self) -> str:
        return self.threshold.series

    @property
    def expression(self) -> str:
        return self.threshold.expression

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.threshold.to_dict(),
            "passed": self.passed,
            "observed": self.observed,
            "no_data": self.no_data,
            "error": self.error,
        }


def parse_thresholds(declared: Mapping[str, Any] | None) -> list[Threshold]:
    """
    Parse a ``{series: [expression | {threshold, abort_on_fail, delay_abort_eval}]}``
    mapping. A single expression may be given instead of a list.

    Raises:
        ConfigurationError: On any invalid entry
    """
    thresholds: list[Threshold] = []
    for series, entries in (declared or {}).items():
        if isinstance(entries, (str, Mapping)):
            entries = [entries]
        for entry in entries:
            if isinstance(entry, Mapping):
                if "threshold" not in entry:
                    raise ConfigurationError(
                        f"Threshold entry for '{series}' is missing 'threshold': {dict(entry)}"
                    )
                thresholds.append(
                    Threshold.parse(
                        series,
                        entry["threshold"],
                        abort_on_fail=entry.get("abort_on_fail", entry.get("abortOnFail", False)),
                        delay_abort_eval=entry.get(
                            "delay_abort_eval", entry.get("delayAbortEval", 0.0)
                        ),
                    )
                )
            else:
                thresholds.append(Threshold.parse(series, entry))
    return thresholds


def evaluate_thresholds(
    thresholds: list[Threshold], snapshots: Mapping[str, Any]
) -> list[ThresholdResult]:
    """Evaluate every threshold against a snapshot mapping (series name -> aggregate)."""
    return [t.evaluate(snapshots.get(t.series)) for t in thresholds]


class AbortMonitor:
    """
    Background evaluation of abort-on-fail thresholds during a run.

    Every ``interval`` seconds the monitor snapshots the series referenced
    by abort-on-fail thresholds whose ``delay_abort_eval`` has elapsed. The
    first failure is passed to ``on_failure`` and the monitor stops.
    """

    def __init__(
        self,
        thresholds: list[Threshold],
        snapshot: Callable[[str], Any],
        on_failure: Callable[[list[ThresholdResult]], None],
        interval: float = DEFAULT_EVALUATION_INTERVAL,
    ):
        self.thresholds = [t for t in thresholds if t.abort_on_fail]
        self.snapshot = snapshot
        self.on_failure = on_failure
        self.interval = interval
        self.triggered: list[ThresholdResult] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._started_at: float | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.thresholds)

    def start(self) -> None:
        if not self.enabled or self._thread is not None:
            return
        self._started_at = time.monotonic()
        self._thread = threading.Thread(target=self._loop, name="threshold-monitor", daemon=True)
        self._thread.start()
        logger.debug(f"Monitoring {len(self.thresholds)} abort-on-fail threshold(s)")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)

    def check(self) -> list[ThresholdResult]:
        """Evaluate the eligible thresholds once; returns the failures."""
        if self._started_at is None:
            elapsed = 0.0
        else:
            elapsed = time.monotonic() - self._started_at
        eligible = [t for t in self.thresholds if elapsed >= t.delay_abort_eval]
        snapshots = {name: self.snapshot(name) for name in {t.series for t in eligible}}
        return [r for r in evaluate_thresholds(eligible, snapshots) if not r.passed]

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            failures = self.check()
            if failures:
                self.triggered = failures
                for result in failures:
                    logger.error(
                        f"Abort-on-fail threshold crossed: {result.series} {result.expression} "
                        f"(observed {result.observed})"
                    )
                self.on_failure(failures)
                return
