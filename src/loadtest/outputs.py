"""
Streaming outputs selected with ``--out``.

- ``json=FILE``: every sample as one JSON object per line, written by a
  background thread so VUs never block on disk I/O
- ``prometheus=PORT``: series mirrored into a Prometheus registry served
  over HTTP (see ``loadtest.metrics.prometheus``)
"""

import json
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any

from .errors import ConfigurationError
from .metrics import PrometheusOutput, Sample

logger = logging.getLogger(__name__)

_STOP = object()


class JSONOutput:
    """Appends samples to a newline-delimited JSON file."""

    def __init__(self, path: str, max_queue: int = 100_000):
        self.path = path
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self._thread: threading.Thread | None = None
        self._dropped = 0
        self.written = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        # Fail fast on unwritable paths
        with open(self.path, "w", encoding="utf-8"):
            pass
        self._thread = threading.Thread(target=self._writer, name="json-output", daemon=True)
        self._thread.start()
        logger.info(f"Writing samples to {self.path}")

    def __call__(self, sample: Sample) -> None:
        try:
            self._queue.put_nowait(sample)
        except queue.Full:
            self._dropped += 1

    def _writer(self) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            while True:
                item = self._queue.get()
                if item is _STOP:
                    break
                f.write(
                    json.dumps(
                        {
                            "type": "Point",
                            "metric": item.series,
                            "kind": item.kind.value,
                            "value": item.value,
                            "timestamp": item.timestamp,
                        }
                    )
                    + "\n"
                )
                self.written += 1

    def stop(self) -> None:
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None
        if self._dropped:
            logger.warning(f"JSON output dropped {self._dropped} samples (queue full)")


@dataclass(frozen=True)
class OutputSpec:
    kind: str
    target: str


def parse_output_spec(value: str) -> OutputSpec:
    """
    Parse an ``--out`` value of the form ``json=FILE`` or ``prometheus=PORT``.

    Raises:
        ConfigurationError: On unknown output kinds or malformed targets
    """
    kind, sep, target = value.partition("=")
    kind = kind.strip().lower()
    if kind not in ("json", "prometheus"):
        raise ConfigurationError(f"Unknown output '{kind}', expected json=FILE or prometheus=PORT")
    if kind == "prometheus":
        target = target.strip() or "9091"
        if not target.isdigit() or not 0 < int(target) < 65536:
            raise ConfigurationError(f"prometheus output needs a TCP port, got '{target}'")
    elif not sep or not target.strip():
        raise ConfigurationError("json output needs a file name: json=FILE")
    return OutputSpec(kind=kind, target=target.strip())


def create_output(spec: OutputSpec) -> Any:
    if spec.kind == "json":
        return JSONOutput(spec.target)
    return PrometheusOutput(port=int(spec.target))
