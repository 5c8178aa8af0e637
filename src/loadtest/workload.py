"""
Workload model and script loading.

A workload is either a ``Workload`` subclass or a plain module that exposes
``options``, an optional ``setup(ctx)`` / ``teardown(ctx, data)`` and a
``default(vu)`` iteration function:

    options = {"vus": 5, "duration": "30s", "thresholds": {"checks": ["rate>0.99"]}}

    def default(vu):
        vu.check(1 + 1, {"math works": lambda v: v == 2})

Scripts are resolved from a built-in name, a ``.py`` file path or a
``module:attr`` reference.
"""

import importlib
import importlib.util
import inspect
import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any

from .checks import CheckRecorder
from .config import HarnessConfig
from .errors import ConfigurationError
from .metrics import MetricSink
from .scheduler import ScenarioOptions, VirtualUser, parse_duration
from .thresholds import DEFAULT_EVALUATION_INTERVAL, Threshold, parse_thresholds

logger = logging.getLogger(__name__)

DEFAULT_SETUP_TIMEOUT = 60.0
DEFAULT_TEARDOWN_TIMEOUT = 60.0

_SCENARIO_KEYS = {
    "executor",
    "stages",
    "vus",
    "duration",
    "iterations",
    "start_vus",
    "startVUs",
    "profile",
    "max_duration",
    "maxDuration",
    "graceful_ramp_down",
    "gracefulRampDown",
    "graceful_stop",
    "gracefulStop",
}


@dataclass(frozen=True)
class WorkloadOptions:
    """Everything a workload declares about how it should be run."""

    scenario_name: str
    scenario: ScenarioOptions
    thresholds: tuple[Threshold, ...] = ()
    setup_timeout: float = DEFAULT_SETUP_TIMEOUT
    teardown_timeout: float = DEFAULT_TEARDOWN_TIMEOUT
    threshold_interval: float = DEFAULT_EVALUATION_INTERVAL

    @classmethod
    def from_dict(cls, options: Mapping[str, Any] | None) -> "WorkloadOptions":
        """
        Parse workload options.

        The scenario comes from ``scenarios`` (exactly one entry), from
        ``scenario``, or from executor keys at the top level.

        Raises:
            ConfigurationError: On invalid scenarios or thresholds
        """
        options = dict(options or {})
        name = "default"
        if "scenarios" in options:
            scenarios = options["scenarios"]
            if not isinstance(scenarios, Mapping) or len(scenarios) != 1:
                raise ConfigurationError("Exactly one scenario must be declared under 'scenarios'")
            name, scenario = next(iter(scenarios.items()))
        elif "scenario" in options:
            scenario = options["scenario"]
        else:
            scenario = {k: v for k, v in options.items() if k in _SCENARIO_KEYS}
            if not scenario:
                scenario = {"vus": 1, "iterations": 1}
        if not isinstance(scenario, Mapping):
            raise ConfigurationError(f"Scenario '{name}' must be a mapping")

        interval = parse_duration(
            options.get("threshold_interval", DEFAULT_EVALUATION_INTERVAL)
        )
        if interval <= 0:
            raise ConfigurationError("threshold_interval must be positive")

        return cls(
            scenario_name=name,
            scenario=ScenarioOptions.from_dict(scenario),
            thresholds=tuple(parse_thresholds(options.get("thresholds"))),
            setup_timeout=parse_duration(
                options.get("setup_timeout", options.get("setupTimeout", DEFAULT_SETUP_TIMEOUT))
            ),
            teardown_timeout=parse_duration(
                options.get(
                    "teardown_timeout", options.get("teardownTimeout", DEFAULT_TEARDOWN_TIMEOUT)
                )
            ),
            threshold_interval=interval,
        )


@dataclass
class RunContext:
    """Handed to setup, teardown and the per-VU resource hooks."""

    config: HarnessConfig
    sink: MetricSink
    checks: CheckRecorder
    workload: str
    log: logging.Logger = field(default_factory=lambda: logging.getLogger("loadtest.workload"))


class Workload:
    """
    Base class for workloads.

    Subclasses set ``name`` and ``options`` and implement ``iteration``.
    Backend clients a VU needs are built in ``open_vu`` and handed to the
    VU as ``vu.resources``; ``close_vu`` releases them after the run.
    """

    name = "workload"
    description = ""
    options: Mapping[str, Any] = {}

    def get_options(self, config: HarnessConfig) -> Mapping[str, Any]:
        """Options for this run; override when they depend on configuration."""
        return self.options

    def define_metrics(self, sink: MetricSink) -> None:
        """Declare the workload's series before any VU starts."""

    def setup(self, ctx: RunContext) -> Any:
        return None

    def open_vu(self, ctx: RunContext, vu: VirtualUser) -> Any:
        return None

    def iteration(self, vu: VirtualUser) -> None:
        raise NotImplementedError

    def close_vu(self, ctx: RunContext, vu: VirtualUser) -> None:
        close = getattr(vu.resources, "close", None)
        if callable(close):
            close()

    def teardown(self, ctx: RunContext, data: Any) -> None:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class FunctionWorkload(Workload):
    """Adapts a module of plain functions to the Workload interface."""

    def __init__(self, module: ModuleType, name: str | None = None):
        if not callable(getattr(module, "default", None)):
            raise ConfigurationError(f"Script '{module.__name__}' has no default(vu) function")
        self.module = module
        self.name = name or module.__name__.rsplit(".", 1)[-1]
        self.description = (inspect.getdoc(module) or "").split("\n", 1)[0]
        self.options = getattr(module, "options", {}) or {}

    def define_metrics(self, sink: MetricSink) -> None:
        hook = getattr(self.module, "define_metrics", None)
        if hook is not None:
            hook(sink)

    def setup(self, ctx: RunContext) -> Any:
        hook = getattr(self.module, "setup", None)
        return hook(ctx) if hook is not None else None

    def open_vu(self, ctx: RunContext, vu: VirtualUser) -> Any:
        hook = getattr(self.module, "open_vu", None)
        return hook(ctx, vu) if hook is not None else None

    def iteration(self, vu: VirtualUser) -> None:
        self.module.default(vu)

    def close_vu(self, ctx: RunContext, vu: VirtualUser) -> None:
        hook = getattr(self.module, "close_vu", None)
        if hook is not None:
            hook(ctx, vu)
        else:
            super().close_vu(ctx, vu)

    def teardown(self, ctx: RunContext, data: Any) -> None:
        hook = getattr(self.module, "teardown", None)
        if hook is not None:
            hook(ctx, data)


def _resolve(obj: Any, reference: str) -> Workload:
    if isinstance(obj, Workload):
        return obj
    if inspect.isclass(obj) and issubclass(obj, Workload):
        return obj()
    if isinstance(obj, ModuleType):
        candidate = getattr(obj, "workload", None)
        if candidate is not None:
            return _resolve(candidate, reference)
        return FunctionWorkload(obj)
    raise ConfigurationError(
        f"'{reference}' is not a Workload, Workload subclass or workload module"
    )


def _import_file(path: Path) -> ModuleType:
    module_name = f"loadtest_script_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load script {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise ConfigurationError(f"Script {path} failed to import: {type(e).__name__}: {e}") from e
    return module


def load_workload(script: str) -> Workload:
    """
    Resolve a workload reference.

    Args:
        script: Built-in workload name, path to a ``.py`` file, or
                ``package.module:attr``

    Raises:
        ConfigurationError: If the reference cannot be resolved or imported
    """
    from .workloads import BUILTIN_WORKLOADS

    if script in BUILTIN_WORKLOADS:
        return BUILTIN_WORKLOADS[script]()

    if script.endswith(".py"):
        path = Path(script)
        if not path.is_file():
            raise ConfigurationError(f"Script not found: {script}")
        workload = _resolve(_import_file(path.resolve()), script)
        if isinstance(workload, FunctionWorkload) and workload.name.startswith("loadtest_script_"):
            workload.name = path.stem
        return workload

    module_name, _, attr = script.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Unknown workload '{script}'. Built-in workloads: "
            f"{', '.join(sorted(BUILTIN_WORKLOADS))}"
        ) from e
    if not attr:
        return _resolve(module, script)
    try:
        obj = getattr(module, attr)
    except AttributeError:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attr}'") from None
    return _resolve(obj, script)
