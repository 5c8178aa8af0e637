"""
Executor configuration.

Three executors are accepted and all of them reduce to the same stage list
plus optional per-VU budgets:

- ``ramping-vus``: ``stages``, ``start_vus``, ``profile``, ``graceful_ramp_down``
- ``constant-vus``: ``vus`` for ``duration``
- ``per-vu-iterations``: ``vus`` each running ``iterations`` within ``max_duration``

Keys may be given in snake_case or camelCase (``startVUs``, ``maxDuration``,
``gracefulRampDown``, ``gracefulStop``).
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..errors import ConfigurationError
from .stages import RampProfile, Stage, max_target, parse_duration, total_duration

RAMPING_VUS = "ramping-vus"
CONSTANT_VUS = "constant-vus"
PER_VU_ITERATIONS = "per-vu-iterations"
EXECUTORS = (RAMPING_VUS, CONSTANT_VUS, PER_VU_ITERATIONS)

DEFAULT_GRACEFUL_STOP = 30.0
DEFAULT_GRACEFUL_RAMP_DOWN = 30.0
DEFAULT_MAX_DURATION = 600.0

_ALIASES = {
    "startVUs": "start_vus",
    "startVus": "start_vus",
    "maxDuration": "max_duration",
    "gracefulRampDown": "graceful_ramp_down",
    "gracefulStop": "graceful_stop",
}


def _normalize_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_ALIASES.get(key, key): value for key, value in data.items()}


def _positive_int(name: str, value: Any, minimum: int = 1) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number


@dataclass(frozen=True)
class ScenarioOptions:
    """Resolved executor settings consumed by the scheduler."""

    executor: str
    stages: tuple[Stage, ...]
    start_vus: int = 0
    profile: RampProfile = RampProfile.LINEAR
    iterations: int | None = None
    max_duration: float | None = None
    graceful_ramp_down: float = DEFAULT_GRACEFUL_RAMP_DOWN
    graceful_stop: float = DEFAULT_GRACEFUL_STOP

    @property
    def max_vus(self) -> int:
        return max_target(self.stages, self.start_vus)

    @property
    def duration(self) -> float:
        return total_duration(self.stages)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScenarioOptions":
        """
        Parse a scenario mapping.

        When ``executor`` is omitted it is inferred: ``stages`` means
        ramping-vus, ``iterations`` means per-vu-iterations, otherwise
        constant-vus.

        Raises:
            ConfigurationError: On unknown executors or invalid values
        """
        options = _normalize_keys(data)
        executor = options.get("executor")
        if executor is None:
            if "stages" in options:
                executor = RAMPING_VUS
            elif "iterations" in options:
                executor = PER_VU_ITERATIONS
            else:
                executor = CONSTANT_VUS
        if executor not in EXECUTORS:
            raise ConfigurationError(
                f"Unknown executor '{executor}', expected one of: {', '.join(EXECUTORS)}"
            )

        graceful_stop = parse_duration(options.get("graceful_stop", DEFAULT_GRACEFUL_STOP))

        if executor == RAMPING_VUS:
            raw_stages = options.get("stages")
            if not raw_stages:
                raise ConfigurationError("ramping-vus requires at least one stage")
            stages = tuple(
                s if isinstance(s, Stage) else Stage.from_dict(s) for s in raw_stages
            )
            try:
                profile = RampProfile(options.get("profile", RampProfile.LINEAR.value))
            except ValueError:
                raise ConfigurationError(
                    f"Unknown ramp profile '{options.get('profile')}', expected linear or step"
                ) from None
            return cls(
                executor=executor,
                stages=stages,
                start_vus=_positive_int("start_vus", options.get("start_vus", 0), minimum=0),
                profile=profile,
                graceful_ramp_down=parse_duration(
                    options.get("graceful_ramp_down", DEFAULT_GRACEFUL_RAMP_DOWN)
                ),
                graceful_stop=graceful_stop,
            )

        vus = _positive_int("vus", options.get("vus", 1))

        if executor == CONSTANT_VUS:
            if "duration" not in options:
                raise ConfigurationError("constant-vus requires a duration")
            return cls(
                executor=executor,
                stages=(Stage(parse_duration(options["duration"]), vus),),
                profile=RampProfile.STEP,
                graceful_stop=graceful_stop,
            )

        max_duration = parse_duration(options.get("max_duration", DEFAULT_MAX_DURATION))
        return cls(
            executor=executor,
            stages=(Stage(max_duration, vus),),
            profile=RampProfile.STEP,
            iterations=_positive_int("iterations", options.get("iterations", 1)),
            max_duration=max_duration,
            graceful_stop=graceful_stop,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "executor": self.executor,
            "stages": [{"duration": s.duration, "target": s.target} for s in self.stages],
            "start_vus": self.start_vus,
            "profile": self.profile.value,
            "iterations": self.iterations,
            "max_duration": self.max_duration,
            "graceful_ramp_down": self.graceful_ramp_down,
            "graceful_stop": self.graceful_stop,
            "max_vus": self.max_vus,
        }
