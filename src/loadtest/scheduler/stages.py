"""
Load profile stages and ramp arithmetic.

A profile is an ordered list of stages, each a duration and a target number
of concurrent virtual users. ``target_at`` answers how many VUs should be
running at a given offset into the profile.
"""

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from ..errors import ConfigurationError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | int | float) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and strings such as ``"250ms"``, ``"5s"``,
    ``"1m30s"`` or ``"2h"``.

    Raises:
        ConfigurationError: If the value is negative or malformed
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip().lower().replace(" ", "")
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ConfigurationError(f"Invalid duration: {value!r}") from None
            seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)
    if seconds < 0 or math.isnan(seconds) or math.isinf(seconds):
        raise ConfigurationError(f"Duration must be a finite non-negative value: {value!r}")
    return seconds


class RampProfile(str, Enum):
    """How concurrency moves between stage targets."""

    LINEAR = "linear"
    STEP = "step"


@dataclass(frozen=True)
class Stage:
    """A time-bounded segment of a load profile."""

    duration: float
    target: int

    def __post_init__(self):
        if self.duration < 0:
            raise ConfigurationError(f"Stage duration must be non-negative, got {self.duration}")
        if isinstance(self.target, bool) or not isinstance(self.target, int) or self.target < 0:
            raise ConfigurationError(f"Stage target must be a non-negative integer, got {self.target!r}")

    @classmethod
    def from_dict(cls, data: dict) -> "Stage":
        try:
            return cls(duration=parse_duration(data["duration"]), target=int(data["target"]))
        except KeyError as e:
            raise ConfigurationError(f"Stage is missing '{e.args[0]}': {data}") from None
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid stage {data}: {e}") from None


def total_duration(stages: Sequence[Stage]) -> float:
    return sum(stage.duration for stage in stages)


def max_target(stages: Sequence[Stage], start_vus: int = 0) -> int:
    return max([start_vus, *(stage.target for stage in stages)])


def target_at(
    stages: Sequence[Stage],
    elapsed: float,
    start_vus: int = 0,
    profile: RampProfile = RampProfile.LINEAR,
) -> tuple[int, int]:
    """
    Desired concurrency at ``elapsed`` seconds into the profile.

    Linear profiles interpolate from the previous target (``start_vus`` for
    the first stage) to the stage target, rounding towards the previous
    target so the stage ends exactly on its own target. Step profiles jump
    to the stage target as soon as the stage begins.

    Returns:
        (target, stage_index); stage_index is len(stages) once the profile
        has ended, in which case target is the last stage's target.
    """
    previous = start_vus
    offset = 0.0
    for index, stage in enumerate(stages):
        end = offset + stage.duration
        if elapsed < end:
            if profile is RampProfile.STEP or stage.duration == 0:
                return stage.target, index
            fraction = (elapsed - offset) / stage.duration
            raw = previous + (stage.target - previous) * fraction
            if stage.target >= previous:
                return min(math.floor(raw), stage.target), index
            return max(math.ceil(raw), stage.target), index
        previous = stage.target
        offset = end
    return previous, len(stages)
