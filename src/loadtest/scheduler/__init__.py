"""
Virtual-user scheduling: load profiles, executor options and the VU runtime.
"""

from .options import (
    CONSTANT_VUS,
    EXECUTORS,
    PER_VU_ITERATIONS,
    RAMPING_VUS,
    ScenarioOptions,
)
from .scheduler import (
    ITERATION_DURATION,
    ITERATIONS,
    ITERATIONS_FAILED,
    ITERATIONS_INTERRUPTED,
    VUS,
    VUS_MAX,
    SchedulerResult,
    VirtualUserScheduler,
    VUState,
)
from .stages import RampProfile, Stage, max_target, parse_duration, target_at, total_duration
from .vu import VirtualUser

__all__ = [
    "CONSTANT_VUS",
    "EXECUTORS",
    "PER_VU_ITERATIONS",
    "RAMPING_VUS",
    "ScenarioOptions",
    "ITERATION_DURATION",
    "ITERATIONS",
    "ITERATIONS_FAILED",
    "ITERATIONS_INTERRUPTED",
    "VUS",
    "VUS_MAX",
    "SchedulerResult",
    "VirtualUserScheduler",
    "VUState",
    "RampProfile",
    "Stage",
    "max_target",
    "parse_duration",
    "target_at",
    "total_duration",
    "VirtualUser",
]
