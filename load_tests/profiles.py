"""
Load profiles: staged user targets and the thresholds a run must meet
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Stage:
    """Ramp linearly to `target` users over `duration` seconds"""

    duration: int
    target: int


@dataclass(frozen=True)
class Thresholds:
    """Pass criteria; a None limit is not checked"""

    p95_ms: float
    max_fail_ratio: float
    max_error_rate: Optional[float] = None


@dataclass(frozen=True)
class LoadProfile:
    name: str
    stages: Tuple[Stage, ...]
    thresholds: Thresholds

    @property
    def total_duration(self) -> int:
        return sum(stage.duration for stage in self.stages)

    @property
    def peak_users(self) -> int:
        return max(stage.target for stage in self.stages)


def minutes(value: float) -> int:
    return int(value * 60)


BASIC = LoadProfile(
    name="basic",
    stages=(
        Stage(minutes(2), 10),
        Stage(minutes(5), 10),
        Stage(minutes(2), 20),
        Stage(minutes(5), 20),
        Stage(minutes(2), 50),
        Stage(minutes(5), 50),
        Stage(minutes(5), 0),
    ),
    thresholds=Thresholds(p95_ms=500, max_fail_ratio=0.05, max_error_rate=0.05),
)

STRESS = LoadProfile(
    name="stress",
    stages=(
        Stage(minutes(2), 100),
        Stage(minutes(5), 100),
        Stage(minutes(2), 200),
        Stage(minutes(5), 200),
        Stage(minutes(2), 300),
        Stage(minutes(5), 300),
        Stage(minutes(10), 0),
    ),
    # Higher latency and error budget under stress
    thresholds=Thresholds(p95_ms=1000, max_fail_ratio=0.1),
)

SPIKE = LoadProfile(
    name="spike",
    stages=(
        Stage(10, 100),
        Stage(minutes(1), 100),
        Stage(10, 1000),
        Stage(minutes(3), 1000),
        Stage(10, 100),
        Stage(minutes(3), 100),
        Stage(10, 0),
    ),
    thresholds=Thresholds(p95_ms=2000, max_fail_ratio=0.2),
)

PROFILES = {profile.name: profile for profile in (BASIC, STRESS, SPIKE)}


def get_profile(name: str) -> LoadProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown load profile {name!r}, expected one of {', '.join(PROFILES)}") from None


def users_at(stages: List[Stage], run_time: float) -> Optional[int]:
    """
    Interpolated user count `run_time` seconds into the run

    Each stage ramps linearly from the previous stage's target, starting
    from zero users. Returns None once every stage has finished.
    """
    if run_time < 0:
        return 0

    previous = 0
    elapsed = 0.0
    for stage in stages:
        if run_time < elapsed + stage.duration:
            progress = (run_time - elapsed) / stage.duration
            return round(previous + (stage.target - previous) * progress)
        elapsed += stage.duration
        previous = stage.target
    return None


def spawn_rate_at(stages: List[Stage], run_time: float) -> float:
    """Users per second needed to follow the current stage's ramp"""
    previous = 0
    elapsed = 0.0
    for stage in stages:
        if run_time < elapsed + stage.duration:
            return max(1.0, abs(stage.target - previous) / stage.duration)
        elapsed += stage.duration
        previous = stage.target
    return 1.0
