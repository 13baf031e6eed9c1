"""
Stage Configuration Types

CRITICAL RULES:
- Stage configs are immutable; edits produce a new config
- id/label are opaque, behaviour hangs off kind, step_type and role
- actor_capacity None means unbounded concurrent processing
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from ...errors import ConfigurationError

HOURS_PER_TICK = 0.5  # 2 ticks = 1 simulated hour


class StageKind(str, Enum):
    INTAKE = "intake"
    PROCESS = "process"
    SINK = "sink"


class StepType(str, Enum):
    MANUAL = "manual"
    AUTOMATED = "automated"
    BATCH = "batch"


class StageRole(str, Enum):
    """
    Functional role used by constraint and rework rules.

    Replaces matching on stage ids like 'dev' or 'test'.
    """
    GENERIC = "generic"
    REFINEMENT = "refinement"
    DEVELOPMENT = "development"
    REVIEW = "review"
    TESTING = "testing"
    DEPLOYMENT = "deployment"


def hours_to_ticks(hours: float) -> int:
    """Convert simulated hours to whole ticks (minimum 1)."""
    return max(1, int(round(hours / HOURS_PER_TICK)))


@dataclass(frozen=True)
class TimeRange:
    """Closed interval of simulated hours. Invariant: 0 <= min <= max."""
    min: float = 0.0
    max: float = 0.0

    @classmethod
    def corrected(cls, min_hours: float, max_hours: float, prefer: str = "min") -> "TimeRange":
        """
        Build a range, auto-correcting an inverted pair.

        Args:
            min_hours: Lower bound (negative values clamp to 0)
            max_hours: Upper bound (negative values clamp to 0)
            prefer: Which bound wins when inverted ('min' or 'max')
        """
        lo = max(0.0, float(min_hours))
        hi = max(0.0, float(max_hours))
        if lo > hi:
            if prefer == "max":
                lo = hi
            else:
                hi = lo
        return cls(lo, hi)

    @property
    def is_zero(self) -> bool:
        return self.min == 0 and self.max == 0


@dataclass(frozen=True)
class StageConfig:
    """
    One stage of the value stream.

    Exactly one INTAKE stage comes first and one SINK stage last;
    PROCESS stages sit in between.
    """
    id: str
    label: str
    kind: StageKind = StageKind.PROCESS
    step_type: Optional[StepType] = None
    role: StageRole = StageRole.GENERIC
    process_time: TimeRange = field(default_factory=TimeRange)
    wait_time: TimeRange = field(default_factory=TimeRange)
    actor_capacity: Optional[int] = None
    percent_complete_accurate: float = 100.0
    cadence_hours: Optional[float] = None

    @property
    def is_intake(self) -> bool:
        return self.kind == StageKind.INTAKE

    @property
    def is_sink(self) -> bool:
        return self.kind == StageKind.SINK

    @property
    def is_batch(self) -> bool:
        return self.kind == StageKind.PROCESS and self.step_type == StepType.BATCH

    @property
    def is_unbounded(self) -> bool:
        return self.actor_capacity is None

    @property
    def rework_probability(self) -> float:
        """Probability (0-1) that output from this stage needs rework."""
        return (100.0 - self.percent_complete_accurate) / 100.0

    def cadence_ticks(self) -> int:
        if not self.cadence_hours:
            raise ConfigurationError(f"Stage {self.id} has no cadence")
        return hours_to_ticks(self.cadence_hours)

    def validate(self) -> "StageConfig":
        """
        Check the configuration-boundary invariants.

        Returns:
            self, so the call can be chained

        Raises:
            ConfigurationError: capacity < 1, batch stage without a
                positive cadence, or an inverted time range
        """
        if self.actor_capacity is not None and self.actor_capacity < 1:
            raise ConfigurationError(
                f"Stage {self.id}: actor_capacity must be >= 1 or unbounded, got {self.actor_capacity}"
            )
        if self.is_batch and (self.cadence_hours is None or self.cadence_hours <= 0):
            raise ConfigurationError(f"Stage {self.id}: batch stages need cadence_hours > 0")
        for name, rng in (("process_time", self.process_time), ("wait_time", self.wait_time)):
            if rng.min < 0 or rng.min > rng.max:
                raise ConfigurationError(f"Stage {self.id}: invalid {name} {rng}")
        if not 0 <= self.percent_complete_accurate <= 100:
            raise ConfigurationError(f"Stage {self.id}: percent_complete_accurate outside [0, 100]")
        if self.kind == StageKind.PROCESS and self.step_type is None:
            raise ConfigurationError(f"Stage {self.id}: process stages need a step_type")
        return self

    def with_changes(self, **changes) -> "StageConfig":
        return replace(self, **changes)


def parse_capacity(value) -> Optional[int]:
    """
    Normalise an actor capacity value.

    None, 'unbounded', 'infinity' and float('inf') all mean unbounded.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if value.strip().lower() in ("unbounded", "infinity", "inf", ""):
            return None
        value = float(value)
    if isinstance(value, float):
        if math.isinf(value):
            return None
        value = int(value)
    if value < 1:
        raise ConfigurationError(f"actor_capacity must be >= 1 or unbounded, got {value}")
    return int(value)
