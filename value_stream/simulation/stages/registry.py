"""
Stage Registry

Ordered list of stage configurations.

CRITICAL RULES:
- Shape is fixed: INTAKE first, SINK last, PROCESS in between
- Edits are applied between ticks, never during one
- Range edits auto-correct the opposite bound instead of failing
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from ...errors import ConfigurationError
from .config import (
    StageConfig,
    StageKind,
    StageRole,
    StepType,
    TimeRange,
    parse_capacity,
)

logger = logging.getLogger("StageRegistry")

_RANGE_FIELDS = ("process_time", "wait_time")
_EDITABLE_FIELDS = {
    "label",
    "step_type",
    "role",
    "process_time",
    "wait_time",
    "actor_capacity",
    "percent_complete_accurate",
    "cadence_hours",
}


class StageRegistry:
    """
    Ordered, validated collection of StageConfig.

    Each StageConfig is frozen; set_stage_config swaps in a new instance,
    so a tick that already read the list never sees a half-applied edit.
    """

    def __init__(self, stages: Sequence[StageConfig]):
        self._stages: Tuple[StageConfig, ...] = tuple(s.validate() for s in stages)
        self._check_shape()

    def _check_shape(self) -> None:
        if len(self._stages) < 2:
            raise ConfigurationError("A value stream needs at least an intake and a sink stage")
        if self._stages[0].kind != StageKind.INTAKE:
            raise ConfigurationError("First stage must be the intake stage")
        if self._stages[-1].kind != StageKind.SINK:
            raise ConfigurationError("Last stage must be the sink stage")
        for stage in self._stages[1:-1]:
            if stage.kind != StageKind.PROCESS:
                raise ConfigurationError(f"Stage {stage.id} must be a process stage")
        ids = [s.id for s in self._stages]
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"Duplicate stage ids: {ids}")

    # ========== Read Access ==========

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[StageConfig]:
        return iter(self._stages)

    def __getitem__(self, index: int) -> StageConfig:
        return self._stages[index]

    @property
    def stages(self) -> Tuple[StageConfig, ...]:
        return self._stages

    @property
    def sink_index(self) -> int:
        return len(self._stages) - 1

    def index_of(self, stage_id: str) -> int:
        for i, stage in enumerate(self._stages):
            if stage.id == stage_id:
                return i
        raise ConfigurationError(f"Unknown stage: {stage_id}")

    def get(self, stage_id: str) -> StageConfig:
        return self._stages[self.index_of(stage_id)]

    def index_of_role(self, role: StageRole) -> Optional[int]:
        """First stage index with the given role, or None."""
        for i, stage in enumerate(self._stages):
            if stage.role == role:
                return i
        return None

    # ========== Commands ==========

    def set_stage_config(self, stage_id: str, partial: Dict[str, Any]) -> StageConfig:
        """
        Apply a partial update to one stage.

        Args:
            stage_id: Stage to update
            partial: Subset of editable fields. Range fields accept a
                TimeRange or a dict with 'min' and/or 'max'.

        Returns:
            The new StageConfig

        Raises:
            ConfigurationError: unknown stage/field or invalid value
        """
        index = self.index_of(stage_id)
        current = self._stages[index]

        unknown = set(partial) - _EDITABLE_FIELDS
        if unknown:
            raise ConfigurationError(f"Cannot edit fields {sorted(unknown)} on stage {stage_id}")

        changes: Dict[str, Any] = {}
        for key, value in partial.items():
            if key in _RANGE_FIELDS:
                changes[key] = _merge_range(getattr(current, key), value)
            elif key == "actor_capacity":
                changes[key] = parse_capacity(value)
            elif key == "percent_complete_accurate":
                changes[key] = min(100.0, max(0.0, float(value)))
            elif key == "step_type":
                if current.kind != StageKind.PROCESS:
                    raise ConfigurationError(f"Stage {stage_id} is not a process stage")
                changes[key] = _parse_enum(StepType, value)
            elif key == "role":
                changes[key] = _parse_enum(StageRole, value)
            elif key == "cadence_hours":
                changes[key] = None if value is None else float(value)
            else:
                changes[key] = value

        updated = current.with_changes(**changes).validate()
        stages = list(self._stages)
        stages[index] = updated
        self._stages = tuple(stages)
        logger.info(f"Stage {stage_id} updated: {sorted(changes)}")
        return updated

    def to_list(self) -> List[StageConfig]:
        return list(self._stages)


def _merge_range(current: TimeRange, value: Any) -> TimeRange:
    """Merge a partial range edit, correcting whichever bound was not edited."""
    if isinstance(value, TimeRange):
        return TimeRange.corrected(value.min, value.max)
    if not isinstance(value, dict):
        raise ConfigurationError(f"Range value must be a dict with min/max, got {value!r}")
    has_min = value.get("min") is not None
    has_max = value.get("max") is not None
    new_min = float(value["min"]) if has_min else current.min
    new_max = float(value["max"]) if has_max else current.max
    prefer = "max" if has_max and not has_min else "min"
    return TimeRange.corrected(new_min, new_max, prefer=prefer)


def _parse_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        raise ConfigurationError(f"Invalid {enum_cls.__name__}: {value!r}") from None
