"""
Stage definitions for the value stream.
"""

from .config import (
    HOURS_PER_TICK,
    StageConfig,
    StageKind,
    StageRole,
    StepType,
    TimeRange,
    hours_to_ticks,
    parse_capacity,
)
from .registry import StageRegistry

__all__ = [
    'HOURS_PER_TICK',
    'StageConfig',
    'StageKind',
    'StageRole',
    'StepType',
    'TimeRange',
    'hours_to_ticks',
    'parse_capacity',
    'StageRegistry',
]
