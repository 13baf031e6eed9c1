"""
Work Items

Each item carries exactly one phase object. Fields that only make sense
in one state live on that state's phase, so "is this counter set yet"
never has to be asked.

CRITICAL RULES:
- One active phase per item per tick
- Processing.target_ticks >= 1
- Returning.target_index < stage_index (rework only moves backward)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Union


class ItemState(str, Enum):
    QUEUED = "queued"
    WAITING = "waiting"
    PROCESSING = "processing"
    TRANSFERRING = "transferring"
    RETURNING = "returning"
    DELIVERED = "delivered"


# ========== Phases ==========

@dataclass
class Queued:
    """Arrived at a stage, intake delay not yet cleared."""
    STATE: ClassVar[ItemState] = ItemState.QUEUED
    ticks_in_intake: int = 0
    intake_target_ticks: Optional[int] = None  # sampled once, on first need


@dataclass
class Waiting:
    """Intake cleared, waiting for capacity or a release gate."""
    STATE: ClassVar[ItemState] = ItemState.WAITING
    ticks_waiting: int = 0
    batch_released: bool = False  # large-batch threshold already met for this item
    suspended: Optional["Processing"] = None  # paused work, resumed with its progress


@dataclass
class Processing:
    STATE: ClassVar[ItemState] = ItemState.PROCESSING
    target_ticks: int = 1
    ticks_processing: int = 0
    progress: float = 0.0

    def __post_init__(self):
        assert self.target_ticks >= 1, "processing target must be at least one tick"


@dataclass
class Transferring:
    STATE: ClassVar[ItemState] = ItemState.TRANSFERRING
    ticks_remaining: int = 1


@dataclass
class Returning:
    STATE: ClassVar[ItemState] = ItemState.RETURNING
    target_index: int = 0
    ticks_remaining: int = 1


@dataclass
class Delivered:
    STATE: ClassVar[ItemState] = ItemState.DELIVERED
    at_tick: int = 0


Phase = Union[Queued, Waiting, Processing, Transferring, Returning, Delivered]


# ========== Work Item ==========

@dataclass
class WorkItem:
    """
    A unit of work flowing through the value stream.

    Owned by the simulation state; external readers only see ItemView copies.
    """
    id: str
    created_at_tick: int
    stage_index: int = 0
    phase: Phase = field(default_factory=Queued)

    # Flags
    is_defect: bool = False
    is_ambiguous: bool = False
    is_production_defect: bool = False
    is_rework_in_flight: bool = False
    batch_membership: bool = False

    # Time spent at the current stage (flushed to history on exit)
    stage_wait_ticks: int = 0
    stage_process_ticks: int = 0

    @property
    def state(self) -> ItemState:
        return self.phase.STATE

    @property
    def progress_percent(self) -> float:
        if isinstance(self.phase, Processing):
            return min(100.0, self.phase.progress)
        if isinstance(self.phase, Waiting) and self.phase.suspended is not None:
            return min(100.0, self.phase.suspended.progress)
        if isinstance(self.phase, Delivered):
            return 100.0
        return 0.0

    @property
    def return_target_stage_index(self) -> Optional[int]:
        if isinstance(self.phase, Returning):
            return self.phase.target_index
        return None

    @property
    def processing_target_ticks(self) -> Optional[int]:
        if isinstance(self.phase, Processing):
            return self.phase.target_ticks
        return None

    def enter_stage(self, index: int) -> None:
        """Arrive at a stage: reset per-stage counters and queue up."""
        self.stage_index = index
        self.phase = Queued()
        self.stage_wait_ticks = 0
        self.stage_process_ticks = 0
        self.batch_membership = False

    def view(self, stage_id: str) -> "ItemView":
        return ItemView(
            id=self.id,
            stage_index=self.stage_index,
            stage_id=stage_id,
            state=self.state,
            progress_percent=round(self.progress_percent, 2),
            is_defect=self.is_defect,
            is_ambiguous=self.is_ambiguous,
            is_production_defect=self.is_production_defect,
            is_rework_in_flight=self.is_rework_in_flight,
            batch_membership=self.batch_membership,
            created_at_tick=self.created_at_tick,
            return_target_stage_index=self.return_target_stage_index,
        )


@dataclass(frozen=True)
class ItemView:
    """Read-only copy of the fields a presentation layer needs."""
    id: str
    stage_index: int
    stage_id: str
    state: ItemState
    progress_percent: float
    is_defect: bool
    is_ambiguous: bool
    is_production_defect: bool
    is_rework_in_flight: bool
    batch_membership: bool
    created_at_tick: int
    return_target_stage_index: Optional[int] = None
