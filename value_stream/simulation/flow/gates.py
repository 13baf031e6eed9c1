"""
Admission Gates

CapacityGate: at most N items Processing per stage (or unbounded).
BatchGate: per-stage cadence countdown that releases queued items together.

CRITICAL RULES:
- Capacity counts are rebuilt from the item list at the start of every tick
- Capacity is not a reservation system: ties go to iteration order
- BatchGate is an explicit two-state machine: ARMED -> HOLDING -> ARMED
"""

import logging
from enum import Enum
from typing import Dict, Iterable

from ..stages import StageConfig
from .items import ItemState, WorkItem

logger = logging.getLogger("Gates")


class CapacityGate:
    """
    Per-tick processing counts, one per stage index.

    Counts are updated in place as items start and finish during the
    pass, so later items in the same pass see earlier admissions.
    """

    def __init__(self, items: Iterable[WorkItem] = ()):
        self._processing: Dict[int, int] = {}
        for item in items:
            if item.state == ItemState.PROCESSING:
                self.occupy(item.stage_index)

    def processing_at(self, stage_index: int) -> int:
        return self._processing.get(stage_index, 0)

    def admits(self, stage_index: int, stage: StageConfig) -> bool:
        if stage.is_unbounded:
            return True
        return self.processing_at(stage_index) < stage.actor_capacity

    def occupy(self, stage_index: int) -> None:
        self._processing[stage_index] = self._processing.get(stage_index, 0) + 1

    def release(self, stage_index: int) -> None:
        count = self._processing.get(stage_index, 0)
        self._processing[stage_index] = max(0, count - 1)


class BatchPhase(str, Enum):
    ARMED = "armed"      # counting down towards the next release
    HOLDING = "holding"  # window open, draining the queue


class BatchGate:
    """
    Cadence countdown for one batch stage.

    ARMED(remaining): decrements every tick. Reaching <= 0 with nobody
    queued rearms immediately; with items queued it opens the window
    and moves to HOLDING.

    HOLDING(overrun): window open. Keeps counting into negative
    territory and rearms once the queue is empty or the overrun passes
    GRACE_TICKS, so arrivals at the boundary cannot hold it open forever.
    """

    GRACE_TICKS = 2

    def __init__(self, stage_id: str, cadence_ticks: int):
        if cadence_ticks < 1:
            raise ValueError(f"Batch gate {stage_id}: cadence must be at least one tick")
        self.stage_id = stage_id
        self.cadence_ticks = cadence_ticks
        self.phase = BatchPhase.ARMED
        self.remaining = cadence_ticks
        self.overrun = 0
        self.releases = 0

    @property
    def countdown(self) -> int:
        """Ticks until release; zero or negative while the window is open."""
        if self.phase == BatchPhase.ARMED:
            return self.remaining
        return -self.overrun

    @property
    def is_open(self) -> bool:
        return self.phase == BatchPhase.HOLDING

    def decrement(self, queued: int) -> bool:
        """
        Advance one tick.

        Args:
            queued: Items currently queued at the stage awaiting release

        Returns:
            True if a release window opened this tick
        """
        if self.phase == BatchPhase.ARMED:
            self.remaining -= 1
            if self.remaining > 0:
                return False
            if queued == 0:
                self.rearm()
                return False
            self.phase = BatchPhase.HOLDING
            self.overrun = -self.remaining
            self.releases += 1
            logger.info(f"Batch window open at {self.stage_id}: releasing {queued} item(s)")
            return True

        self.overrun += 1
        if queued == 0 or self.overrun > self.GRACE_TICKS:
            self.rearm()
        return False

    def settle(self, queued: int) -> None:
        """Called after the flow pass: close the window once the queue drained."""
        if self.phase == BatchPhase.HOLDING and queued == 0:
            self.rearm()

    def rearm(self) -> None:
        self.phase = BatchPhase.ARMED
        self.remaining = self.cadence_ticks
        self.overrun = 0

    def set_cadence(self, cadence_ticks: int) -> None:
        """New cadence applies from the next rearm; a running countdown is only shortened."""
        if cadence_ticks < 1:
            raise ValueError(f"Batch gate {self.stage_id}: cadence must be at least one tick")
        self.cadence_ticks = cadence_ticks
        if self.phase == BatchPhase.ARMED and self.remaining > cadence_ticks:
            self.remaining = cadence_ticks
