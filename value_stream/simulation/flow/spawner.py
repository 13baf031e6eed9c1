"""
Item Spawner

Two independent timers measured in simulation ticks:
- feature stream (base interval / feature multiplier, batch_size items per fire)
- defect stream (base interval / defect multiplier, one pre-tagged defect per fire)
"""

import logging
from typing import List

from .constraints import ConstraintSet
from .items import WorkItem

logger = logging.getLogger("ItemSpawner")


class ItemSpawner:
    """
    Creates new work items at the intake stage.

    Timers accumulate whole ticks and carry the remainder over, so a
    halved interval yields exactly twice as many spawns over a window.
    """

    def __init__(self, feature_interval_ticks: float = 4.0, defect_interval_ticks: float = 20.0):
        if feature_interval_ticks <= 0 or defect_interval_ticks <= 0:
            raise ValueError("Spawn intervals must be positive")
        self.feature_interval_ticks = feature_interval_ticks
        self.defect_interval_ticks = defect_interval_ticks
        self._feature_elapsed = 0.0
        self._defect_elapsed = 0.0
        self._next_id = 1

    def tick(self, tick: int, constraints: ConstraintSet) -> List[WorkItem]:
        """
        Advance both timers by one tick.

        Args:
            tick: Current simulation tick
            constraints: Active constraints (rate multipliers, batch size)

        Returns:
            Items spawned this tick (possibly empty)
        """
        spawned: List[WorkItem] = []

        feature_interval = self.feature_interval_ticks / constraints.feature_rate_multiplier()
        self._feature_elapsed += 1
        while self._feature_elapsed >= feature_interval:
            self._feature_elapsed -= feature_interval
            spawned.extend(self.create(tick, constraints.batch_size))

        defect_interval = self.defect_interval_ticks / constraints.defect_rate_multiplier()
        self._defect_elapsed += 1
        while self._defect_elapsed >= defect_interval:
            self._defect_elapsed -= defect_interval
            spawned.extend(self.create(tick, 1, is_defect=True))

        return spawned

    def create(self, tick: int, count: int = 1, is_defect: bool = False) -> List[WorkItem]:
        """Create `count` fresh items at stage 0, state Queued."""
        items = []
        for _ in range(count):
            items.append(WorkItem(id=f"item-{self._next_id}", created_at_tick=tick, is_defect=is_defect))
            self._next_id += 1
        if items:
            logger.debug(f"Spawned {len(items)} {'defect' if is_defect else 'feature'} item(s) at tick {tick}")
        return items

    @property
    def spawned_total(self) -> int:
        return self._next_id - 1
