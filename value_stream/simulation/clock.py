"""
Simulation Clock

Maps wall-clock time onto whole simulation ticks.

PAUSED -> RUNNING -> PAUSED. No ticks are due while paused, and the
baseline is reset on resume so a long pause never turns into a burst.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger("SimulationClock")


class RunState(Enum):
    PAUSED = 0   # no ticks due, state frozen
    RUNNING = 1  # ticks due every tick_seconds / speed


class SimulationClock:
    MIN_SPEED = 1.0
    MAX_SPEED = 30.0

    def __init__(self, tick_seconds: float = 0.5, speed_multiplier: float = 1.0, max_catch_up_ticks: int = 10):
        """
        Args:
            tick_seconds: Wall-clock seconds per tick at 1x speed
            speed_multiplier: Initial speed (clamped to [1, 30])
            max_catch_up_ticks: Upper bound on ticks returned by one advance()
        """
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self.tick_seconds = tick_seconds
        self.speed_multiplier = self.clamp_speed(speed_multiplier)
        self.max_catch_up_ticks = max_catch_up_ticks
        self.run_state = RunState.RUNNING
        self._last_tick_at: Optional[float] = None

    @classmethod
    def clamp_speed(cls, value: float) -> float:
        return min(cls.MAX_SPEED, max(cls.MIN_SPEED, float(value)))

    @property
    def tick_interval(self) -> float:
        """Wall-clock seconds between ticks at the current speed."""
        return self.tick_seconds / self.speed_multiplier

    @property
    def is_running(self) -> bool:
        return self.run_state == RunState.RUNNING

    def set_speed(self, value: float) -> float:
        self.speed_multiplier = self.clamp_speed(value)
        return self.speed_multiplier

    def set_running(self, running: bool) -> None:
        new_state = RunState.RUNNING if running else RunState.PAUSED
        if new_state != self.run_state:
            logger.info(f"Clock {self.run_state.name} -> {new_state.name}")
        self.run_state = new_state
        self._last_tick_at = None

    def advance(self, now: float) -> int:
        """
        Number of ticks due at wall-clock time `now`.

        The first call after start or resume only sets the baseline.
        """
        if not self.is_running:
            return 0
        if self._last_tick_at is None:
            self._last_tick_at = now
            return 0

        interval = self.tick_interval
        due = int((now - self._last_tick_at) / interval)
        if due <= 0:
            return 0
        if due > self.max_catch_up_ticks:
            # drop the backlog instead of replaying it
            self._last_tick_at = now
            return self.max_catch_up_ticks
        self._last_tick_at += due * interval
        return due

    def seconds_until_next_tick(self, now: float) -> float:
        if not self.is_running or self._last_tick_at is None:
            return self.tick_interval
        return max(0.0, self._last_tick_at + self.tick_interval - now)
