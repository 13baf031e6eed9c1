"""
History Store for the Flow Engine

Per-stage time accounting plus a bounded ring of recent completions.

CRITICAL RULES:
- Counts are event-driven (stage exit, sink arrival), not time-based
- Completion buffer holds the most recent entries only
- Read-only to everything except the flow engine
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List


@dataclass
class StageHistory:
    total_process_ticks: int = 0
    total_wait_ticks: int = 0
    completion_count: int = 0

    @property
    def avg_process_ticks(self) -> float:
        if self.completion_count == 0:
            return 0.0
        return self.total_process_ticks / self.completion_count

    @property
    def avg_wait_ticks(self) -> float:
        if self.completion_count == 0:
            return 0.0
        return self.total_wait_ticks / self.completion_count


@dataclass(frozen=True)
class CompletionRecord:
    tick: int
    item_id: str
    failed: bool


class HistoryStore:
    """
    Stage completion history.

    Stage entries are created lazily, so stages added later still get
    counted without a registry round-trip.
    """

    def __init__(self, stage_ids: Iterable[str] = (), buffer_size: int = 50):
        """
        Args:
            stage_ids: Stages to pre-register (zeroed entries)
            buffer_size: Completions kept for windowed metrics
        """
        self._stages: Dict[str, StageHistory] = {sid: StageHistory() for sid in stage_ids}
        self._completions: Deque[CompletionRecord] = deque(maxlen=buffer_size)
        self.delivered_total = 0
        self.failed_total = 0

    def record_stage_exit(self, stage_id: str, process_ticks: int, wait_ticks: int) -> None:
        """
        Add one completed pass through a stage.

        Args:
            stage_id: Stage just exited
            process_ticks: Ticks spent Processing at that stage
            wait_ticks: Ticks spent Queued or Waiting at that stage
        """
        entry = self._stages.setdefault(stage_id, StageHistory())
        entry.total_process_ticks += process_ticks
        entry.total_wait_ticks += wait_ticks
        entry.completion_count += 1

    def record_completion(self, tick: int, item_id: str, failed: bool) -> None:
        self._completions.append(CompletionRecord(tick, item_id, failed))
        self.delivered_total += 1
        if failed:
            self.failed_total += 1

    def stage(self, stage_id: str) -> StageHistory:
        """Stage history (zeroed entry if never completed)"""
        return self._stages.get(stage_id, StageHistory())

    def get_all(self) -> Dict[str, StageHistory]:
        return dict(self._stages)

    def completions(self) -> List[CompletionRecord]:
        return list(self._completions)

    def completions_since(self, after_tick: int) -> List[CompletionRecord]:
        """Completions with tick strictly greater than `after_tick`."""
        return [c for c in self._completions if c.tick > after_tick]
