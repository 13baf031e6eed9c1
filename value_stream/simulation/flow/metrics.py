"""
Metrics Aggregator for the Flow Engine

Flow metrics derived once per tick from the item list and history.

CRITICAL RULES:
- Read-only consumer of history and items
- NO control logic
- Deterministic calculations only
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Sequence

from ..stages import HOURS_PER_TICK, StageConfig
from .history import HistoryStore
from .items import WorkItem


@dataclass(frozen=True)
class StageMetrics:
    avg_process_ticks: float = 0.0
    avg_wait_ticks: float = 0.0
    completions: int = 0

    @property
    def avg_process_hours(self) -> float:
        return self.avg_process_ticks * HOURS_PER_TICK

    @property
    def avg_wait_hours(self) -> float:
        return self.avg_wait_ticks * HOURS_PER_TICK


@dataclass(frozen=True)
class MetricsSnapshot:
    tick: int = 0
    wip: int = 0
    throughput_rate: float = 0.0          # items per tick
    cycle_time_ticks: float = 0.0
    deploy_frequency: float = 0.0         # deliveries per simulated day
    change_fail_percentage: float = 0.0
    total_delivered: int = 0
    stages: Dict[str, StageMetrics] = field(default_factory=dict)

    @property
    def throughput_per_hour(self) -> float:
        return self.throughput_rate / HOURS_PER_TICK

    @property
    def cycle_time_hours(self) -> float:
        return self.cycle_time_ticks * HOURS_PER_TICK

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["throughput_per_hour"] = round(self.throughput_per_hour, 4)
        data["cycle_time_hours"] = round(self.cycle_time_hours, 2)
        for stage_id, stage in self.stages.items():
            data["stages"][stage_id]["avg_process_hours"] = round(stage.avg_process_hours, 2)
            data["stages"][stage_id]["avg_wait_hours"] = round(stage.avg_wait_hours, 2)
        return data


class MetricsAggregator:
    """
    Flow metrics calculator.

    Throughput, deploy frequency and change-fail rate are windowed over
    the completion ring buffer; WIP is counted from the live item list.
    """

    THROUGHPUT_WINDOW_TICKS = 10
    DEPLOY_WINDOW_TICKS = 48
    TICKS_PER_DAY = int(24 / HOURS_PER_TICK)

    def __init__(self, history: HistoryStore):
        self.history = history

    @staticmethod
    def calculate_wip(items: Sequence[WorkItem], sink_index: int) -> int:
        """Items upstream of the sink, returning items included."""
        return sum(1 for item in items if item.stage_index < sink_index)

    def calculate_throughput(self, tick: int) -> float:
        """
        Completions per tick over the trailing window.

        Args:
            tick: Current simulation tick

        Returns:
            Items per tick
        """
        recent = self.history.completions_since(tick - self.THROUGHPUT_WINDOW_TICKS)
        return len(recent) / self.THROUGHPUT_WINDOW_TICKS

    @staticmethod
    def calculate_cycle_time(wip: int, throughput_rate: float) -> float:
        """Little's Law: WIP / throughput, in ticks (0 when nothing flows)."""
        if throughput_rate <= 0:
            return 0.0
        return wip / throughput_rate

    def calculate_deploy_frequency(self, tick: int) -> float:
        recent = self.history.completions_since(tick - self.DEPLOY_WINDOW_TICKS)
        return len(recent) * self.TICKS_PER_DAY / self.DEPLOY_WINDOW_TICKS

    def calculate_change_fail(self, tick: int) -> float:
        recent = self.history.completions_since(tick - self.DEPLOY_WINDOW_TICKS)
        if not recent:
            return 0.0
        failed = sum(1 for c in recent if c.failed)
        return failed / len(recent) * 100.0

    def stage_metrics(self, stages: Sequence[StageConfig]) -> Dict[str, StageMetrics]:
        result = {}
        for stage in stages:
            entry = self.history.stage(stage.id)
            result[stage.id] = StageMetrics(
                avg_process_ticks=entry.avg_process_ticks,
                avg_wait_ticks=entry.avg_wait_ticks,
                completions=entry.completion_count,
            )
        return result

    def compute(self, tick: int, items: Sequence[WorkItem], stages: Sequence[StageConfig]) -> MetricsSnapshot:
        """
        Get all metrics for the current tick.

        Args:
            tick: Current simulation tick
            items: Live items
            stages: Effective stage list (last entry is the sink)
        """
        wip = self.calculate_wip(items, len(stages) - 1)
        throughput = self.calculate_throughput(tick)
        return MetricsSnapshot(
            tick=tick,
            wip=wip,
            throughput_rate=throughput,
            cycle_time_ticks=self.calculate_cycle_time(wip, throughput),
            deploy_frequency=self.calculate_deploy_frequency(tick),
            change_fail_percentage=self.calculate_change_fail(tick),
            total_delivered=self.history.delivered_total,
            stages=self.stage_metrics(stages),
        )
