import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config import SimulationSettings
from ..errors import ConfigurationError
from .clock import SimulationClock
from .flow import (
    BatchGate,
    ConstraintSet,
    Event,
    EventDispatcher,
    FlowEngine,
    FlowEventType,
    HistoryStore,
    ItemSpawner,
    ItemState,
    ItemView,
    MetricsAggregator,
    MetricsSnapshot,
    ReworkRouter,
    StageMetrics,
    WorkItem,
)
from .stages import StageConfig, StageRegistry

logger = logging.getLogger("SimulationEngine")

MAX_BATCH_SIZE = 20


@dataclass
class SimulationState:
    """
    Everything a reset throws away.

    Stage registry, constraints and speed live on the engine and survive.
    """
    spawner: ItemSpawner
    history: HistoryStore
    tick: int = 0
    items: List[WorkItem] = field(default_factory=list)
    batch_gates: Dict[str, BatchGate] = field(default_factory=dict)
    metrics: MetricsSnapshot = field(default_factory=MetricsSnapshot)


@dataclass(frozen=True)
class EngineSnapshot:
    """Immutable copy of the state external readers are allowed to see."""
    tick: int
    running: bool
    speed_multiplier: float
    stages: Tuple[StageConfig, ...]
    items: Tuple[ItemView, ...]
    per_stage_stats: Dict[str, Dict[str, int]]
    metrics: MetricsSnapshot
    batch_countdowns: Dict[str, int]
    constraints: Dict[str, bool]
    batch_size: int
    production_defect_rate: float
    deployment_schedule_hours: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick": self.tick,
            "running": self.running,
            "speed_multiplier": self.speed_multiplier,
            "stages": [stage_to_dict(s) for s in self.stages],
            "items": [item_to_dict(i) for i in self.items],
            "per_stage_stats": self.per_stage_stats,
            "metrics": self.metrics.to_dict(),
            "batch_countdowns": self.batch_countdowns,
            "constraints": self.constraints,
            "batch_size": self.batch_size,
            "production_defect_rate": self.production_defect_rate,
            "deployment_schedule_hours": self.deployment_schedule_hours,
        }


def stage_to_dict(stage: StageConfig) -> Dict[str, Any]:
    return {
        "id": stage.id,
        "label": stage.label,
        "kind": stage.kind.value,
        "step_type": stage.step_type.value if stage.step_type else None,
        "role": stage.role.value,
        "process_time": {"min": stage.process_time.min, "max": stage.process_time.max},
        "wait_time": {"min": stage.wait_time.min, "max": stage.wait_time.max},
        "actor_capacity": stage.actor_capacity,
        "percent_complete_accurate": stage.percent_complete_accurate,
        "cadence_hours": stage.cadence_hours,
    }


def item_to_dict(item: ItemView) -> Dict[str, Any]:
    return {
        "id": item.id,
        "stage_index": item.stage_index,
        "stage_id": item.stage_id,
        "state": item.state.value,
        "progress_percent": item.progress_percent,
        "is_defect": item.is_defect,
        "is_ambiguous": item.is_ambiguous,
        "is_production_defect": item.is_production_defect,
        "is_rework_in_flight": item.is_rework_in_flight,
        "batch_membership": item.batch_membership,
        "created_at_tick": item.created_at_tick,
        "return_target_stage_index": item.return_target_stage_index,
    }


class ValueStreamEngine:
    """
    Owns the simulation state and runs the per-tick pipeline.

    Per tick, in order: spawn -> batch gates decrement -> item pass ->
    batch gates settle -> metrics -> post-step callbacks.

    Commands and queries are meant to be called between ticks; the
    service layer serialises them with its own lock.
    """

    def __init__(
        self,
        registry: StageRegistry,
        settings: Optional[SimulationSettings] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            registry: Stage layout (kept across resets)
            settings: Rates, intervals and clock settings (defaults if None)
            rng: Random source; a Random seeded from settings.seed if None
        """
        self.settings = settings or SimulationSettings()
        self.registry = registry
        self.rng = rng or random.Random(self.settings.seed)

        self.constraints = ConstraintSet(
            batch_size=self.clamp_batch_size(self.settings.batch_size),
            production_defect_rate=self.clamp_rate(self.settings.production_defect_rate),
            deployment_schedule_hours=self.settings.deployment_schedule_hours,
        )
        self.clock = SimulationClock(
            tick_seconds=self.settings.tick_seconds,
            speed_multiplier=self.settings.speed_multiplier,
        )
        self.dispatcher = EventDispatcher()
        self.flow = FlowEngine(self.rng, self.dispatcher, ReworkRouter(self.rng))
        self.post_step_callbacks: List[Callable[["ValueStreamEngine"], None]] = []

        self.state = self._fresh_state()
        logger.info(f"ValueStreamEngine initialized with {len(registry)} stages (seed={self.settings.seed})")

    def _fresh_state(self) -> SimulationState:
        state = SimulationState(
            spawner=ItemSpawner(self.settings.feature_interval_ticks, self.settings.defect_interval_ticks),
            history=HistoryStore(stage.id for stage in self.registry),
        )
        stages = self.effective_stages()
        self._sync_batch_gates(state, stages)
        state.metrics = MetricsAggregator(state.history).compute(0, state.items, stages)
        return state

    # ========== Tick pipeline ==========

    def step(self) -> None:
        """Advance the simulation by exactly one tick (ignores run state)."""
        state = self.state
        state.tick += 1
        tick = state.tick
        stages = self.effective_stages()
        self._sync_batch_gates(state, stages)

        # 1. Spawn
        for item in state.spawner.tick(tick, self.constraints):
            state.items.append(item)
            self._emit(FlowEventType.ITEM_SPAWNED, tick, stages[0].id, item_id=item.id, is_defect=item.is_defect)

        # 2. Batch countdowns
        for stage_id, gate in state.batch_gates.items():
            if gate.decrement(self._queued_at(state, stages, stage_id)):
                self._emit(FlowEventType.BATCH_RELEASED, tick, stage_id, release=gate.releases)

        # 3. Items
        state.items = self.flow.run_pass(tick, state.items, stages, self.constraints, state.batch_gates, state.history)

        # 4. Close drained release windows
        for stage_id, gate in state.batch_gates.items():
            gate.settle(self._queued_at(state, stages, stage_id))

        # 5. Metrics
        state.metrics = MetricsAggregator(state.history).compute(tick, state.items, stages)

        for callback in self.post_step_callbacks:
            callback(self)

    def advance(self, now: float) -> int:
        """
        Run every tick that is due at wall-clock time `now`.

        Returns:
            Number of ticks executed (0 while paused)
        """
        due = self.clock.advance(now)
        for _ in range(due):
            self.step()
        return due

    def run_ticks(self, count: int) -> None:
        for _ in range(count):
            self.step()

    def set_post_step_callback(self, callback: Callable[["ValueStreamEngine"], None]) -> None:
        self.post_step_callbacks.append(callback)

    def effective_stages(self) -> List[StageConfig]:
        return self.constraints.apply(self.registry.stages)

    @staticmethod
    def _queued_at(state: SimulationState, stages: Sequence[StageConfig], stage_id: str) -> int:
        index = next(i for i, s in enumerate(stages) if s.id == stage_id)
        return sum(1 for item in state.items if item.stage_index == index and item.state == ItemState.QUEUED)

    @staticmethod
    def _sync_batch_gates(state: SimulationState, stages: Sequence[StageConfig]) -> None:
        """One gate per effective batch stage; gates follow cadence edits."""
        batch_ids = set()
        for stage in stages:
            if not stage.is_batch:
                continue
            batch_ids.add(stage.id)
            gate = state.batch_gates.get(stage.id)
            if gate is None:
                state.batch_gates[stage.id] = BatchGate(stage.id, stage.cadence_ticks())
            elif gate.cadence_ticks != stage.cadence_ticks():
                gate.set_cadence(stage.cadence_ticks())
        for stage_id in list(state.batch_gates):
            if stage_id not in batch_ids:
                del state.batch_gates[stage_id]

    def _emit(self, event_type: FlowEventType, tick: int, stage_id: str, **data) -> None:
        self.dispatcher.emit(Event(type=event_type, tick=tick, stage_id=stage_id, data=data))

    # ========== Commands ==========

    @staticmethod
    def clamp_batch_size(n) -> int:
        return min(MAX_BATCH_SIZE, max(1, int(n)))

    @staticmethod
    def clamp_rate(percent) -> float:
        return min(100.0, max(0.0, float(percent)))

    def set_stage_config(self, stage_id: str, partial: Dict[str, Any]) -> StageConfig:
        updated = self.registry.set_stage_config(stage_id, partial)
        self._sync_batch_gates(self.state, self.effective_stages())
        return updated

    def set_constraint(self, name: str, enabled: bool) -> None:
        self.constraints.set(name, enabled)
        self._sync_batch_gates(self.state, self.effective_stages())

    def set_speed_multiplier(self, value: float) -> float:
        return self.clock.set_speed(value)

    def set_batch_size(self, n: int) -> int:
        self.constraints.batch_size = self.clamp_batch_size(n)
        return self.constraints.batch_size

    def set_production_defect_rate(self, percent: float) -> float:
        self.constraints.production_defect_rate = self.clamp_rate(percent)
        return self.constraints.production_defect_rate

    def set_deployment_schedule(self, hours: float) -> float:
        if hours <= 0:
            raise ConfigurationError(f"Deployment schedule must be positive, got {hours}")
        self.constraints.deployment_schedule_hours = float(hours)
        self._sync_batch_gates(self.state, self.effective_stages())
        return self.constraints.deployment_schedule_hours

    def set_running(self, running: bool) -> None:
        self.clock.set_running(running)

    def inject_items(self, count: int = 1, is_defect: bool = False) -> List[str]:
        """Put `count` items straight into the intake stage."""
        if count < 1:
            raise ConfigurationError(f"Item count must be >= 1, got {count}")
        items = self.state.spawner.create(self.state.tick, count, is_defect=is_defect)
        self.state.items.extend(items)
        intake_id = self.registry[0].id
        for item in items:
            self._emit(FlowEventType.ITEM_SPAWNED, self.state.tick, intake_id,
                       item_id=item.id, is_defect=is_defect, injected=True)
        return [item.id for item in items]

    def reset(self) -> None:
        """Replace the simulation state; stages, constraints and speed are kept."""
        self.state = self._fresh_state()
        self.dispatcher.clear_log()
        self._emit(FlowEventType.SIMULATION_RESET, 0, self.registry[0].id)
        logger.info("Simulation reset")

    # ========== Queries ==========

    @property
    def tick(self) -> int:
        return self.state.tick

    def get_stages(self) -> List[StageConfig]:
        return self.effective_stages()

    def get_items(self) -> List[ItemView]:
        stages = self.registry.stages
        return [item.view(stages[item.stage_index].id) for item in self.state.items]

    def get_per_stage_stats(self) -> Dict[str, Dict[str, int]]:
        stats = {stage.id: {"queued": 0, "waiting": 0, "processing": 0, "total": 0} for stage in self.registry}
        stages = self.registry.stages
        for item in self.state.items:
            entry = stats[stages[item.stage_index].id]
            entry["total"] += 1
            if item.state.value in entry:
                entry[item.state.value] += 1
        return stats

    def get_metrics(self) -> MetricsSnapshot:
        return self.state.metrics

    def get_stage_metrics(self) -> Dict[str, StageMetrics]:
        return dict(self.state.metrics.stages)

    def get_batch_countdowns(self) -> Dict[str, int]:
        return {stage_id: gate.countdown for stage_id, gate in self.state.batch_gates.items()}

    def get_snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            tick=self.state.tick,
            running=self.clock.is_running,
            speed_multiplier=self.clock.speed_multiplier,
            stages=tuple(self.get_stages()),
            items=tuple(self.get_items()),
            per_stage_stats=self.get_per_stage_stats(),
            metrics=self.state.metrics,
            batch_countdowns=self.get_batch_countdowns(),
            constraints=self.constraints.as_dict(),
            batch_size=self.constraints.batch_size,
            production_defect_rate=self.constraints.production_defect_rate,
            deployment_schedule_hours=self.constraints.deployment_schedule_hours,
        )
