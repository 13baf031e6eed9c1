"""
Value Stream Flow Engine

Per-tick item state machine.

CRITICAL RULES:
- Exactly one pass per tick over a snapshot of the item list
- Each item takes at most one transition per tick
- Rework only moves backward (ReworkRoutingError otherwise)
- All randomness goes through the injected seeded RNG

Architecture:
  Engine.step() -> FlowEngine.run_pass() -> items mutate in place,
  history records stage exits, dispatcher sees the transitions
"""

import logging
import random
from typing import Dict, List, Optional, Sequence, Set

from ..stages import StageConfig, StageRole, StepType, hours_to_ticks
from .constraints import Constraint, ConstraintSet
from .events import Event, EventDispatcher, FlowEventType
from .gates import BatchGate, CapacityGate
from .history import HistoryStore
from .items import (
    Delivered,
    ItemState,
    Processing,
    Queued,
    Returning,
    Transferring,
    Waiting,
    WorkItem,
)
from .rework import ReworkDecision, ReworkRouter

logger = logging.getLogger("FlowEngine")


class _PassContext:
    """Everything one flow pass needs, bundled so handlers stay short."""

    def __init__(self, tick, items, stages, constraints, gates, history):
        self.tick: int = tick
        self.items: List[WorkItem] = items
        self.stages: Sequence[StageConfig] = stages
        self.constraints: ConstraintSet = constraints
        self.gates: Dict[str, BatchGate] = gates
        self.history: HistoryStore = history
        self.capacity = CapacityGate(items)
        self.batch_released: Set[str] = set()
        self.stage_load: Dict[int, int] = {}
        for item in items:
            if item.state != ItemState.RETURNING:
                self.stage_load[item.stage_index] = self.stage_load.get(item.stage_index, 0) + 1


class FlowEngine:
    """
    Item state machine for the value stream.

    Drives every live item through
    Queued -> Waiting -> Processing -> Transferring -> (next stage | Returning)
    and evicts old delivered items once the board gets crowded.
    """

    TRANSFER_TICKS = 2
    RETURN_TICKS = 1
    MAX_LIVE_ITEMS = 80
    SINK_RETENTION = 20

    def __init__(self, rng: random.Random, dispatcher: EventDispatcher, router: Optional[ReworkRouter] = None):
        """
        Args:
            rng: Seeded RNG shared with the rest of the engine
            dispatcher: Receives flow events
            router: Rework rules (defaults to a router on the same RNG)
        """
        self.rng = rng
        self.dispatcher = dispatcher
        self.router = router or ReworkRouter(rng)

    # ========== Pass ==========

    def run_pass(
        self,
        tick: int,
        items: List[WorkItem],
        stages: Sequence[StageConfig],
        constraints: ConstraintSet,
        gates: Dict[str, BatchGate],
        history: HistoryStore,
    ) -> List[WorkItem]:
        """
        Advance every item by one tick.

        Args:
            tick: Tick being simulated
            items: Live items (mutated in place)
            stages: Effective stage view for this tick
            constraints: Active constraints
            gates: Batch gates by stage id, already decremented this tick
            history: Stage and completion history

        Returns:
            Item list after garbage collection
        """
        self._suspend_over_capacity(items, stages)
        ctx = _PassContext(tick, items, stages, constraints, gates, history)

        for item in list(items):
            phase = item.phase
            if isinstance(phase, Queued):
                if item.stage_index == 0:
                    self._queued_at_intake(item, ctx)
                else:
                    self._queued_at_stage(item, ctx)
            elif isinstance(phase, Waiting):
                self._waiting(item, ctx)
            elif isinstance(phase, Processing):
                self._processing(item, ctx)
            elif isinstance(phase, Transferring):
                self._transferring(item, ctx)
            elif isinstance(phase, Returning):
                self._returning(item, ctx)

        items = self._collect_garbage(items, stages[-1].id, len(stages) - 1, tick)
        self._check_invariants(items, stages)
        return items

    def _suspend_over_capacity(self, items: Sequence[WorkItem], stages: Sequence[StageConfig]) -> None:
        """
        Pause the least advanced items at stages whose capacity dropped
        below their current load (a capacity edit or manual_testing).
        """
        active: Dict[int, List[WorkItem]] = {}
        for item in items:
            if isinstance(item.phase, Processing):
                active.setdefault(item.stage_index, []).append(item)

        for index, processing in active.items():
            limit = stages[index].actor_capacity
            if limit is None or len(processing) <= limit:
                continue
            processing.sort(key=lambda i: i.phase.progress, reverse=True)
            for item in processing[limit:]:
                item.phase = Waiting(suspended=item.phase)
                logger.debug(f"{item.id}: suspended at {stages[index].id} (capacity {limit})")

    # ========== Phase handlers ==========

    def _queued_at_intake(self, item: WorkItem, ctx: _PassContext) -> None:
        """Backlog items leave as soon as the next stage has a free actor."""
        item.phase.ticks_in_intake += 1
        item.stage_wait_ticks += 1
        next_index = item.stage_index + 1
        if ctx.capacity.admits(next_index, ctx.stages[next_index]):
            item.phase = Transferring(self.TRANSFER_TICKS)

    def _queued_at_stage(self, item: WorkItem, ctx: _PassContext) -> None:
        phase = item.phase
        phase.ticks_in_intake += 1
        item.stage_wait_ticks += 1

        stage = ctx.stages[item.stage_index]
        if not self._intake_cleared(item, stage, ctx):
            return

        if self._can_start(item, stage, ctx):
            self._start_processing(item, stage, ctx)
        else:
            item.phase = Waiting(batch_released=item.id in ctx.batch_released)

    def _intake_cleared(self, item: WorkItem, stage: StageConfig, ctx: _PassContext) -> bool:
        """Has the stage's intake delay (or batch gate) let this item through?"""
        if stage.is_batch:
            gate = ctx.gates.get(stage.id)
            return gate is not None and gate.is_open

        floor = ctx.constraints.intake_wait_floor_hours(stage)
        if stage.step_type == StepType.AUTOMATED and floor == 0:
            return True
        if stage.wait_time.is_zero and floor == 0:
            return True

        phase = item.phase
        if phase.intake_target_ticks is None:
            low = max(stage.wait_time.min, floor)
            high = max(stage.wait_time.max, floor)
            phase.intake_target_ticks = hours_to_ticks(self.rng.uniform(low, high))
        return phase.ticks_in_intake >= phase.intake_target_ticks

    def _waiting(self, item: WorkItem, ctx: _PassContext) -> None:
        item.phase.ticks_waiting += 1
        item.stage_wait_ticks += 1
        stage = ctx.stages[item.stage_index]
        if item.phase.suspended is not None:
            # already admitted once; only capacity holds it back
            if ctx.capacity.admits(item.stage_index, stage):
                item.phase = item.phase.suspended
                ctx.capacity.occupy(item.stage_index)
            return
        if self._can_start(item, stage, ctx):
            self._start_processing(item, stage, ctx)

    def _processing(self, item: WorkItem, ctx: _PassContext) -> None:
        phase = item.phase
        index = item.stage_index
        stage = ctx.stages[index]

        phase.ticks_processing += 1
        item.stage_process_ticks += 1
        speed = ctx.constraints.processing_speed(stage, ctx.stage_load.get(index, 0))
        phase.progress += (100.0 / phase.target_ticks) * speed

        if (stage.role == StageRole.DEVELOPMENT and not item.is_rework_in_flight
                and ctx.constraints.is_active(Constraint.UNCLEAR_REQUIREMENTS)
                and self.rng.random() < ctx.constraints.UNCLEAR_REQUIREMENTS_PROBABILITY):
            target = self.router.refinement_target(ctx.stages, index)
            if target is not None:
                item.is_ambiguous = True
                ctx.capacity.release(index)
                self._begin_return(item, ReworkDecision(target, "unclear_requirements"), ctx)
                return

        if phase.progress >= 100.0:
            ctx.capacity.release(index)
            item.phase = Transferring(self.TRANSFER_TICKS)

    def _transferring(self, item: WorkItem, ctx: _PassContext) -> None:
        item.phase.ticks_remaining -= 1
        if item.phase.ticks_remaining > 0:
            return

        exited = ctx.stages[item.stage_index]
        ctx.history.record_stage_exit(exited.id, item.stage_process_ticks, item.stage_wait_ticks)
        self._emit(FlowEventType.STAGE_COMPLETED, ctx.tick, exited.id, item_id=item.id,
                   process_ticks=item.stage_process_ticks, wait_ticks=item.stage_wait_ticks)

        decision = self.router.on_stage_exit(item, ctx.stages, ctx.constraints)
        if decision is not None:
            self._begin_return(item, decision, ctx)
            return

        next_index = item.stage_index + 1
        if ctx.stages[next_index].is_sink:
            self._deliver(item, next_index, ctx)
        else:
            item.enter_stage(next_index)

    def _returning(self, item: WorkItem, ctx: _PassContext) -> None:
        item.phase.ticks_remaining -= 1
        if item.phase.ticks_remaining > 0:
            return

        target = ctx.stages[item.phase.target_index]
        item.enter_stage(item.phase.target_index)
        if target.role == StageRole.REFINEMENT:
            item.is_ambiguous = False
        if item.is_production_defect:
            item.is_production_defect = False
        item.is_rework_in_flight = True

    # ========== Transitions ==========

    def _batch_applies(self, item: WorkItem, ctx: _PassContext) -> bool:
        return (ctx.constraints.is_active(Constraint.LARGE_BATCHES)
                and not item.is_defect and not item.is_ambiguous)

    def _can_start(self, item: WorkItem, stage: StageConfig, ctx: _PassContext) -> bool:
        """
        Release gates between intake and processing, checked in order:
        capacity, silos, large batches, manual deploy.
        """
        index = item.stage_index
        if not ctx.capacity.admits(index, stage):
            return False

        if (ctx.constraints.is_active(Constraint.SILOS)
                and self.rng.random() < ctx.constraints.SILO_BLOCK_PROBABILITY):
            return False

        if self._batch_applies(item, ctx):
            if not (isinstance(item.phase, Waiting) and item.phase.batch_released):
                peers = [p for p in ctx.items
                         if p.stage_index == index and isinstance(p.phase, Waiting)
                         and p.phase.suspended is None
                         and not p.is_defect and not p.is_ambiguous and p is not item]
                if len(peers) + 1 < ctx.constraints.large_batch_threshold:
                    item.batch_membership = True
                    return False
                for peer in peers:
                    peer.phase.batch_released = True
                    peer.batch_membership = False
                ctx.batch_released.add(item.id)
        item.batch_membership = False

        if (stage.role == StageRole.DEPLOYMENT
                and ctx.constraints.is_active(Constraint.MANUAL_DEPLOY)
                and not ctx.constraints.is_active(Constraint.INFREQUENT_DEPLOY)
                and self.rng.random() >= ctx.constraints.MANUAL_DEPLOY_RELEASE_PROBABILITY):
            return False

        return True

    def _start_processing(self, item: WorkItem, stage: StageConfig, ctx: _PassContext) -> None:
        if stage.role == StageRole.DEVELOPMENT and (item.is_defect or item.is_production_defect):
            # fix starts here: the item is now ordinary rework
            item.is_defect = False
            item.is_production_defect = False
            item.is_rework_in_flight = True

        target = hours_to_ticks(self.rng.uniform(stage.process_time.min, stage.process_time.max))
        item.phase = Processing(target_ticks=target)
        item.batch_membership = False
        ctx.capacity.occupy(item.stage_index)

    def _deliver(self, item: WorkItem, sink_index: int, ctx: _PassContext) -> None:
        item.enter_stage(sink_index)
        item.phase = Delivered(ctx.tick)
        sink_id = ctx.stages[sink_index].id

        decision = self.router.on_delivery(item, ctx.constraints)
        ctx.history.record_completion(ctx.tick, item.id, failed=decision is not None)
        self._emit(FlowEventType.ITEM_DELIVERED, ctx.tick, sink_id, item_id=item.id)

        if decision is not None:
            # a defect found in production is no longer an unknown one
            item.is_defect = False
            item.is_production_defect = True
            self._emit(FlowEventType.PRODUCTION_DEFECT, ctx.tick, sink_id, item_id=item.id, reason=decision.reason)
            self._begin_return(item, decision, ctx)

    def _begin_return(self, item: WorkItem, decision: ReworkDecision, ctx: _PassContext) -> None:
        if decision.detected_at is not None:
            item.stage_index = decision.detected_at
        self.router.check_target(item, decision.target_index)
        if decision.mark_defect:
            item.is_defect = True
        if decision.mark_ambiguous:
            item.is_ambiguous = True
        item.batch_membership = False
        item.phase = Returning(target_index=decision.target_index, ticks_remaining=self.RETURN_TICKS)
        self._emit(FlowEventType.REWORK_ROUTED, ctx.tick, ctx.stages[item.stage_index].id,
                   item_id=item.id, target_stage=ctx.stages[decision.target_index].id, reason=decision.reason)
        logger.debug(f"{item.id}: rework {decision.reason} -> stage {decision.target_index}")

    # ========== Garbage collection ==========

    def _collect_garbage(self, items: List[WorkItem], sink_id: str, sink_index: int, tick: int) -> List[WorkItem]:
        """Drop the oldest delivered items while the board holds more than MAX_LIVE_ITEMS."""
        delivered = sorted(
            (i for i in items if i.stage_index == sink_index and i.state == ItemState.DELIVERED),
            key=lambda i: i.created_at_tick,
        )
        excess = min(len(items) - self.MAX_LIVE_ITEMS, len(delivered) - self.SINK_RETENTION)
        if excess <= 0:
            return items

        evicted = {i.id for i in delivered[:excess]}
        for item_id in sorted(evicted):
            self._emit(FlowEventType.ITEM_EVICTED, tick, sink_id, item_id=item_id)
        return [i for i in items if i.id not in evicted]

    # ========== Helpers ==========

    def _emit(self, event_type: FlowEventType, tick: int, stage_id: str, **data) -> None:
        self.dispatcher.emit(Event(type=event_type, tick=tick, stage_id=stage_id, data=data))

    @staticmethod
    def _check_invariants(items: Sequence[WorkItem], stages: Sequence[StageConfig]) -> None:
        for item in items:
            assert 0 <= item.stage_index < len(stages), f"{item.id}: stage index out of range"
            if isinstance(item.phase, Returning):
                assert item.phase.target_index < item.stage_index, f"{item.id}: rework must move backward"
            if isinstance(item.phase, Delivered):
                assert item.stage_index == len(stages) - 1, f"{item.id}: delivered away from sink"
