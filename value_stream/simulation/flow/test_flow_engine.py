"""
Flow Engine - Scenario Tests

Small hand-built value streams driven tick by tick through the engine.
Spawn intervals are pushed out of reach so only injected items move.
"""

import random

import pytest

from value_stream.config import SimulationSettings
from value_stream.errors import ReworkRoutingError
from value_stream.simulation import ValueStreamEngine, build_value_stream
from value_stream.simulation.flow import (
    Constraint,
    FlowEventType,
    ItemState,
    ReworkRouter,
    WorkItem,
)
from value_stream.simulation.stages import (
    StageConfig,
    StageKind,
    StageRegistry,
    StageRole,
    StepType,
    TimeRange,
)

QUIET = SimulationSettings(
    seed=7,
    feature_interval_ticks=1e9,
    defect_interval_ticks=1e9,
    production_defect_rate=0.0,
)


def make_engine(*process_stages, settings=QUIET):
    stages = [StageConfig("backlog", "Backlog", kind=StageKind.INTAKE)]
    stages.extend(process_stages)
    stages.append(StageConfig("done", "Done", kind=StageKind.SINK))
    return ValueStreamEngine(StageRegistry(stages), settings=settings)


def automated(stage_id, hours=1.0, **kwargs):
    return StageConfig(
        stage_id, stage_id.title(), step_type=StepType.AUTOMATED,
        process_time=TimeRange(hours, hours), **kwargs,
    )


def states_at(engine, stage_index):
    return [i.state for i in engine.state.items if i.stage_index == stage_index]


def record(engine, event_type):
    seen = []
    engine.dispatcher.subscribe(event_type, seen.append)
    return seen


# ========== Invariants ==========

def test_invariants_hold_with_every_constraint_on():
    """Index bounds, single state, backward-only returns over a long noisy run"""
    engine = build_value_stream(SimulationSettings(seed=3))
    for constraint in Constraint:
        engine.set_constraint(constraint.value, True)
    engine.set_batch_size(3)

    sink_index = len(engine.registry) - 1
    for _ in range(400):
        engine.step()
        for item in engine.state.items:
            assert 0 <= item.stage_index <= sink_index
            assert item.state in ItemState
            if item.state == ItemState.RETURNING:
                assert item.return_target_stage_index < item.stage_index
            if item.state == ItemState.PROCESSING:
                assert item.processing_target_ticks >= 1


def test_capacity_never_exceeded_on_default_stream():
    engine = build_value_stream(SimulationSettings(seed=11))
    engine.set_constraint("too_many_features", True)
    for _ in range(300):
        engine.step()
        for index, stage in enumerate(engine.get_stages()):
            if stage.actor_capacity is None:
                continue
            processing = states_at(engine, index).count(ItemState.PROCESSING)
            assert processing <= stage.actor_capacity


def test_capacity_holds_through_live_capacity_cuts():
    engine = build_value_stream(SimulationSettings(seed=13))
    engine.set_constraint("too_many_features", True)
    for tick in range(1, 301):
        if tick == 100:
            engine.set_constraint("manual_testing", True)
        if tick == 150:
            engine.set_stage_config("dev", {"actor_capacity": 1})
        engine.step()
        for index, stage in enumerate(engine.get_stages()):
            if stage.actor_capacity is not None:
                assert states_at(engine, index).count(ItemState.PROCESSING) <= stage.actor_capacity


def test_manual_testing_pauses_excess_work_and_keeps_progress():
    engine = make_engine(automated("test", hours=10.0, role=StageRole.TESTING))  # 20 ticks
    engine.inject_items(5)
    engine.run_ticks(4)
    assert states_at(engine, 1) == [ItemState.PROCESSING] * 5

    engine.set_constraint("manual_testing", True)
    engine.step()
    assert states_at(engine, 1).count(ItemState.PROCESSING) == 1
    assert states_at(engine, 1).count(ItemState.WAITING) == 4

    engine.set_constraint("manual_testing", False)
    engine.step()
    assert states_at(engine, 1) == [ItemState.PROCESSING] * 5
    resumed = [i for i in engine.state.items if i.id != "item-1"]
    assert all(i.progress_percent == 5.0 for i in resumed)


def test_garbage_collection_keeps_live_items_bounded():
    engine = make_engine(automated("work", hours=0.5))
    engine.inject_items(120)
    evicted = record(engine, FlowEventType.ITEM_EVICTED)
    engine.run_ticks(20)

    delivered = [i for i in engine.state.items if i.state == ItemState.DELIVERED]
    assert evicted
    assert len(delivered) >= 20
    assert len(engine.state.items) <= 80 or len(delivered) == 20
    assert engine.get_metrics().total_delivered == 120


# ========== Scenario B: capacity ==========

def test_single_actor_stage_drains_one_at_a_time():
    engine = make_engine(automated("work", hours=2.0, actor_capacity=1))
    engine.inject_items(5)

    # transfer out of the backlog takes 2 ticks, then one tick to clear intake
    engine.run_ticks(4)
    assert sorted(states_at(engine, 1)) == sorted([ItemState.PROCESSING] + [ItemState.WAITING] * 4)

    delivered_ticks = []
    engine.dispatcher.subscribe(FlowEventType.ITEM_DELIVERED, lambda e: delivered_ticks.append(e.tick))
    for _ in range(60):
        engine.step()
        assert states_at(engine, 1).count(ItemState.PROCESSING) <= 1

    assert len(delivered_ticks) == 5
    assert len(set(delivered_ticks)) == 5


# ========== Scenario C: batch release ==========

def batch_stage(cadence_hours):
    return StageConfig(
        "cab", "CAB", step_type=StepType.BATCH, process_time=TimeRange(0.5, 0.5),
        cadence_hours=cadence_hours,
    )


def test_batch_stage_releases_once_and_rearms():
    engine = make_engine(batch_stage(5.0))  # 10 ticks
    releases = record(engine, FlowEventType.BATCH_RELEASED)
    engine.inject_items(3)

    engine.run_ticks(9)
    assert states_at(engine, 1) == [ItemState.QUEUED] * 3
    assert engine.get_batch_countdowns()["cab"] == 1

    engine.step()  # tick 10
    assert [e.tick for e in releases] == [10]
    assert engine.get_batch_countdowns()["cab"] > 0
    assert states_at(engine, 1) == [ItemState.PROCESSING] * 3

    engine.run_ticks(2)
    assert len([e for e in releases if 10 <= e.tick <= 12]) == 1


def test_batch_countdown_without_arrivals_rearms_within_one_tick():
    engine = make_engine(batch_stage(4.0))  # 8 ticks
    cadence = 8
    readings = []
    for _ in range(cadence + 3):
        engine.step()
        readings.append(engine.get_batch_countdowns()["cab"])

    assert readings[:cadence - 1] == list(range(cadence - 1, 0, -1))
    assert readings[cadence - 1] == cadence
    assert readings[cadence] == cadence - 1


def test_batch_window_closes_despite_steady_arrivals():
    engine = make_engine(batch_stage(5.0))  # 10 ticks
    releases = record(engine, FlowEventType.BATCH_RELEASED)
    engine.inject_items(3)
    engine.run_ticks(7)

    # one new arrival reaches the batch stage at each of ticks 10-13
    readings = []
    for tick in range(8, 14):
        if tick <= 11:
            engine.inject_items(1)
        engine.step()
        readings.append(engine.get_batch_countdowns()["cab"])

    assert [e.tick for e in releases] == [10]
    assert readings == [2, 1, 0, -1, -2, 10]
    late = [i for i in engine.state.items if i.id in ("item-6", "item-7")]
    assert [i.state for i in late] == [ItemState.QUEUED] * 2


def test_cadence_edit_only_shortens_running_countdown():
    engine = make_engine(batch_stage(5.0))  # 10 ticks
    engine.run_ticks(2)
    assert engine.get_batch_countdowns()["cab"] == 8

    engine.set_stage_config("cab", {"cadence_hours": 2.0})
    assert engine.get_batch_countdowns()["cab"] == 4

    engine.set_stage_config("cab", {"cadence_hours": 10.0})
    assert engine.get_batch_countdowns()["cab"] == 4

    engine.run_ticks(4)
    assert engine.get_batch_countdowns()["cab"] == 20


def test_infrequent_deploy_turns_deployment_into_batch_stage():
    engine = build_value_stream(QUIET)
    assert engine.get_batch_countdowns() == {}

    engine.set_constraint("infrequent_deploy", True)
    assert engine.get_batch_countdowns() == {"deploy": 48}

    engine.set_deployment_schedule(12)
    assert engine.get_batch_countdowns() == {"deploy": 24}

    engine.set_constraint("infrequent_deploy", False)
    assert engine.get_batch_countdowns() == {}


# ========== Rework ==========

def test_fully_accurate_stages_never_rework():
    engine = build_value_stream(SimulationSettings(seed=5, defect_interval_ticks=1e9, production_defect_rate=0.0))
    for stage in engine.registry.stages[1:-1]:
        engine.set_stage_config(stage.id, {"percent_complete_accurate": 100})
    reworks = record(engine, FlowEventType.REWORK_ROUTED)

    for _ in range(400):
        engine.step()
        assert ItemState.RETURNING not in [i.state for i in engine.state.items]

    assert reworks == []
    assert engine.get_metrics().total_delivered > 0


def test_zero_accuracy_stage_always_returns():
    """Scenario D: nothing gets past a stage with 0% C/A"""
    engine = make_engine(
        automated("draft", hours=0.5, percent_complete_accurate=0),
        automated("publish", hours=0.5),
    )
    completed = record(engine, FlowEventType.STAGE_COMPLETED)
    reworks = record(engine, FlowEventType.REWORK_ROUTED)
    engine.inject_items(4)

    for _ in range(60):
        engine.step()
        assert all(i.stage_index <= 1 for i in engine.state.items)

    draft_exits = [e for e in completed if e.stage_id == "draft"]
    assert draft_exits
    assert len(reworks) == len(draft_exits)
    assert all(e.data["target_stage"] == "backlog" for e in reworks)


def test_rework_target_must_be_upstream():
    item = WorkItem(id="item-1", created_at_tick=0, stage_index=2)
    ReworkRouter.check_target(item, 1)
    with pytest.raises(ReworkRoutingError):
        ReworkRouter.check_target(item, 2)
    with pytest.raises(ReworkRoutingError):
        ReworkRouter.check_target(item, 5)


def test_quality_issue_returns_to_development_once():
    engine = make_engine(
        automated("dev", role=StageRole.DEVELOPMENT),
        automated("test", role=StageRole.TESTING),
    )
    engine.constraints.QUALITY_ISSUE_PROBABILITY = 1.0
    engine.set_constraint("quality_issues", True)
    reworks = record(engine, FlowEventType.REWORK_ROUTED)
    engine.inject_items(1)

    engine.run_ticks(40)

    assert [e.data["reason"] for e in reworks] == ["quality_issue"]
    assert reworks[0].data["target_stage"] == "dev"
    item = engine.state.items[0]
    assert item.state == ItemState.DELIVERED
    assert item.is_rework_in_flight
    assert not item.is_defect


def test_unclear_requirements_sends_item_back_to_refinement():
    engine = make_engine(
        automated("refine", role=StageRole.REFINEMENT),
        automated("dev", hours=10.0, role=StageRole.DEVELOPMENT),
    )
    engine.constraints.UNCLEAR_REQUIREMENTS_PROBABILITY = 1.0
    engine.set_constraint("unclear_requirements", True)
    reworks = record(engine, FlowEventType.REWORK_ROUTED)
    engine.inject_items(1)

    engine.run_ticks(20)

    assert reworks
    assert reworks[0].data == {"item_id": "item-1", "target_stage": "refine", "reason": "unclear_requirements"}


def test_production_defects_return_to_backlog():
    settings = SimulationSettings(seed=2, feature_interval_ticks=1e9, defect_interval_ticks=1e9,
                                  production_defect_rate=100.0)
    engine = make_engine(automated("work", hours=0.5), settings=settings)
    defects = record(engine, FlowEventType.PRODUCTION_DEFECT)
    engine.inject_items(2)

    engine.run_ticks(8)

    assert len(defects) == 2
    assert engine.get_metrics().change_fail_percentage == 100.0
    assert all(i.stage_index < 2 for i in engine.state.items)


def test_defect_caught_at_deployment_boundary():
    engine = make_engine(
        automated("dev", role=StageRole.DEVELOPMENT),
        automated("review", role=StageRole.REVIEW),
        automated("deploy", role=StageRole.DEPLOYMENT),
    )
    engine.constraints.DEFECT_SLIP_THROUGH_PROBABILITY = 0.0
    reworks = record(engine, FlowEventType.REWORK_ROUTED)
    # start the defect in review, as if it slipped past development unnoticed
    engine.inject_items(1, is_defect=True)
    engine.state.items[0].enter_stage(2)

    engine.run_ticks(30)

    assert reworks[0].data["reason"] == "defect_caught"
    assert reworks[0].stage_id == "deploy"
    assert reworks[0].data["target_stage"] == "dev"
    assert engine.get_metrics().change_fail_percentage == 0.0


def test_slipped_defect_fails_once_in_production():
    engine = make_engine(
        automated("dev", role=StageRole.DEVELOPMENT),
        automated("review", role=StageRole.REVIEW),
        automated("deploy", role=StageRole.DEPLOYMENT),
    )
    engine.constraints.DEFECT_SLIP_THROUGH_PROBABILITY = 1.0
    defects = record(engine, FlowEventType.PRODUCTION_DEFECT)
    engine.inject_items(1, is_defect=True)
    engine.state.items[0].enter_stage(2)

    engine.run_ticks(40)

    assert [e.data["reason"] for e in defects] == ["escaped_defect"]
    item = engine.state.items[0]
    assert item.state == ItemState.DELIVERED
    assert not item.is_defect
    assert engine.state.history.delivered_total == 2
    assert engine.state.history.failed_total == 1


def test_escaped_defect_rework_ends_without_development_stage():
    engine = make_engine(automated("build"), automated("ship"))
    defects = record(engine, FlowEventType.PRODUCTION_DEFECT)
    engine.inject_items(1, is_defect=True)

    engine.run_ticks(200)

    assert len(defects) == 1
    item = engine.state.items[0]
    assert item.state == ItemState.DELIVERED
    assert item.is_rework_in_flight
    assert engine.state.history.failed_total == 1


def test_coding_error_sends_tested_item_back_to_development():
    engine = make_engine(
        automated("dev", role=StageRole.DEVELOPMENT),
        automated("test", role=StageRole.TESTING),
    )
    engine.constraints.CODING_ERROR_PROBABILITY = 1.0
    engine.set_constraint("coding_errors", True)
    reworks = record(engine, FlowEventType.REWORK_ROUTED)
    engine.inject_items(1)

    engine.run_ticks(40)

    assert [e.data["reason"] for e in reworks] == ["coding_error"]
    assert reworks[0].stage_id == "test"
    assert reworks[0].data["target_stage"] == "dev"
    item = engine.state.items[0]
    assert item.state == ItemState.DELIVERED
    assert not item.is_defect


def test_unclear_requirements_skip_items_already_in_rework():
    engine = make_engine(
        automated("refine", role=StageRole.REFINEMENT),
        automated("dev", hours=10.0, role=StageRole.DEVELOPMENT),
    )
    engine.constraints.UNCLEAR_REQUIREMENTS_PROBABILITY = 1.0
    engine.set_constraint("unclear_requirements", True)
    reworks = record(engine, FlowEventType.REWORK_ROUTED)
    engine.inject_items(1)

    engine.run_ticks(60)

    assert [e.data["reason"] for e in reworks] == ["unclear_requirements"]
    assert engine.state.items[0].state == ItemState.DELIVERED


# ========== Release gates ==========

def test_silos_block_starts_while_the_draw_fails():
    engine = make_engine(automated("work"))
    engine.constraints.SILO_BLOCK_PROBABILITY = 1.0
    engine.set_constraint("silos", True)
    engine.inject_items(3)

    engine.run_ticks(20)
    assert states_at(engine, 1) == [ItemState.WAITING] * 3

    engine.constraints.SILO_BLOCK_PROBABILITY = 0.0
    engine.run_ticks(20)
    assert engine.state.history.delivered_total == 3


def test_manual_deploy_gate_is_lifted_by_infrequent_deploy():
    engine = make_engine(automated("deploy", role=StageRole.DEPLOYMENT))
    engine.constraints.MANUAL_DEPLOY_RELEASE_PROBABILITY = 0.0
    engine.set_constraint("manual_deploy", True)
    engine.inject_items(2)

    engine.run_ticks(20)
    assert states_at(engine, 1) == [ItemState.WAITING] * 2

    engine.set_constraint("infrequent_deploy", True)
    engine.step()
    assert states_at(engine, 1) == [ItemState.PROCESSING] * 2


def test_manual_deploy_releases_when_the_draw_passes():
    engine = make_engine(automated("deploy", role=StageRole.DEPLOYMENT))
    engine.constraints.MANUAL_DEPLOY_RELEASE_PROBABILITY = 1.0
    engine.set_constraint("manual_deploy", True)
    engine.inject_items(2)

    engine.run_ticks(3)
    assert states_at(engine, 1) == [ItemState.PROCESSING] * 2


# ========== Large batches ==========

def test_large_batches_hold_until_threshold():
    engine = make_engine(automated("work", hours=10.0))
    engine.set_constraint("large_batches", True)
    engine.inject_items(4)

    engine.run_ticks(10)
    held = [i for i in engine.state.items if i.stage_index == 1]
    assert [i.state for i in held] == [ItemState.WAITING] * 4
    assert all(i.batch_membership for i in held)

    engine.inject_items(1)
    engine.run_ticks(5)
    assert states_at(engine, 1) == [ItemState.PROCESSING] * 5
    assert not any(i.batch_membership for i in engine.state.items)


# ========== Scenario A: spawn rate ==========

def test_too_many_features_doubles_spawns():
    settings = SimulationSettings(seed=1, defect_interval_ticks=1e9)
    baseline = build_value_stream(settings, rng=random.Random(1))
    doubled = build_value_stream(settings, rng=random.Random(1))
    doubled.set_constraint("too_many_features", True)

    baseline.run_ticks(200)
    doubled.run_ticks(200)

    assert baseline.state.spawner.spawned_total == 50
    assert doubled.state.spawner.spawned_total == 100


# ========== Reset ==========

def test_reset_is_idempotent_and_keeps_configuration():
    engine = build_value_stream(SimulationSettings(seed=9))
    engine.set_constraint("silos", True)
    engine.set_stage_config("dev", {"actor_capacity": 3})
    engine.run_ticks(100)
    assert engine.state.items

    engine.reset()
    first = engine.get_snapshot()
    engine.reset()
    second = engine.get_snapshot()

    assert first == second
    assert first.tick == 0
    assert first.items == ()
    assert first.metrics.total_delivered == 0
    assert first.constraints["silos"] is True
    assert engine.registry.get("dev").actor_capacity == 3
