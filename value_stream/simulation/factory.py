from typing import List, Optional
import random

from ..config import SimulationSettings
from .engine import ValueStreamEngine
from .stages import StageConfig, StageKind, StageRegistry, StageRole, StepType, TimeRange


def default_stages() -> List[StageConfig]:
    """
    Standard agile flow with continuous deployment.

    Times are simulated hours; capacity None = unbounded actors.
    """
    return [
        StageConfig("backlog", "Backlog", kind=StageKind.INTAKE),
        StageConfig(
            "analysis", "Refining Work", step_type=StepType.MANUAL, role=StageRole.REFINEMENT,
            process_time=TimeRange(2, 4), wait_time=TimeRange(8, 8),
            actor_capacity=2, percent_complete_accurate=95,
        ),
        StageConfig(
            "dev", "Development", step_type=StepType.MANUAL, role=StageRole.DEVELOPMENT,
            process_time=TimeRange(1, 8), wait_time=TimeRange(8, 8),
            actor_capacity=5, percent_complete_accurate=95,
        ),
        StageConfig(
            "review", "Code Review", step_type=StepType.MANUAL, role=StageRole.REVIEW,
            process_time=TimeRange(0.5, 2), wait_time=TimeRange(4, 8),
            actor_capacity=2, percent_complete_accurate=95,
        ),
        StageConfig(
            "test", "Testing", step_type=StepType.AUTOMATED, role=StageRole.TESTING,
            process_time=TimeRange(0.5, 1), percent_complete_accurate=95,
        ),
        StageConfig(
            "deploy", "Deployment", step_type=StepType.AUTOMATED, role=StageRole.DEPLOYMENT,
            process_time=TimeRange(0.8, 1.2), percent_complete_accurate=95,
        ),
        StageConfig("done", "Production", kind=StageKind.SINK),
    ]


def build_value_stream(
    settings: Optional[SimulationSettings] = None,
    rng: Optional[random.Random] = None,
) -> ValueStreamEngine:
    """
    Build the engine around the default stage layout.

    CRITICAL: This function ONLY assembles stages and the engine.
    - NO flow logic (handled by FlowEngine)
    - NO wall-clock timing (handled by SimulationClock)
    """
    registry = StageRegistry(default_stages())
    return ValueStreamEngine(registry, settings=settings, rng=rng)
