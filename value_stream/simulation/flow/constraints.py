"""
Constraint Set

Named modifiers toggled from outside the simulation. The flow pass
consults them at fixed decision points; nothing here mutates items.
"""

import logging
from enum import Enum
from typing import Dict, List, Sequence

from ...errors import ConfigurationError
from ..stages import StageConfig, StageRole, StepType

logger = logging.getLogger("ConstraintSet")


class Constraint(str, Enum):
    SILOS = "silos"
    LARGE_BATCHES = "large_batches"
    QUALITY_ISSUES = "quality_issues"
    MANUAL_DEPLOY = "manual_deploy"
    CONTEXT_SWITCHING = "context_switching"
    MANUAL_TESTING = "manual_testing"
    UNCLEAR_REQUIREMENTS = "unclear_requirements"
    INFREQUENT_DEPLOY = "infrequent_deploy"
    TOO_MANY_FEATURES = "too_many_features"
    UNSTABLE_PRODUCTION = "unstable_production"
    CODING_ERRORS = "coding_errors"


class ConstraintSet:
    """
    Active constraints plus the numeric knobs that go with them.

    Probabilities and factors are class constants so tests can
    reason about them without reaching into the flow engine.
    """

    # Probabilities (per draw)
    SILO_BLOCK_PROBABILITY = 0.15
    MANUAL_DEPLOY_RELEASE_PROBABILITY = 0.02
    UNCLEAR_REQUIREMENTS_PROBABILITY = 0.03
    QUALITY_ISSUE_PROBABILITY = 0.35
    CODING_ERROR_PROBABILITY = 0.20
    DEFECT_SLIP_THROUGH_PROBABILITY = 0.10

    # Speed divisors
    MANUAL_TESTING_SLOWDOWN = 10.0
    MANUAL_DEPLOY_SLOWDOWN = 20.0
    CONTEXT_SWITCH_LOAD_THRESHOLD = 3
    CONTEXT_SWITCH_FACTOR = 0.4

    # Floors / overrides
    MANUAL_TESTING_MIN_WAIT_HOURS = 8.0
    MANUAL_TESTING_CAPACITY = 1

    def __init__(
        self,
        batch_size: int = 1,
        production_defect_rate: float = 5.0,
        deployment_schedule_hours: float = 24.0,
        large_batch_threshold: int = 5,
    ):
        self._active: Dict[Constraint, bool] = {c: False for c in Constraint}
        self.batch_size = batch_size
        self.production_defect_rate = production_defect_rate
        self.deployment_schedule_hours = deployment_schedule_hours
        self.large_batch_threshold = large_batch_threshold

    # ========== Toggles ==========

    def set(self, name, enabled: bool) -> None:
        """
        Enable or disable a constraint by name.

        Raises:
            ConfigurationError: unknown constraint name
        """
        try:
            constraint = Constraint(name)
        except ValueError:
            raise ConfigurationError(f"Unknown constraint: {name}") from None
        self._active[constraint] = bool(enabled)
        logger.info(f"Constraint {constraint.value} -> {'ON' if enabled else 'OFF'}")

    def is_active(self, constraint: Constraint) -> bool:
        return self._active[constraint]

    def active(self) -> List[str]:
        return [c.value for c, on in self._active.items() if on]

    def as_dict(self) -> Dict[str, bool]:
        return {c.value: on for c, on in self._active.items()}

    # ========== Spawn multipliers ==========

    def feature_rate_multiplier(self) -> float:
        return 2.0 if self.is_active(Constraint.TOO_MANY_FEATURES) else 1.0

    def defect_rate_multiplier(self) -> float:
        return 2.0 if self.is_active(Constraint.UNSTABLE_PRODUCTION) else 1.0

    # ========== Effective stage view ==========

    def apply(self, stages: Sequence[StageConfig]) -> List[StageConfig]:
        """
        Derive the per-tick stage view.

        - manual_testing forces the testing stage down to one manual actor
        - infrequent_deploy turns the deployment stage into a batch
          stage on the deployment schedule
        """
        effective = []
        for stage in stages:
            if stage.role == StageRole.TESTING and self.is_active(Constraint.MANUAL_TESTING):
                step_type = StepType.MANUAL if stage.step_type == StepType.AUTOMATED else stage.step_type
                stage = stage.with_changes(actor_capacity=self.MANUAL_TESTING_CAPACITY, step_type=step_type)
            if stage.role == StageRole.DEPLOYMENT and self.is_active(Constraint.INFREQUENT_DEPLOY):
                stage = stage.with_changes(
                    step_type=StepType.BATCH,
                    cadence_hours=self.deployment_schedule_hours,
                )
            effective.append(stage)
        return effective

    def intake_wait_floor_hours(self, stage: StageConfig) -> float:
        if stage.role == StageRole.TESTING and self.is_active(Constraint.MANUAL_TESTING):
            return self.MANUAL_TESTING_MIN_WAIT_HOURS
        return 0.0

    def processing_speed(self, stage: StageConfig, stage_load: int) -> float:
        """
        Product of active constraint penalties for one processing tick.

        Args:
            stage: Stage the item is processing in
            stage_load: Items at the stage that are not returning
        """
        speed = 1.0
        if stage.role == StageRole.TESTING and self.is_active(Constraint.MANUAL_TESTING):
            speed /= self.MANUAL_TESTING_SLOWDOWN
        if stage.role == StageRole.DEPLOYMENT and self.is_active(Constraint.MANUAL_DEPLOY):
            speed /= self.MANUAL_DEPLOY_SLOWDOWN
        if self.is_active(Constraint.CONTEXT_SWITCHING) and stage_load > self.CONTEXT_SWITCH_LOAD_THRESHOLD:
            speed /= stage_load * self.CONTEXT_SWITCH_FACTOR
        return speed
