"""
Rework Router

Decides at stage-completion time whether an item goes back upstream.

Order of checks (first hit wins, later checks are skipped):
1. %C/A draw for the stage just exited
2. coding_errors: extra draw when leaving the testing stage
3. quality_issues: draw when entering the testing stage
4. deployment catch for known defects, unless the slip-through draw passes

Boundary checks (3, 4) bounce the item from the stage it was entering.
Items leaving the intake are never reworked.

Delivery to the sink is handled separately by on_delivery().
"""

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from ...errors import ReworkRoutingError
from ..stages import StageConfig, StageKind, StageRole
from .constraints import Constraint, ConstraintSet
from .items import WorkItem


@dataclass(frozen=True)
class ReworkDecision:
    target_index: int
    reason: str
    mark_defect: bool = False
    mark_ambiguous: bool = False
    detected_at: Optional[int] = None  # stage the item is bounced from, if not the one it just left


class ReworkRouter:
    """
    Rework routing rules.

    Uses the engine's seeded RNG so runs replay deterministically.
    """

    def __init__(self, rng: random.Random):
        self._rng = rng

    # ========== Targets ==========

    @staticmethod
    def development_target(stages: Sequence[StageConfig], current_index: int) -> int:
        """Development stage if it is upstream, else the previous stage."""
        for i, stage in enumerate(stages[:current_index]):
            if stage.role == StageRole.DEVELOPMENT:
                return i
        return max(0, current_index - 1)

    @staticmethod
    def refinement_target(stages: Sequence[StageConfig], current_index: int) -> Optional[int]:
        for i, stage in enumerate(stages[:current_index]):
            if stage.role == StageRole.REFINEMENT:
                return i
        return None

    @staticmethod
    def check_target(item: WorkItem, target_index: int) -> None:
        """Rework must move strictly backward; anything else is a routing bug."""
        if not 0 <= target_index < item.stage_index:
            raise ReworkRoutingError(item.id, item.stage_index, target_index)

    # ========== Decisions ==========

    def on_stage_exit(
        self,
        item: WorkItem,
        stages: Sequence[StageConfig],
        constraints: ConstraintSet,
    ) -> Optional[ReworkDecision]:
        """
        Evaluate rework for the stage the item is leaving.

        Args:
            item: Item finishing its transfer (stage_index = stage just exited)
            stages: Effective stage list for this tick
            constraints: Active constraints

        Returns:
            ReworkDecision, or None to continue downstream
        """
        index = item.stage_index
        if index == 0:
            return None
        exited = stages[index]
        entering = stages[index + 1]
        fresh = not item.is_rework_in_flight

        if exited.kind == StageKind.PROCESS:
            if self._rng.random() < exited.rework_probability:
                is_refinement = exited.role == StageRole.REFINEMENT
                return ReworkDecision(
                    target_index=index - 1,
                    reason="incomplete_output",
                    mark_defect=fresh and not is_refinement,
                    mark_ambiguous=fresh and is_refinement,
                )

        if (exited.role == StageRole.TESTING and fresh
                and constraints.is_active(Constraint.CODING_ERRORS)
                and self._rng.random() < constraints.CODING_ERROR_PROBABILITY):
            return ReworkDecision(self.development_target(stages, index), "coding_error", mark_defect=True)

        if (entering.role == StageRole.TESTING and fresh
                and constraints.is_active(Constraint.QUALITY_ISSUES)
                and self._rng.random() < constraints.QUALITY_ISSUE_PROBABILITY):
            return ReworkDecision(self.development_target(stages, index + 1), "quality_issue",
                                  mark_defect=True, detected_at=index + 1)

        if entering.role == StageRole.DEPLOYMENT and item.is_defect:
            if self._rng.random() >= constraints.DEFECT_SLIP_THROUGH_PROBABILITY:
                return ReworkDecision(self.development_target(stages, index + 1), "defect_caught",
                                      detected_at=index + 1)

        return None

    def on_delivery(self, item: WorkItem, constraints: ConstraintSet) -> Optional[ReworkDecision]:
        """
        Production-defect check for an item that just reached the sink.

        Escaped defects always fail in production; clean items fail with
        the configured production defect rate.
        """
        if item.is_defect:
            return ReworkDecision(0, "escaped_defect")
        if self._rng.random() * 100.0 < constraints.production_defect_rate:
            return ReworkDecision(0, "production_defect")
        return None
