"""
Error types for the simulation core.

CRITICAL RULES:
- Configuration problems are rejected at the command boundary
- Routing bugs fail fast, they are never clamped
"""


class ConfigurationError(ValueError):
    """Invalid stage, constraint or registry configuration."""


class ReworkRoutingError(AssertionError):
    """A rework target was not strictly upstream of the item's stage."""

    def __init__(self, item_id: str, stage_index: int, target_index: int):
        super().__init__(
            f"Rework for item {item_id} must move backward: "
            f"stage {stage_index} -> {target_index}"
        )
        self.item_id = item_id
        self.stage_index = stage_index
        self.target_index = target_index
