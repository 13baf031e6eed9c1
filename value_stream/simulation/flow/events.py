"""
Event System for the Flow Engine

CRITICAL RULES:
- Events are emitted by the flow pass, after the transition happened
- Subscribers observe; they never mutate item state
- Timestamps are simulation ticks, not wall-clock time
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List


class FlowEventType(str, Enum):
    """
    Flow event types.

    Emitted on state changes that matter to observers,
    NOT on every simulation tick.
    """
    # Intake
    ITEM_SPAWNED = "ITEM_SPAWNED"

    # Stage boundaries
    STAGE_COMPLETED = "STAGE_COMPLETED"
    REWORK_ROUTED = "REWORK_ROUTED"

    # Batch gates
    BATCH_RELEASED = "BATCH_RELEASED"

    # Sink
    ITEM_DELIVERED = "ITEM_DELIVERED"
    PRODUCTION_DEFECT = "PRODUCTION_DEFECT"
    ITEM_EVICTED = "ITEM_EVICTED"

    # Lifecycle
    SIMULATION_RESET = "SIMULATION_RESET"


@dataclass(frozen=True)
class Event:
    """
    Flow event.

    Emitted when an item crosses a stage boundary or a gate changes state.
    """
    type: FlowEventType
    tick: int
    stage_id: str
    data: Dict[str, Any]  # Event-specific data (item_id, target_stage, ...)

    def __repr__(self) -> str:
        return f"Event({self.type.value}, tick={self.tick}, stage={self.stage_id})"


class EventDispatcher:
    """
    Event dispatcher for pub-sub pattern.

    Keeps a bounded log of recent events for diagnostics.
    """

    def __init__(self, log_size: int = 500):
        self._subscribers: Dict[FlowEventType, List[Callable[[Event], None]]] = {}
        self._event_log: Deque[Event] = deque(maxlen=log_size)

    def subscribe(self, event_type: FlowEventType, callback: Callable[[Event], None]) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event type to subscribe to
            callback: Function to call when event is emitted
        """
        self._subscribers.setdefault(event_type, []).append(callback)

    def emit(self, event: Event) -> None:
        """
        Emit an event to all subscribers.

        Args:
            event: Event to emit
        """
        self._event_log.append(event)
        for callback in self._subscribers.get(event.type, []):
            callback(event)

    def get_event_log(self) -> List[Event]:
        """Get event log (for debugging/analysis)"""
        return list(self._event_log)

    def count(self, event_type: FlowEventType) -> int:
        return sum(1 for e in self._event_log if e.type == event_type)

    def clear_log(self) -> None:
        """Clear event log"""
        self._event_log.clear()
