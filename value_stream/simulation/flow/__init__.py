"""
Value Stream Flow

Tick-driven work item simulation.

Responsibilities:
- Spawn items at the intake
- Move items through intake delay, capacity, processing and transfer
- Route rework backward
- Hold and release batch stages on cadence
- Record history and derive flow metrics

NO:
- Wall-clock timing (see simulation.clock)
- Presentation concerns
"""

from .constraints import Constraint, ConstraintSet
from .events import Event, EventDispatcher, FlowEventType
from .flow_engine import FlowEngine
from .gates import BatchGate, BatchPhase, CapacityGate
from .history import CompletionRecord, HistoryStore, StageHistory
from .items import ItemState, ItemView, WorkItem
from .metrics import MetricsAggregator, MetricsSnapshot, StageMetrics
from .rework import ReworkDecision, ReworkRouter
from .spawner import ItemSpawner

__all__ = [
    'Constraint',
    'ConstraintSet',
    'Event',
    'EventDispatcher',
    'FlowEventType',
    'FlowEngine',
    'BatchGate',
    'BatchPhase',
    'CapacityGate',
    'CompletionRecord',
    'HistoryStore',
    'StageHistory',
    'ItemState',
    'ItemView',
    'WorkItem',
    'MetricsAggregator',
    'MetricsSnapshot',
    'StageMetrics',
    'ReworkDecision',
    'ReworkRouter',
    'ItemSpawner',
]
