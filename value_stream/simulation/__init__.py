from .clock import RunState, SimulationClock
from .engine import EngineSnapshot, SimulationState, ValueStreamEngine
from .factory import build_value_stream, default_stages

__all__ = [
    'RunState',
    'SimulationClock',
    'EngineSnapshot',
    'SimulationState',
    'ValueStreamEngine',
    'build_value_stream',
    'default_stages',
]
