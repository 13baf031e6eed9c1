from .engine import DataEngine, flatten
from .interfaces import IAdapter, ISink, ISource

__all__ = [
    'DataEngine', 'flatten', 'IAdapter', 'ISink', 'ISource',
]
