import threading
from typing import Any, Dict


class SnapshotStore:
    """
    Single source of truth for readers of the simulation.
    Thread-safe storage for the latest engine snapshot.
    """
    _instance = None
    _store: Dict[str, Any] = {}
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(SnapshotStore, cls).__new__(cls)
            cls._store = {}
        return cls._instance

    @classmethod
    def update(cls, snapshot: Dict[str, Any]):
        """
        Replace the stored snapshot with a newer one.
        """
        with cls._lock:
            cls._store = dict(snapshot)

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """
        Get entire state snapshot.
        """
        with cls._lock:
            return dict(cls._store)

    @classmethod
    def get(cls, key: str):
        with cls._lock:
            return cls._store.get(key)

    @classmethod
    def clear(cls):
        with cls._lock:
            cls._store = {}
