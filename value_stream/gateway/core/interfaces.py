from abc import ABC, abstractmethod
from typing import Any, Dict


class ISource(ABC):
    """
    Where snapshots come from (the simulator's /api/state).
    """
    @abstractmethod
    def read(self) -> Dict[str, Any]:
        """
        Return the latest nested snapshot, or {} when none could be read.
        """


class ISink(ABC):
    """
    Where flattened tags go (MQTT topic, polled text file).
    """
    @abstractmethod
    def write(self, data: Dict[Any, Any]) -> None:
        """
        Publish one flat {tag or channel_id: value} frame.
        An empty frame is a no-op.
        """


class IAdapter(ABC):
    """
    Connection lifecycle shared by sources and sinks.

    Usable as a context manager so the gateway releases sessions and
    broker connections on exit.
    """
    @abstractmethod
    def connect(self):
        pass

    @abstractmethod
    def disconnect(self):
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False
