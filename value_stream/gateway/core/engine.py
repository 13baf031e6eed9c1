import logging
import time
from typing import Any, Dict, Optional

from .interfaces import ISink, ISource

logger = logging.getLogger("DataGateway")


def flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten a nested snapshot into dotted tags.

    {"metrics": {"wip": 3}} -> {"metrics.wip": 3}. Lists are indexed
    ("items.0.id"); list items with an "id" use that id instead.
    """
    tags: Dict[str, Any] = {}
    for key, value in data.items():
        tag = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            tags.update(flatten(value, tag))
        elif isinstance(value, list):
            for i, entry in enumerate(value):
                if isinstance(entry, dict):
                    tags.update(flatten(entry, f"{tag}.{entry.get('id', i)}"))
                else:
                    tags[f"{tag}.{i}"] = entry
        else:
            tags[tag] = value
    return tags


class DataEngine:
    """
    Core Logic: Read -> Flatten -> Map -> Write.
    Stateless / Minimally stateful.
    """
    def __init__(self, source: ISource, sink: ISink, mapping: Optional[Dict[str, Any]] = None):
        self.source = source
        self.sink = sink
        self.mapping = mapping
        self.running = False

    def step(self) -> bool:
        # 1. Read
        raw_data = self.source.read()
        if not raw_data:
            return False

        # 2. Flatten/Map
        normalized_data = self.process(raw_data)

        # 3. Write
        self.sink.write(normalized_data)
        return True

    def process(self, raw_data: Dict[str, Any]) -> Dict[Any, Any]:
        """
        Flattens the snapshot and maps tags to channel ids.
        If mapping is None, returns the flattened tags as-is.
        """
        tags = flatten(raw_data)
        if self.mapping is None:
            return tags

        output = {}
        for tag, value in tags.items():
            if tag in self.mapping:
                output[self.mapping[tag]] = value
        return output

    def run(self, interval: float = 1.0):
        self.running = True
        try:
            logger.info(f">>> Gateway Started. Polling every {interval}s...")
            while self.running:
                self.step()
                time.sleep(interval)
        except KeyboardInterrupt:
            self.running = False
            logger.info(">>> Gateway Stopped.")
