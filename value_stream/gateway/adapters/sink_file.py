import logging
import os
from typing import Any, Dict

from ..core.interfaces import IAdapter, ISink

logger = logging.getLogger("FileSink")


class FileSink(ISink, IAdapter):
    """
    Keeps the latest frame in a text file for polling importers.

    One `tag;value` line per tag. Booleans become 1/0 and nulls (an
    unbounded actor_capacity, for instance) become empty values.
    """
    def __init__(self, file_path: str):
        self.file_path = file_path
        self.temp_path = file_path + ".tmp"
        self.frames_written = 0

    def connect(self):
        os.makedirs(os.path.dirname(os.path.abspath(self.file_path)), exist_ok=True)

    def disconnect(self):
        if os.path.exists(self.temp_path):
            os.remove(self.temp_path)

    @staticmethod
    def format_value(value: Any) -> str:
        if isinstance(value, bool):
            return "1" if value else "0"
        if value is None:
            return ""
        return str(value)

    def write(self, data: Dict[Any, Any]) -> None:
        if not data:
            return

        lines = [f"{tag};{self.format_value(value)}\n" for tag, value in data.items()]
        try:
            # Readers only ever see a complete frame
            with open(self.temp_path, "w") as f:
                f.writelines(lines)
            os.replace(self.temp_path, self.file_path)
            self.frames_written += 1
        except OSError as e:
            logger.error(f"File Sink Write Failed: {e}")
