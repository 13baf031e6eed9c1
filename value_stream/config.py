"""
Configuration Loading

Settings come from a JSON file merged over built-in defaults.
A missing file is not an error: the defaults are used as-is.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Any, Optional

logger = logging.getLogger("Config")

CONFIG_ENV_VAR = "VALUE_STREAM_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "..", "config", "settings.json")

DEFAULTS: Dict[str, Any] = {
    # Service
    "host": "0.0.0.0",
    "port": 8000,
    "log_level": "INFO",

    # Simulation
    "seed": 42,
    "tick_seconds": 0.5,            # wall-clock seconds per tick at 1x
    "speed_multiplier": 1.0,
    "feature_interval_ticks": 4.0,
    "defect_interval_ticks": 20.0,
    "batch_size": 1,
    "production_defect_rate": 5.0,  # percent
    "deployment_schedule_hours": 24.0,

    # Gateway
    "gateway_url": "http://localhost:8000/api/state",
    "gateway_interval_sec": 1.0,
    "mqtt_broker": "localhost",
    "mqtt_port": 1883,
    "mqtt_topic": "value-stream/state",
}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load settings, falling back to defaults for anything missing.

    Args:
        path: Explicit settings file. Defaults to $VALUE_STREAM_CONFIG,
              then config/settings.json at the repository root.

    Returns:
        Dict of settings (defaults overlaid with file contents)
    """
    config_path = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config = dict(DEFAULTS)
    try:
        with open(config_path, "r") as f:
            config.update(json.load(f))
    except FileNotFoundError:
        logger.info(f"No settings file at {config_path}, using defaults")
    return config


@dataclass(frozen=True)
class SimulationSettings:
    """Typed view of the simulation part of the configuration."""
    seed: Optional[int] = 42
    tick_seconds: float = 0.5
    speed_multiplier: float = 1.0
    feature_interval_ticks: float = 4.0
    defect_interval_ticks: float = 20.0
    batch_size: int = 1
    production_defect_rate: float = 5.0
    deployment_schedule_hours: float = 24.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SimulationSettings":
        return cls(
            seed=config.get("seed", 42),
            tick_seconds=float(config.get("tick_seconds", 0.5)),
            speed_multiplier=float(config.get("speed_multiplier", 1.0)),
            feature_interval_ticks=float(config.get("feature_interval_ticks", 4.0)),
            defect_interval_ticks=float(config.get("defect_interval_ticks", 20.0)),
            batch_size=int(config.get("batch_size", 1)),
            production_defect_rate=float(config.get("production_defect_rate", 5.0)),
            deployment_schedule_hours=float(config.get("deployment_schedule_hours", 24.0)),
        )
