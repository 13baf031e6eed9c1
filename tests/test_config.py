import json

from value_stream.config import CONFIG_ENV_VAR, DEFAULTS, SimulationSettings, load_config
from value_stream.simulation import build_value_stream


def test_missing_file_falls_back_to_defaults(tmp_path):
    assert load_config(str(tmp_path / "absent.json")) == DEFAULTS


def test_file_overrides_defaults_via_env(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"batch_size": 4, "seed": 1}))
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

    config = load_config()
    assert config["batch_size"] == 4
    assert config["port"] == DEFAULTS["port"]


def test_settings_feed_the_engine():
    settings = SimulationSettings.from_config(dict(DEFAULTS, batch_size=50, production_defect_rate=12))
    engine = build_value_stream(settings)
    assert engine.constraints.batch_size == 20
    assert engine.constraints.production_defect_rate == 12.0
    assert engine.clock.tick_seconds == 0.5
