"""
Data Gateway - Adapter Tests

No broker or server needed: the REST source is pointed at a patched
requests call and the MQTT sink gets a recording client.
"""

import json

import paho.mqtt.client as mqtt
import requests

from value_stream.gateway.adapters import FileSink, MQTTSink, RestSourceAdapter
from value_stream.gateway.core import DataEngine, ISink, ISource, flatten
from value_stream.gateway.main import build_parser


class StaticSource(ISource):
    def __init__(self, data):
        self.data = data

    def read(self):
        return self.data


class RecordingSink(ISink):
    def __init__(self):
        self.writes = []

    def write(self, data):
        self.writes.append(data)


class FakePublishInfo:
    rc = mqtt.MQTT_ERR_SUCCESS


class FakeMQTTClient:
    def __init__(self):
        self.published = []

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload))
        return FakePublishInfo()


def test_flatten_nested_snapshot():
    snapshot = {
        "tick": 12,
        "metrics": {"wip": 4, "stages": {"dev": {"avg_wait_ticks": 2.0}}},
        "stages": [{"id": "backlog", "actor_capacity": None}, {"id": "dev", "actor_capacity": 5}],
        "constraints": {"silos": True},
    }
    assert flatten(snapshot) == {
        "tick": 12,
        "metrics.wip": 4,
        "metrics.stages.dev.avg_wait_ticks": 2.0,
        "stages.backlog.id": "backlog",
        "stages.backlog.actor_capacity": None,
        "stages.dev.id": "dev",
        "stages.dev.actor_capacity": 5,
        "constraints.silos": True,
    }


def test_data_engine_maps_tags_to_channels():
    sink = RecordingSink()
    engine = DataEngine(StaticSource({"tick": 3, "metrics": {"wip": 7}}), sink, mapping={"metrics.wip": 101})
    assert engine.step()
    assert sink.writes == [{101: 7}]


def test_data_engine_skips_empty_reads():
    sink = RecordingSink()
    assert not DataEngine(StaticSource({}), sink).step()
    assert sink.writes == []


def test_engine_snapshot_flows_to_file(engine, tmp_path):
    engine.inject_items(2)
    engine.run_ticks(3)
    out = tmp_path / "export" / "tags.txt"
    sink = FileSink(str(out))
    sink.connect()

    DataEngine(StaticSource(engine.get_snapshot().to_dict()), sink).step()

    lines = dict(line.split(";", 1) for line in out.read_text().splitlines())
    assert lines["tick"] == "3"
    assert lines["metrics.wip"] == "2"
    assert lines["constraints.silos"] == "0"
    assert lines["stages.test.actor_capacity"] == ""
    assert not (tmp_path / "export" / "tags.txt.tmp").exists()
    assert sink.frames_written == 1


def test_file_sink_value_formatting():
    assert FileSink.format_value(True) == "1"
    assert FileSink.format_value(None) == ""
    assert FileSink.format_value(2.5) == "2.5"


def test_mqtt_sink_publishes_json():
    client = FakeMQTTClient()
    sink = MQTTSink("localhost", 1883, "value-stream/state", client=client)
    sink.write({"metrics.wip": 3, 101: True})
    sink.write({})

    assert len(client.published) == 1
    topic, payload = client.published[0]
    assert topic == "value-stream/state"
    assert json.loads(payload) == {"metrics.wip": 3, "101": True}


def test_rest_source_swallows_transport_errors(monkeypatch):
    def refuse(url, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "get", refuse)
    assert RestSourceAdapter("http://localhost:1/api/state").read() == {}


def test_rest_source_reads_json(monkeypatch):
    class Response:
        status_code = 200

        def json(self):
            return {"tick": 5}

    monkeypatch.setattr(requests, "get", lambda url, timeout: Response())
    assert RestSourceAdapter("http://sim/api/state").read() == {"tick": 5}


def test_cli_defaults():
    args = build_parser().parse_args([])
    assert args.sink == "mqtt"
    assert build_parser().parse_args(["--sink", "file", "--interval", "0.5"]).interval == 0.5


def test_adapters_work_as_context_managers(tmp_path):
    out = tmp_path / "nested" / "tags.txt"
    with FileSink(str(out)) as sink:
        sink.write({"tick": 1})
    assert out.read_text() == "tick;1\n"
