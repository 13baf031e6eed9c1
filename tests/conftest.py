import pytest
from fastapi.testclient import TestClient

from value_stream.config import SimulationSettings
from value_stream.main import create_app
from value_stream.simulation import build_value_stream
from value_stream.snapshot import SnapshotStore


@pytest.fixture
def engine():
    return build_value_stream(SimulationSettings(seed=42))


@pytest.fixture
def client(engine):
    SnapshotStore.clear()
    app = create_app(engine, start_loop=False)
    with TestClient(app) as test_client:
        yield test_client
    SnapshotStore.clear()
