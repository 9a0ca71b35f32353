import pytest
from fastapi.testclient import TestClient

from app import app
from coordinator import Coordinator


def drain_queue(connection):
    messages = []
    while not connection.outbound.empty():
        messages.append(connection.outbound.get_nowait())
    return messages


@pytest.fixture
def coordinator():
    return Coordinator()


@pytest.fixture
def drain():
    return drain_queue


@pytest.fixture
def connect(coordinator):
    """Register a connection and discard its init-ack."""
    async def _connect(user_id=None):
        connection = await coordinator.register(user_id)
        drain_queue(connection)
        return connection
    return _connect


@pytest.fixture
def client():
    app.state.coordinator = Coordinator()
    app.state.dashboard_interval = 0.05
    # a single TestClient portal keeps every socket on one event loop
    with TestClient(app) as test_client:
        yield test_client
