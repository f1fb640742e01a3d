"""
Shared test fixtures: an in-memory stand-in for RedisBackend, fake
websockets, and an engine wired with local fan-out.
"""

import json

import httpx
import pytest

from broadcast import LocalBroadcaster
from connections import ConnectionRegistry, ConnectionSession
from engine import RoomSyncEngine
from execution import ExecutionRelay
from fakes import FakeWebSocket, InMemoryBackend, PISTON_OK


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def execution_requests():
    return []


@pytest.fixture
def execution_handler(execution_requests):
    """Replaceable handler behind the relay's MockTransport."""
    def handler(request: httpx.Request) -> httpx.Response:
        execution_requests.append(json.loads(request.content))
        return httpx.Response(200, json=PISTON_OK)
    return handler


@pytest.fixture
def relay(execution_handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: execution_handler(request)))
    return ExecutionRelay(url="https://piston.test/api/v2/execute", timeout=2.0, client=client)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def engine(backend, registry, relay):
    return RoomSyncEngine(backend, registry, LocalBroadcaster(registry), relay)


@pytest.fixture
def make_session():
    counter = iter(range(1, 10_000))

    def factory():
        return ConnectionSession(FakeWebSocket(), connection_id=f"conn-{next(counter)}")
    return factory
