"""Shared fixtures for orchestrator and tool gateway tests."""

import pytest

from shared.models import ProviderSelection
from orchestrator.llm import MockBackend, ProviderRegistry
from orchestrator.rooms import ClientConnection, RoomManager


def drain(connection: ClientConnection) -> list[dict]:
    """Pop every queued event from a connection's outbox."""
    events = []
    while not connection.outbox.empty():
        events.append(connection.outbox.get_nowait())
    return events


@pytest.fixture
def primary() -> MockBackend:
    return MockBackend()


@pytest.fixture
def secondary() -> MockBackend:
    return MockBackend()


@pytest.fixture
def critic() -> MockBackend:
    return MockBackend()


@pytest.fixture
def registry(primary, secondary, critic) -> ProviderRegistry:
    return ProviderRegistry(
        {
            ProviderSelection.PRIMARY: primary,
            ProviderSelection.SECONDARY: secondary,
        },
        critic=critic,
    )


@pytest.fixture
def rooms() -> RoomManager:
    return RoomManager()


@pytest.fixture
def events():
    """Callable returning the events queued for a connection since the last call."""
    return drain
