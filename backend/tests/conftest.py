"""Shared test fixtures and configuration for backend tests."""
from typing import Any, Callable, List, Optional, Tuple

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from eventroom.events.channels import Channel
from eventroom.events.coordinator import EventCoordinator, set_coordinator

# Short enough to keep grace-period tests fast
TEST_GRACE_PERIOD = 0.05


class RecordingChannel(Channel):
    """Channel that records every delivered event instead of sending it."""

    def __init__(self, connection_id: Optional[str] = None) -> None:
        super().__init__(connection_id)
        self.events: List[Tuple[str, Any]] = []

    def deliver(self, event: str, payload: Any) -> bool:
        self.events.append((event, payload))
        return True

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> List[Any]:
        return [payload for name, payload in self.events if name == event]

    def texts(self) -> List[str]:
        return [payload["text"] for payload in self.of("newMessage")]

    def clear(self) -> None:
        self.events.clear()


@pytest_asyncio.fixture
async def coordinator():
    """Provide a fresh coordinator with a short grace period."""
    coord = EventCoordinator(grace_period_seconds=TEST_GRACE_PERIOD)
    yield coord
    await coord.shutdown()


@pytest.fixture
def make_channel(coordinator) -> Callable[[], RecordingChannel]:
    """Factory for recording channels already connected to the coordinator."""
    def _make(connection_id: Optional[str] = None) -> RecordingChannel:
        channel = RecordingChannel(connection_id)
        coordinator.connect(channel)
        return channel
    return _make


@pytest.fixture
def api_client():
    """Provide a TestClient with its own coordinator for every test.

    Used as a context manager so that the lifespan runs and all requests and
    websocket sessions share one event loop.
    """
    from eventroom.main import app

    set_coordinator(EventCoordinator(grace_period_seconds=TEST_GRACE_PERIOD))
    with TestClient(app) as client:
        yield client
    set_coordinator(None)
