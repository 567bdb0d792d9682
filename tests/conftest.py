from datetime import datetime, timedelta, timezone

import pytest

from backend import MemoryThemeBackend
from connection_manager import ConnectionManager
from services.session_coordinator import SessionCoordinator


class FakeClock:
    """Returns a strictly increasing instant on every call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        value = self.now
        self.now += self.step
        return value


def drain(connections: ConnectionManager, connection_id: str) -> list:
    """Pop every frame queued for a connection."""
    queue = connections.queues[connection_id]
    frames = []
    while not queue.empty():
        frames.append(queue.get_nowait())
    return frames


def events(frames: list, name: str) -> list:
    return [f["data"] for f in frames if f["event"] == name]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def themes():
    return MemoryThemeBackend()


@pytest.fixture
def coordinator(connections, themes, clock):
    return SessionCoordinator(
        transport=connections,
        themes=themes,
        clock=clock,
        bot_name="Bot",
        welcome_message="Welcome",
        valid_themes=["light", "dark"],
        default_theme="light",
    )


@pytest.fixture
def connect(connections):
    """Register transport connections by name: connect("c1") -> "c1"."""

    def _connect(connection_id: str) -> str:
        connections.connect(connection_id)
        return connection_id

    return _connect
