import asyncio
import json

import pytest

from conftest import drain
from connection_manager import ConnectionManager


class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


def test_channel_fanout_respects_subscriptions_and_exclude(connections):
    for cid in ("a", "b", "c"):
        connections.connect(cid)
    connections.subscribe("a", "room:lobby")
    connections.subscribe("b", "room:lobby")

    assert connections.to_channel("room:lobby", "message", {"text": "hi"}, exclude="a") == 1

    assert drain(connections, "a") == []
    assert drain(connections, "b") == [{"event": "message", "data": {"text": "hi"}}]
    assert drain(connections, "c") == []


def test_to_all_and_send(connections):
    connections.connect("a")
    connections.connect("b")

    assert connections.to_all("allUsers", {"users": []}) == 2
    assert connections.send("a", "themePreference", {"theme": "dark"}) is True
    assert connections.send("ghost", "themePreference", {"theme": "dark"}) is False

    assert [f["event"] for f in drain(connections, "a")] == ["allUsers", "themePreference"]


def test_unsubscribe_and_disconnect(connections):
    connections.connect("a")
    connections.subscribe("a", "room:lobby")
    connections.subscribe("a", "group:devs")
    connections.unsubscribe("a", "group:devs")

    assert "group:devs" not in connections.subscribers
    assert connections.subscribers["room:lobby"] == {"a"}

    queue = connections.queues["a"]
    connections.disconnect("a")

    assert "a" not in connections.queues
    assert "room:lobby" not in connections.subscribers
    assert queue.get_nowait() is None
    assert connections.to_channel("room:lobby", "message", {}) == 0


def test_subscribe_unknown_connection_is_ignored(connections):
    connections.subscribe("ghost", "room:lobby")

    assert "room:lobby" not in connections.subscribers


@pytest.mark.asyncio
async def test_pump_writes_frames_in_order_until_disconnect():
    manager = ConnectionManager()
    websocket = FakeWebSocket()
    queue = manager.connect("a")
    writer = asyncio.create_task(manager.pump("a", queue, websocket))

    manager.send("a", "message", {"text": "one"})
    manager.send("a", "message", {"text": "two"})
    manager.disconnect("a")
    await asyncio.wait_for(writer, timeout=1.0)

    assert [f["data"]["text"] for f in websocket.sent] == ["one", "two"]


@pytest.mark.asyncio
async def test_pump_stops_when_socket_fails():
    manager = ConnectionManager()
    queue = manager.connect("a")
    writer = asyncio.create_task(manager.pump("a", queue, FakeWebSocket(fail=True)))

    manager.send("a", "message", {"text": "lost"})
    await asyncio.wait_for(writer, timeout=1.0)

    assert writer.done()
