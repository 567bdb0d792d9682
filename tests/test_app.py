import pytest
from fastapi.testclient import TestClient

from app import create_app


def receive_until(ws, event, limit=20):
    """Read frames until one with the given event arrives; returns its data."""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame["data"]
    raise AssertionError(f"No '{event}' frame within {limit} frames")


def join_frame(username, room="lobby", theme=None):
    data = {"username": username, "room": room}
    if theme:
        data["theme"] = theme
    return {"event": "joinRoom", "data": data}


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "connections": 0, "users": 0, "groups": 0}


def test_room_conversation_over_websocket(client):
    with client.websocket_connect("/ws") as alice:
        alice.send_json(join_frame("alice", theme="dark"))
        assert receive_until(alice, "themePreference") == {"theme": "dark"}

        with client.websocket_connect("/ws") as bob:
            bob.send_json(join_frame("bob"))
            assert receive_until(bob, "themePreference") == {"theme": "light"}
            assert receive_until(alice, "message")["text"] == "bob has joined the chat"

            bob.send_json({"event": "chatMessage", "data": "hello"})
            message = receive_until(alice, "message")
            assert message["sender"] == "bob"
            assert message["text"] == "hello"

            roster = client.get("/rooms/lobby/users").json()
            assert roster["room"] == "lobby"
            assert [u["username"] for u in roster["users"]] == ["alice", "bob"]
            assert client.get("/health").json()["connections"] == 2

        assert receive_until(alice, "message")["text"] == "bob has left the chat"


def test_duplicate_username_is_rejected(client):
    with client.websocket_connect("/ws") as first:
        first.send_json(join_frame("alice"))
        receive_until(first, "themePreference")

        with client.websocket_connect("/ws") as second:
            second.send_json(join_frame("Alice"))
            error = second.receive_json()
            assert error["event"] == "joinError"
            assert "Alice" in error["data"]


def test_groups_over_websocket(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice.send_json(join_frame("alice"))
        receive_until(alice, "themePreference")
        bob.send_json(join_frame("bob"))
        receive_until(bob, "themePreference")

        alice.send_json({"event": "createGroup", "data": {"groupName": "devs"}})
        assert receive_until(alice, "groupCreated")["group"]["name"] == "devs"

        bob.send_json({"event": "joinGroup", "data": {"groupName": "devs"}})
        assert receive_until(bob, "groupJoinedSuccess")["group"]["members"] == ["alice", "bob"]
        assert receive_until(alice, "groupJoined") == {"groupName": "devs", "username": "bob"}

        alice.send_json({"event": "groupMessage", "data": {"groupName": "devs", "message": "standup at 9"}})
        assert receive_until(bob, "groupMessage")["message"]["text"] == "standup at 9"

        bob.send_json({"event": "requestGroupHistory", "data": {"groupName": "devs"}})
        history = receive_until(bob, "groupHistory")
        assert [m["text"] for m in history["messages"]] == ["standup at 9"]

        groups = client.get("/rooms/groups").json()["groups"]
        assert groups == [{"name": "devs", "members": ["alice", "bob"], "memberCount": 2}]


def test_malformed_frames_get_error_events(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": "Frames must be JSON objects"}

        ws.send_json({"data": {}})
        assert ws.receive_json() == {"event": "error", "data": "Frames need an 'event' name"}

        ws.send_json([1, 2])
        assert ws.receive_json() == {"event": "error", "data": "Frames need an 'event' name"}

        ws.send_json({"event": "chatMessage", "data": "hi"})
        assert ws.receive_json() == {"event": "joinError", "data": "You are not in a room"}
