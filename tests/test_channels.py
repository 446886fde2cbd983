"""
Tests for Connection Channels

Tests for the channel hub including:
- Room channel subscription
- Delivery to closed connections
- Forced disconnects
"""

import json

import pytest
import websockets

from coldroom.channels import CLOSE_CODE_POLICY, ChannelHub, ClientSession


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self):
        self.sent_messages = []
        self.closed = False
        self.close_code = None

    async def send(self, message):
        self.sent_messages.append(message)

    async def close(self, code=1000, reason=""):
        self.closed = True
        self.close_code = code


class ClosedWebSocket(MockWebSocket):
    """Mock WebSocket whose connection is already gone."""

    async def send(self, message):
        raise websockets.exceptions.ConnectionClosed(None, None)


@pytest.fixture
def hub():
    return ChannelHub()


def make_session(hub, user_id=None, websocket=None):
    session = ClientSession(websocket=websocket or MockWebSocket(), user_id=user_id)
    hub.register(session)
    return session


# ===== Channel Tests =====


def test_join_switches_channel(hub):
    """A session is subscribed to one room channel at a time."""
    session = make_session(hub)
    hub.join(session, "room_a")
    hub.join(session, "room_b")
    assert session.current_room == "room_b"
    assert hub.room_sessions("room_a") == []
    assert hub.room_sessions("room_b") == [session]


def test_leave_returns_room(hub):
    session = make_session(hub)
    hub.join(session, "room_a")
    assert hub.leave(session) == "room_a"
    assert hub.leave(session) is None
    assert session.current_room is None


def test_close_channel_evicts_everyone(hub):
    first = make_session(hub)
    second = make_session(hub)
    hub.join(first, "room_a")
    hub.join(second, "room_a")
    evicted = hub.close_channel("room_a")
    assert set(evicted) == {first, second}
    assert first.current_room is None
    assert hub.room_sessions("room_a") == []


def test_unregister_leaves_channel(hub):
    session = make_session(hub, "user_1")
    hub.join(session, "room_a")
    hub.unregister(session)
    assert hub.sessions == []
    assert hub.room_sessions("room_a") == []
    assert not hub.is_user_connected("user_1")


# ===== Delivery Tests =====


@pytest.mark.asyncio
async def test_broadcast_room_excludes_sender(hub):
    sender = make_session(hub)
    other = make_session(hub)
    outsider = make_session(hub)
    hub.join(sender, "room_a")
    hub.join(other, "room_a")
    hub.join(outsider, "room_b")

    await hub.broadcast_room("room_a", {"type": "ping", "data": {}}, exclude=sender)

    assert sender.websocket.sent_messages == []
    assert json.loads(other.websocket.sent_messages[0])["type"] == "ping"
    assert outsider.websocket.sent_messages == []


@pytest.mark.asyncio
async def test_send_to_closed_connection(hub):
    """Sending to a closed connection is dropped, not raised."""
    session = make_session(hub, websocket=ClosedWebSocket())
    assert await hub.send(session, {"type": "x", "data": None}) is False


@pytest.mark.asyncio
async def test_send_to_user_reaches_every_session(hub):
    first = make_session(hub, "user_1")
    second = make_session(hub, "user_1")
    make_session(hub, "user_2")
    assert await hub.send_to_user("user_1", {"type": "x", "data": None}) is True
    assert len(first.websocket.sent_messages) == 1
    assert len(second.websocket.sent_messages) == 1
    assert await hub.send_to_user("user_3", {"type": "x", "data": None}) is False


@pytest.mark.asyncio
async def test_disconnect_sends_notice_and_closes(hub):
    session = make_session(hub, "user_1")
    hub.join(session, "room_a")

    await hub.disconnect(session, {"type": "banned", "data": {}}, reason="banned")

    assert json.loads(session.websocket.sent_messages[0])["type"] == "banned"
    assert session.websocket.closed
    assert session.websocket.close_code == CLOSE_CODE_POLICY
    assert session.user_id is None
    assert hub.room_sessions("room_a") == []
