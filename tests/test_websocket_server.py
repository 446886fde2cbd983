"""
Tests for the WebSocket Server

Tests for the transport layer including:
- The /settings endpoint and static file serving
- Upgrade requests passing through to the handshake
- The per-connection loop and disconnect cleanup
"""

import json

import pytest
from websockets.datastructures import Headers
from websockets.http11 import Request

from coldroom.channels import ChannelHub
from coldroom.session import SessionHandler
from coldroom.state import AppState
from coldroom.websocket_server import WebSocketServer


class MockConnection:
    """Mock server connection yielding a fixed list of frames."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.sent_messages = []
        self.remote_address = ("127.0.0.1", 50000)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame

    async def send(self, message):
        self.sent_messages.append(message)

    async def close(self, code=1000, reason=""):
        pass


@pytest.fixture
def state():
    app = AppState()
    app.bootstrap("COLDKING", "kingpass", "Cold Room King", "Global")
    return app


@pytest.fixture
def static_dir(tmp_path):
    root = tmp_path / "static"
    root.mkdir()
    (root / "index.html").write_text("<h1>Cold Room</h1>", encoding="utf-8")
    (root / "app.js").write_text("console.log('hi');", encoding="utf-8")
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")
    return root


@pytest.fixture
def server(state, static_dir):
    handler = SessionHandler(state, ChannelHub())
    return WebSocketServer(state, handler, "127.0.0.1", 0, str(static_dir))


def get(path, **headers):
    return Request(path, Headers(list(headers.items())))


# ===== HTTP Tests =====


@pytest.mark.asyncio
async def test_settings_endpoint(server):
    response = await server.process_request(None, get("/settings"))
    assert response.status_code == 200
    assert response.headers["Content-Type"] == "application/json"
    assert json.loads(response.body)["siteTitle"] == "Cold Room"


@pytest.mark.asyncio
async def test_index_is_served_for_root(server):
    response = await server.process_request(None, get("/"))
    assert response.status_code == 200
    assert response.body == b"<h1>Cold Room</h1>"
    assert response.headers["Content-Type"] == "text/html"


@pytest.mark.asyncio
async def test_static_file_with_query(server):
    response = await server.process_request(None, get("/app.js?v=2"))
    assert response.status_code == 200
    assert b"console.log" in response.body


@pytest.mark.asyncio
async def test_missing_file_is_404(server):
    response = await server.process_request(None, get("/missing.css"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_directory_traversal_is_rejected(server):
    response = await server.process_request(None, get("/../secret.txt"))
    assert response.status_code == 404
    response = await server.process_request(None, get("/%2e%2e/secret.txt"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_upgrade_request_passes_through(server):
    request = get("/anything", Upgrade="websocket", Connection="Upgrade")
    assert await server.process_request(None, request) is None


def test_no_static_dir(state):
    server = WebSocketServer(state, SessionHandler(state, ChannelHub()), "127.0.0.1", 0)
    assert server.resolve_static("/index.html") is None


# ===== Connection Tests =====


@pytest.mark.asyncio
async def test_handle_client_processes_frames_and_cleans_up(server, state):
    """Frames are handled in order and the session is cleaned up at the end."""
    connection = MockConnection(
        [
            json.dumps({"type": "login", "data": {"handle": "COLDKING", "password": "kingpass"}}),
            json.dumps({"type": "ping"}),
        ]
    )

    await server.handle_client(connection)

    types = [json.loads(m)["type"] for m in connection.sent_messages]
    assert types[0] == "login-success"
    assert types[-1] == "pong"
    assert state.official_room.members == []
    assert not state.presence.is_online(state.owner.user_id)
    assert server.hub.sessions == []
