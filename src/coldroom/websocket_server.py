"""
WebSocket Server for the Chat Server

Accepts client connections, feeds their frames to the session handler and
serves the small HTTP surface (settings JSON and static files) on the same
port.
"""

import asyncio
import json
import logging
import mimetypes
import os
from http import HTTPStatus
from typing import Optional
from urllib.parse import unquote, urlparse

import websockets
from websockets.asyncio.server import ServerConnection, serve
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from .channels import ChannelHub, ClientSession
from .session import SessionHandler
from .state import AppState

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"


def _http_response(status: HTTPStatus, body: bytes, content_type: str) -> Response:
    headers = Headers(
        [
            ("Content-Type", content_type),
            ("Content-Length", str(len(body))),
            ("Connection", "close"),
        ]
    )
    return Response(status.value, status.phrase, headers, body)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


class WebSocketServer:
    """
    WebSocket server for handling client connections.

    Each connection gets a ClientSession registered with the hub; frames are
    processed one at a time in arrival order by the session handler.
    """

    def __init__(
        self,
        state: AppState,
        handler: SessionHandler,
        host: str,
        port: int,
        static_dir: Optional[str] = None,
    ):
        """
        Initialize the WebSocket server.

        Args:
            state: Application state (read for the /settings endpoint)
            handler: Session handler processing inbound events
            host: Host address to bind to
            port: Port to listen on
            static_dir: Directory served for plain HTTP GET requests
        """
        self.state = state
        self.handler = handler
        self.hub: ChannelHub = handler.hub
        self.host = host
        self.port = port
        self.static_dir = os.path.realpath(static_dir) if static_dir else None
        self.server = None

    async def start(self):
        """Start the WebSocket server."""
        self.server = await serve(
            self.handle_client,
            self.host,
            self.port,
            process_request=self.process_request,
        )
        logger.info(f"WebSocket server started on ws://{self.host}:{self.port}")

    async def stop(self):
        """Stop the WebSocket server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("WebSocket server stopped")

    # HTTP

    async def process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        """
        Answer plain HTTP requests; let upgrade requests through.

        Returns:
            None to continue with the WebSocket handshake, or the response
        """
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None

        path = urlparse(request.path).path
        if path == "/settings":
            body = json.dumps(self.state.settings.to_dict()).encode("utf-8")
            return _http_response(HTTPStatus.OK, body, "application/json")

        file_path = self.resolve_static(path)
        if file_path is None:
            return _http_response(HTTPStatus.NOT_FOUND, b"Not Found", "text/plain")

        loop = asyncio.get_running_loop()
        try:
            body = await loop.run_in_executor(None, _read_file, file_path)
        except OSError as e:
            logger.error(f"Failed to read static file {file_path}: {e}")
            return _http_response(HTTPStatus.NOT_FOUND, b"Not Found", "text/plain")
        content_type = mimetypes.guess_type(file_path)[0] or "application/octet-stream"
        return _http_response(HTTPStatus.OK, body, content_type)

    def resolve_static(self, path: str) -> Optional[str]:
        """
        Map a request path to a file inside the static directory.

        Returns:
            The absolute file path, or None if there is no such file or the
            path escapes the static directory
        """
        if self.static_dir is None:
            return None
        relative = unquote(path).lstrip("/") or INDEX_FILE
        candidate = os.path.realpath(os.path.join(self.static_dir, relative))
        if os.path.commonpath([self.static_dir, candidate]) != self.static_dir:
            logger.warning(f"Rejected static path outside root: {path}")
            return None
        if os.path.isdir(candidate):
            candidate = os.path.join(candidate, INDEX_FILE)
        if not os.path.isfile(candidate):
            return None
        return candidate

    # WebSocket

    async def handle_client(self, websocket: ServerConnection):
        """
        Handle a client connection.

        Args:
            websocket: The WebSocket connection
        """
        session = ClientSession(
            websocket=websocket, remote_address=str(websocket.remote_address)
        )
        self.hub.register(session)
        logger.info(f"Client {session.session_id} connected from {session.remote_address}")

        try:
            async for frame in websocket:
                if isinstance(frame, bytes):
                    frame = frame.decode("utf-8", errors="replace")
                await self.handler.handle_frame(session, frame)
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Client {session.session_id} connection closed")
        except Exception as e:
            logger.error(f"Error handling client {session.session_id}: {e}")
        finally:
            await self.handler.handle_disconnect(session)
