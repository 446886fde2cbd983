"""
Cold Room Chat Server Package

This package provides the chat server: in-memory stores for users, rooms,
moderation and private messages, the session handler implementing the
event protocol, snapshot persistence and the WebSocket server.
"""

from .errors import ChatError, ErrorCode
from .room_state import RoomStateManager, Room, Message, MessageKind
from .user_registry import UserRegistry, User, Role
from .state import AppState
from .channels import ChannelHub, ClientSession
from .session import SessionHandler
from .persistence import Persister, SnapshotStore
from .websocket_server import WebSocketServer
from .config import ServerConfig

__all__ = [
    "ChatError",
    "ErrorCode",
    "RoomStateManager",
    "Room",
    "Message",
    "MessageKind",
    "UserRegistry",
    "User",
    "Role",
    "AppState",
    "ChannelHub",
    "ClientSession",
    "SessionHandler",
    "Persister",
    "SnapshotStore",
    "WebSocketServer",
    "ServerConfig",
]
