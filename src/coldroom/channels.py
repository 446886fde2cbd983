"""
Connection Channels

Tracks live connections, the user bound to each, and which room channel
each is subscribed to, and fans events out to them.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import websockets

logger = logging.getLogger(__name__)

CLOSE_CODE_POLICY = 1008  # RFC 6455 policy violation, used for bans/deletion


@dataclass(eq=False)
class ClientSession:
    """
    State carried by one live connection.

    Attributes:
        websocket: The underlying connection
        session_id: Identifier used in logs
        remote_address: Peer address, if known
        user_id: Bound user, set only after a successful login
        current_room: Room channel the connection is subscribed to
        login_failures: Consecutive failed logins on this connection
        login_blocked_until: Epoch seconds until which logins are refused
    """

    websocket: Any
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    remote_address: str = ""
    user_id: Optional[str] = None
    current_room: Optional[str] = None
    login_failures: int = 0
    login_blocked_until: float = 0.0

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class ChannelHub:
    """
    Registry of live sessions and room channels.

    A session is subscribed to at most one room channel at a time.
    """

    def __init__(self):
        self._sessions: Set[ClientSession] = set()
        # Maps room_id -> sessions subscribed to that room
        self._room_clients: Dict[str, Set[ClientSession]] = {}

    # Registration

    def register(self, session: ClientSession):
        self._sessions.add(session)

    def unregister(self, session: ClientSession):
        self.leave(session)
        self._sessions.discard(session)

    @property
    def sessions(self) -> List[ClientSession]:
        return list(self._sessions)

    def sessions_for_user(self, user_id: str) -> List[ClientSession]:
        return [s for s in self._sessions if s.user_id == user_id]

    def is_user_connected(self, user_id: str) -> bool:
        return any(s.user_id == user_id for s in self._sessions)

    # Channels

    def join(self, session: ClientSession, room_id: str):
        """
        Subscribe a session to a room channel, leaving its previous one.
        """
        if session.current_room and session.current_room != room_id:
            self.leave(session)
        self._room_clients.setdefault(room_id, set()).add(session)
        session.current_room = room_id

    def leave(self, session: ClientSession) -> Optional[str]:
        """
        Unsubscribe a session from its current room channel.

        Returns:
            The room ID it left, or None
        """
        room_id = session.current_room
        if room_id is None:
            return None
        subscribers = self._room_clients.get(room_id)
        if subscribers is not None:
            subscribers.discard(session)
            if not subscribers:
                del self._room_clients[room_id]
        session.current_room = None
        return room_id

    def close_channel(self, room_id: str) -> List[ClientSession]:
        """
        Drop a room channel, unsubscribing everyone in it.

        Returns:
            The sessions that were subscribed
        """
        subscribers = list(self._room_clients.pop(room_id, set()))
        for session in subscribers:
            session.current_room = None
        return subscribers

    def room_sessions(self, room_id: str) -> List[ClientSession]:
        return list(self._room_clients.get(room_id, ()))

    # Delivery

    async def send(self, session: ClientSession, message: Dict[str, Any]) -> bool:
        """
        Send one event to one session.

        Returns:
            False if the connection was already closed
        """
        try:
            await session.websocket.send(json.dumps(message))
            return True
        except websockets.exceptions.ConnectionClosed:
            logger.debug(
                f"Dropped '{message.get('type')}' for closed session "
                f"{session.session_id}"
            )
            return False

    async def broadcast_room(
        self,
        room_id: str,
        message: Dict[str, Any],
        exclude: Optional[ClientSession] = None,
    ):
        """
        Broadcast an event to the sessions subscribed to a room right now.

        Args:
            room_id: The room ID
            message: The event to broadcast
            exclude: Optional session to skip
        """
        for session in self.room_sessions(room_id):
            if session is not exclude:
                await self.send(session, message)

    async def broadcast_all(self, message: Dict[str, Any]):
        """Broadcast an event to every connected session."""
        for session in self.sessions:
            await self.send(session, message)

    async def send_to_user(self, user_id: str, message: Dict[str, Any]) -> bool:
        """
        Send an event to every session bound to a user.

        Returns:
            True if at least one session received it
        """
        delivered = False
        for session in self.sessions_for_user(user_id):
            delivered = await self.send(session, message) or delivered
        return delivered

    async def disconnect(
        self,
        session: ClientSession,
        message: Optional[Dict[str, Any]] = None,
        reason: str = "",
    ):
        """
        Forcibly terminate a session.

        The terminal notice is delivered best-effort before the close. The
        session is unbound and unsubscribed first so no further events
        reach it.
        """
        if message is not None:
            await self.send(session, message)
        self.leave(session)
        session.user_id = None
        try:
            await session.websocket.close(code=CLOSE_CODE_POLICY, reason=reason)
        except websockets.exceptions.ConnectionClosed:
            pass
        logger.info(f"Session {session.session_id} disconnected: {reason}")
