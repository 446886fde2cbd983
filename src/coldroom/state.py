"""
Application State

Holds every in-memory store of the server in one object that is injected
into the session handler, and converts the whole thing to and from the
persisted snapshot.
"""

import logging
from typing import Any, Dict, Optional

from .credentials import CredentialStore, hash_password
from .moderation import ModerationState
from .presence import PresenceTracker
from .private_messages import PrivateMessageStore
from .room_state import OFFICIAL_ROOM_NAME, Room, RoomStateManager
from .support import SupportInbox
from .system_settings import SystemSettings
from .user_registry import User, UserRegistry

logger = logging.getLogger(__name__)


class AppState:
    """
    All server state.

    Responsibilities:
    - Own the user, room, moderation, private message, support and
      settings stores plus the ephemeral presence tracker
    - Bootstrap the owner account and the official room
    - Produce and restore the persisted snapshot
    """

    def __init__(self):
        self.users = UserRegistry()
        self.credentials = CredentialStore(self.users)
        self.rooms = RoomStateManager()
        self.moderation = ModerationState()
        self.presence = PresenceTracker()
        self.private_messages = PrivateMessageStore()
        self.support = SupportInbox()
        self.settings = SystemSettings()

    def bootstrap(
        self,
        owner_handle: str,
        owner_password: str,
        owner_display_name: str,
        official_room_name: str = OFFICIAL_ROOM_NAME,
    ) -> bool:
        """
        Create the owner account and the official room if missing.

        Returns:
            True if anything was created
        """
        created = False
        owner = self.users.owner
        if owner is None:
            owner = self.users.create_owner(
                handle=owner_handle,
                password_hash=hash_password(owner_password),
                display_name=owner_display_name,
            )
            created = True
        if self.rooms.official_room is None:
            self.rooms.create_official_room(owner, name=official_room_name)
            created = True
        return created

    @property
    def official_room(self) -> Optional[Room]:
        return self.rooms.official_room

    @property
    def owner(self) -> Optional[User]:
        return self.users.owner

    def delete_user(self, user_id: str) -> User:
        """
        Delete an account and cascade to every store.

        Raises:
            NotFound: Unknown user
            PermissionDenied: Target is the owner
        """
        user = self.users.delete_user(user_id)
        self.rooms.purge_user(user_id)
        self.private_messages.forget_user(user_id)
        self.moderation.forget_user(user_id)
        self.support.forget_user(user_id)
        self.presence.remove(user_id)
        return user

    # Snapshot

    def to_snapshot(self) -> Dict[str, Any]:
        """Full dump of every persisted store."""
        snapshot = {
            "users": {user.user_id: user.to_dict() for user in self.users.list_users()},
            "rooms": self.rooms.to_snapshot(),
            "private_messages": self.private_messages.to_snapshot(),
            "support_messages": self.support.to_snapshot(),
            "system_settings": self.settings.to_dict(),
        }
        snapshot.update(self.moderation.to_snapshot())
        return snapshot

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any]) -> "AppState":
        """
        Rebuild state from a snapshot. Missing sections start empty.
        """
        state = cls()
        snapshot = snapshot or {}
        for user_data in (snapshot.get("users") or {}).values():
            state.users.add(User.from_dict(user_data))
        state.rooms.load_snapshot(snapshot.get("rooms") or {})
        state.moderation.load_snapshot(snapshot)
        state.private_messages.load_snapshot(snapshot.get("private_messages") or {})
        state.support.load_snapshot(snapshot.get("support_messages") or {})
        state.settings = SystemSettings.from_dict(snapshot.get("system_settings") or {})
        logger.info(
            f"Restored {len(state.users)} users and {len(state.rooms)} rooms "
            f"from snapshot"
        )
        return state
