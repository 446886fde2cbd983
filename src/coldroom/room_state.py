"""
Room State Management

This module manages the in-memory state of every chat room: identity,
membership, moderators, the bounded message log and per-room media.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .credentials import hash_password, verify_password
from .errors import NotFound, PermissionDenied, WrongPassword
from .user_registry import User
from .utils import (
    MAX_MESSAGE_LENGTH,
    MAX_ROOM_DESCRIPTION_LENGTH,
    MAX_ROOM_NAME_LENGTH,
    coerce_text,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

# Configuration constants for room logs
MAX_ROOM_MESSAGES = 500  # oldest messages are evicted beyond this
RECENT_MESSAGE_COUNT = 50  # messages sent with room-joined
DEFAULT_MUSIC_VOLUME = 0.5
OFFICIAL_ROOM_NAME = "❄️ Cold Room - Global"
OFFICIAL_ROOM_DESCRIPTION = "Main room for everyone"


class MessageKind(Enum):
    """Kind of payload a room message carries."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


@dataclass
class Message:
    """
    A message in a room log.

    Author name, avatar and badges are snapshots taken at send time and are
    not updated if the author later changes them.

    Attributes:
        message_id: Unique identifier
        room_id: Room the message was posted in
        user_id: Author ID
        display_name: Author display name at send time
        avatar: Author avatar at send time
        profile_picture: Author profile picture at send time
        kind: MessageKind of the payload
        text: Text body (text messages)
        url: Media URL (image and video messages)
        created_at: ISO 8601 timestamp
        edited: True once the author has edited it
        is_owner: Author was the owner at send time
        is_moderator: Author moderated this room at send time
    """

    message_id: str
    room_id: str
    user_id: str
    display_name: str
    avatar: str
    kind: MessageKind = MessageKind.TEXT
    text: str = ""
    url: str = ""
    profile_picture: Optional[str] = None
    created_at: str = ""
    edited: bool = False
    is_owner: bool = False
    is_moderator: bool = False

    def __post_init__(self):
        if not self.created_at:
            self.created_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire and snapshot form."""
        data = {
            "id": self.message_id,
            "roomId": self.room_id,
            "userId": self.user_id,
            "username": self.display_name,
            "avatar": self.avatar,
            "profilePicture": self.profile_picture,
            "kind": self.kind.value,
            "date": self.created_at,
            "edited": self.edited,
            "isOwner": self.is_owner,
            "isModerator": self.is_moderator,
            "isImage": self.kind == MessageKind.IMAGE,
            "isVideo": self.kind == MessageKind.VIDEO,
        }
        if self.kind == MessageKind.TEXT:
            data["text"] = self.text
        elif self.kind == MessageKind.IMAGE:
            data["imageUrl"] = self.url
        else:
            data["videoUrl"] = self.url
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        kind = MessageKind(data.get("kind", MessageKind.TEXT.value))
        return cls(
            message_id=data["id"],
            room_id=data.get("roomId", ""),
            user_id=data.get("userId", ""),
            display_name=data.get("username", ""),
            avatar=data.get("avatar", ""),
            kind=kind,
            text=data.get("text", ""),
            url=data.get("imageUrl") or data.get("videoUrl") or "",
            profile_picture=data.get("profilePicture"),
            created_at=data.get("date", ""),
            edited=bool(data.get("edited", False)),
            is_owner=bool(data.get("isOwner", False)),
            is_moderator=bool(data.get("isModerator", False)),
        )


@dataclass
class Room:
    """
    Represents a chat room.

    Attributes:
        room_id: Unique identifier for the room
        name: Name of the room
        description: Room description
        creator_id: ID of the user who created the room
        created_by: Creator display name at creation time
        is_official: True for the single global room
        password_hash: Hash of the room password, or None
        members: User IDs currently in the room, in join order
        moderators: User IDs that moderate the room
        messages: Message log, oldest first, at most MAX_ROOM_MESSAGES
        is_silenced: Whether ordinary members are blocked from sending
        video_url: Optional attached room video
        music_url: Optional attached room music
        music_volume: Playback volume for the room music
        created_at: ISO 8601 timestamp when the room was created
    """

    room_id: str
    name: str
    description: str
    creator_id: str
    created_by: str
    is_official: bool = False
    password_hash: Optional[str] = None
    members: List[str] = field(default_factory=list)
    moderators: List[str] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    is_silenced: bool = False
    video_url: Optional[str] = None
    music_url: Optional[str] = None
    music_volume: float = DEFAULT_MUSIC_VOLUME
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = utc_now_iso()

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def to_dict(self) -> Dict[str, Any]:
        """Convert room to the directory listing form."""
        return {
            "id": self.room_id,
            "name": self.name,
            "description": self.description,
            "createdBy": self.created_by,
            "userCount": len(self.members),
            "hasPassword": self.has_password,
            "isOfficial": self.is_official,
        }

    def to_snapshot(self) -> Dict[str, Any]:
        """Convert room to its full persisted form."""
        return {
            "id": self.room_id,
            "name": self.name,
            "description": self.description,
            "creatorId": self.creator_id,
            "createdBy": self.created_by,
            "isOfficial": self.is_official,
            "password": self.password_hash,
            "users": list(self.members),
            "moderators": list(self.moderators),
            "messages": [message.to_dict() for message in self.messages],
            "isSilenced": self.is_silenced,
            "videoUrl": self.video_url,
            "musicUrl": self.music_url,
            "musicVolume": self.music_volume,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Room":
        return cls(
            room_id=data["id"],
            name=data.get("name", "Untitled"),
            description=data.get("description", ""),
            creator_id=data.get("creatorId", ""),
            created_by=data.get("createdBy", ""),
            is_official=bool(data.get("isOfficial", False)),
            password_hash=data.get("password"),
            # Connections do not survive a restart
            members=[],
            moderators=list(data.get("moderators") or []),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            is_silenced=bool(data.get("isSilenced", False)),
            video_url=data.get("videoUrl"),
            music_url=data.get("musicUrl"),
            music_volume=data.get("musicVolume", DEFAULT_MUSIC_VOLUME),
            created_at=data.get("createdAt", ""),
        )

    def media_dict(self) -> Dict[str, Any]:
        return {
            "roomId": self.room_id,
            "videoUrl": self.video_url,
            "musicUrl": self.music_url,
            "musicVolume": self.music_volume,
        }

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.message_id == message_id:
                return message
        return None


class RoomStateManager:
    """
    Manages the state of all rooms.

    Membership checks are linear in the room size; rooms keep plain lists
    of member and moderator ids.
    """

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        logger.info("RoomStateManager initialized")

    def __len__(self) -> int:
        return len(self._rooms)

    # Lifecycle

    def create_official_room(
        self,
        owner: User,
        name: str = OFFICIAL_ROOM_NAME,
        description: str = OFFICIAL_ROOM_DESCRIPTION,
    ) -> Room:
        """
        Create the global room if it does not exist yet.

        Returns:
            The official room (existing or new)
        """
        existing = self.official_room
        if existing is not None:
            return existing

        room = Room(
            room_id=f"room_{uuid.uuid4()}",
            name=name,
            description=description,
            creator_id=owner.user_id,
            created_by=owner.display_name,
            is_official=True,
        )
        self._rooms[room.room_id] = room
        logger.info(f"Created official room '{name}' (ID: {room.room_id})")
        return room

    @property
    def official_room(self) -> Optional[Room]:
        for room in self._rooms.values():
            if room.is_official:
                return room
        return None

    def create_room(
        self,
        name: Any,
        description: Any,
        password: Any,
        creator: User,
    ) -> Room:
        """
        Create a new room.

        Args:
            name: Room name, truncated to MAX_ROOM_NAME_LENGTH
            description: Description, truncated to MAX_ROOM_DESCRIPTION_LENGTH
            password: Optional plaintext password
            creator: The creating user

        Returns:
            The created Room object
        """
        name = coerce_text(name, MAX_ROOM_NAME_LENGTH).strip() or "Untitled"
        password = coerce_text(password)
        room = Room(
            room_id=f"room_{uuid.uuid4()}",
            name=name,
            description=coerce_text(description, MAX_ROOM_DESCRIPTION_LENGTH),
            creator_id=creator.user_id,
            created_by=creator.display_name,
            password_hash=hash_password(password) if password else None,
        )
        self._rooms[room.room_id] = room
        logger.info(
            f"Created room '{name}' (ID: {room.room_id}) by user {creator.user_id}"
        )
        return room

    def add(self, room: Room):
        """Insert an already-built room (snapshot restore)."""
        self._rooms[room.room_id] = room

    def get_room(self, room_id: Optional[str]) -> Optional[Room]:
        """
        Get a room by its ID.

        Returns:
            The Room object if found, None otherwise
        """
        if not room_id:
            return None
        return self._rooms.get(room_id)

    def require_room(self, room_id: Optional[str]) -> Room:
        room = self.get_room(room_id)
        if room is None:
            raise NotFound("Room not found")
        return room

    def all_rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def list_rooms(self) -> List[Dict]:
        """
        Room directory: official room first, then busiest first.

        Returns:
            List of room dictionaries with metadata
        """
        rooms = sorted(
            self._rooms.values(),
            key=lambda room: (not room.is_official, -len(room.members)),
        )
        return [room.to_dict() for room in rooms]

    def update_room(
        self,
        room_id: str,
        name: Any = None,
        description: Any = None,
        password: Any = None,
        password_given: bool = False,
    ) -> Room:
        """
        Rename, re-describe or re-password a room.

        Fields left as None are unchanged. When password_given is True an
        empty password clears protection. The official room never gets a
        password.
        """
        room = self.require_room(room_id)
        if name is not None:
            room.name = coerce_text(name, MAX_ROOM_NAME_LENGTH).strip() or room.name
        if description is not None:
            room.description = coerce_text(description, MAX_ROOM_DESCRIPTION_LENGTH)
        if password_given and not room.is_official:
            password = coerce_text(password)
            room.password_hash = hash_password(password) if password else None
        logger.info(f"Updated room '{room.name}' (ID: {room_id})")
        return room

    def delete_room(self, room_id: str) -> List[str]:
        """
        Delete a room.

        Returns:
            IDs of the members that were in the room

        Raises:
            NotFound: Unknown room
            PermissionDenied: The room is the official room
        """
        room = self.require_room(room_id)
        if room.is_official:
            raise PermissionDenied("Cannot delete room")
        del self._rooms[room_id]
        logger.info(f"Deleted room '{room.name}' (ID: {room_id})")
        return list(room.members)

    # Membership

    def check_join(
        self, room_id: str, password: Any, bypass_password: bool = False
    ) -> Room:
        """
        Verify that a user may enter a room.

        Raises:
            NotFound: Unknown room
            WrongPassword: Room is protected and the password does not match
        """
        room = self.require_room(room_id)
        if room.has_password and not bypass_password:
            if not verify_password(room.password_hash, coerce_text(password)):
                raise WrongPassword()
        return room

    def add_member(self, room_id: str, user_id: str) -> bool:
        """
        Add a member to a room.

        Returns:
            True if member was added, False if already present or no room
        """
        room = self._rooms.get(room_id)
        if room and user_id not in room.members:
            room.members.append(user_id)
            logger.info(f"Added user {user_id} to room '{room.name}' (ID: {room_id})")
            return True
        return False

    def remove_member(self, room_id: str, user_id: str) -> bool:
        """
        Remove a member from a room.

        Returns:
            True if member was removed, False if room or user doesn't exist
        """
        room = self._rooms.get(room_id)
        if room and user_id in room.members:
            room.members.remove(user_id)
            logger.info(
                f"Removed user {user_id} from room '{room.name}' (ID: {room_id})"
            )
            return True
        return False

    # Moderators

    def add_moderator(self, room_id: str, user_id: str) -> Room:
        room = self.require_room(room_id)
        if user_id not in room.moderators:
            room.moderators.append(user_id)
            logger.info(f"User {user_id} now moderates room {room_id}")
        return room

    def remove_moderator(self, room_id: str, user_id: str) -> Room:
        room = self.require_room(room_id)
        if user_id in room.moderators:
            room.moderators.remove(user_id)
            logger.info(f"User {user_id} no longer moderates room {room_id}")
        return room

    def is_moderator(self, room_id: Optional[str], user_id: str) -> bool:
        room = self.get_room(room_id)
        return bool(room and user_id in room.moderators)

    def is_moderator_anywhere(self, user_id: str) -> bool:
        return any(user_id in room.moderators for room in self._rooms.values())

    # Message log

    def append_message(self, room_id: str, message: Message) -> Message:
        """
        Append a message, evicting the oldest beyond MAX_ROOM_MESSAGES.
        """
        room = self.require_room(room_id)
        room.messages.append(message)
        if len(room.messages) > MAX_ROOM_MESSAGES:
            del room.messages[: len(room.messages) - MAX_ROOM_MESSAGES]
        return message

    def edit_message(
        self, room_id: str, message_id: str, author_id: str, new_text: Any
    ) -> Message:
        """
        Edit a text message in place.

        Only the original author may edit, and only text messages. The
        author and timestamp are preserved.

        Raises:
            NotFound: Unknown room, unknown message, wrong author or not text
        """
        room = self.require_room(room_id)
        message = room.find_message(message_id)
        if (
            message is None
            or message.user_id != author_id
            or message.kind != MessageKind.TEXT
        ):
            raise NotFound("Message not found or permission denied")
        message.text = coerce_text(new_text, MAX_MESSAGE_LENGTH)
        message.edited = True
        return message

    def delete_message(self, room_id: str, message_id: str) -> bool:
        room = self.require_room(room_id)
        before = len(room.messages)
        room.messages = [m for m in room.messages if m.message_id != message_id]
        return len(room.messages) != before

    def recent_messages(
        self, room_id: str, limit: int = RECENT_MESSAGE_COUNT
    ) -> List[Dict]:
        room = self.require_room(room_id)
        return [message.to_dict() for message in room.messages[-limit:]]

    def clean_room(self, room_id: str) -> Room:
        room = self.require_room(room_id)
        room.messages = []
        logger.info(f"Cleaned messages in room {room_id}")
        return room

    def clean_all_rooms(self) -> List[str]:
        for room in self._rooms.values():
            room.messages = []
        logger.info("Cleaned messages in all rooms")
        return list(self._rooms)

    # Room controls

    def set_silenced(self, room_id: str, silenced: bool) -> Room:
        room = self.require_room(room_id)
        room.is_silenced = silenced
        return room

    def set_room_video(self, room_id: str, video_url: Optional[str]) -> Room:
        room = self.require_room(room_id)
        room.video_url = video_url or None
        return room

    def set_room_music(
        self, room_id: str, music_url: Optional[str], volume: float
    ) -> Room:
        room = self.require_room(room_id)
        room.music_url = music_url or None
        room.music_volume = volume
        return room

    # Cascade

    def purge_user(self, user_id: str) -> List[str]:
        """
        Remove every trace of a user: membership, moderatorships, messages.

        Returns:
            IDs of rooms that changed
        """
        touched = []
        for room in self._rooms.values():
            changed = False
            if user_id in room.members:
                room.members.remove(user_id)
                changed = True
            if user_id in room.moderators:
                room.moderators.remove(user_id)
                changed = True
            kept = [m for m in room.messages if m.user_id != user_id]
            if len(kept) != len(room.messages):
                room.messages = kept
                changed = True
            if changed:
                touched.append(room.room_id)
        return touched

    # Snapshot

    def to_snapshot(self) -> Dict[str, Any]:
        return {room_id: room.to_snapshot() for room_id, room in self._rooms.items()}

    def load_snapshot(self, data: Dict[str, Any]):
        self._rooms = {}
        for room_data in (data or {}).values():
            room = Room.from_snapshot(room_data)
            self._rooms[room.room_id] = room
