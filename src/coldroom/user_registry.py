"""
User Registry

This module holds the in-memory user records: identity, profile, role,
name-change counters and send capabilities.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import (
    DisplayNameTaken,
    NotFound,
    PermissionDenied,
    QuotaExceeded,
    ValidationFailed,
)
from .utils import coerce_text, is_image_url, utc_now_iso, MAX_URL_LENGTH

logger = logging.getLogger(__name__)

FREE_NAME_CHANGES = 2
MIN_DISPLAY_NAME_LENGTH = 3
MAX_DISPLAY_NAME_LENGTH = 30


class Role(Enum):
    """Platform-wide role of a user."""

    OWNER = "owner"
    MEMBER = "member"


def avatar_for(gender: str, role: Role = Role.MEMBER) -> str:
    """Pick the default avatar emoji for a gender tag."""
    if role == Role.OWNER:
        return "👑"
    return "🤴" if gender == "prince" else "👸"


@dataclass
class User:
    """
    A registered account.

    Attributes:
        user_id: Unique identifier
        handle: Login handle (unique, case-insensitive)
        display_name: Name shown to other users (unique, case-insensitive)
        password_hash: One-way password hash
        role: Role.OWNER for the single owner, Role.MEMBER otherwise
        gender: Gender tag chosen at registration
        avatar: Avatar emoji
        profile_picture: Optional image URL
        special_badges: Badge emojis shown next to the name
        joined_at: ISO 8601 timestamp of account creation
        name_change_count: Free display-name changes used so far
        can_send_images: Whether the user may post images
        can_send_videos: Whether the user may post videos
    """

    user_id: str
    handle: str
    display_name: str
    password_hash: str
    role: Role = Role.MEMBER
    gender: str = "unknown"
    avatar: str = "👸"
    profile_picture: Optional[str] = None
    special_badges: List[str] = field(default_factory=list)
    joined_at: str = ""
    name_change_count: int = 0
    can_send_images: bool = False
    can_send_videos: bool = False

    def __post_init__(self):
        if not self.joined_at:
            self.joined_at = utc_now_iso()

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the persisted snapshot."""
        return {
            "id": self.user_id,
            "username": self.handle,
            "displayName": self.display_name,
            "password": self.password_hash,
            "role": self.role.value,
            "gender": self.gender,
            "avatar": self.avatar,
            "profilePicture": self.profile_picture,
            "specialBadges": list(self.special_badges),
            "joinDate": self.joined_at,
            "nameChangeCount": self.name_change_count,
            "canSendImages": self.can_send_images,
            "canSendVideos": self.can_send_videos,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        """Rebuild a user from its snapshot form."""
        role = Role.OWNER if data.get("role") == Role.OWNER.value else Role.MEMBER
        return cls(
            user_id=data["id"],
            handle=data["username"],
            display_name=data["displayName"],
            password_hash=data.get("password", ""),
            role=role,
            gender=data.get("gender", "unknown"),
            avatar=data.get("avatar", avatar_for(data.get("gender", ""), role)),
            profile_picture=data.get("profilePicture"),
            special_badges=list(data.get("specialBadges") or []),
            joined_at=data.get("joinDate", ""),
            name_change_count=int(data.get("nameChangeCount") or 0),
            can_send_images=bool(data.get("canSendImages", False)),
            can_send_videos=bool(data.get("canSendVideos", False)),
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """The user as shown to the user themself after login."""
        return {
            "id": self.user_id,
            "username": self.handle,
            "displayName": self.display_name,
            "avatar": self.avatar,
            "gender": self.gender,
            "isOwner": self.is_owner,
            "canSendImages": self.can_send_images,
            "canSendVideos": self.can_send_videos,
            "specialBadges": list(self.special_badges),
            "nameChangeCount": self.name_change_count,
            "profilePicture": self.profile_picture,
        }


class UserRegistry:
    """
    Manages every user record.

    Lookups by handle and display name are linear scans; there is no
    secondary index.
    """

    def __init__(self):
        self._users: Dict[str, User] = {}

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._users

    # Creation

    def create_user(
        self,
        handle: str,
        password_hash: str,
        display_name: str,
        gender: str = "unknown",
    ) -> User:
        """
        Create a member account.

        Uniqueness of the handle and display name is checked by the caller
        (see CredentialStore.register).

        Returns:
            The created User
        """
        user = User(
            user_id=f"user_{uuid.uuid4()}",
            handle=handle,
            display_name=display_name,
            password_hash=password_hash,
            gender=gender,
            avatar=avatar_for(gender),
        )
        self._users[user.user_id] = user
        logger.info(f"Registered user '{display_name}' (ID: {user.user_id})")
        return user

    def create_owner(
        self, handle: str, password_hash: str, display_name: str
    ) -> User:
        """
        Create the single platform owner.

        Raises:
            ValueError: If an owner already exists
        """
        if self.owner is not None:
            raise ValueError("An owner account already exists")

        user = User(
            user_id=f"user_{uuid.uuid4()}",
            handle=handle,
            display_name=display_name,
            password_hash=password_hash,
            role=Role.OWNER,
            gender="prince",
            avatar=avatar_for("prince", Role.OWNER),
            special_badges=["👑"],
            can_send_images=True,
            can_send_videos=True,
        )
        self._users[user.user_id] = user
        logger.info(f"Created owner '{display_name}' (ID: {user.user_id})")
        return user

    def add(self, user: User):
        """
        Insert an already-built user (snapshot restore).

        Raises:
            ValueError: If the user is an owner and an owner already exists
        """
        existing_owner = self.owner
        if (
            user.is_owner
            and existing_owner is not None
            and existing_owner.user_id != user.user_id
        ):
            raise ValueError("An owner account already exists")
        self._users[user.user_id] = user

    # Lookup

    def get_user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return self._users.get(user_id)

    def require_user(self, user_id: Optional[str]) -> User:
        """Like get_user but raises NotFound."""
        user = self.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def find_by_handle(self, handle: str) -> Optional[User]:
        """Find a user by login handle, case-insensitively."""
        wanted = (handle or "").lower()
        for user in self._users.values():
            if user.handle.lower() == wanted:
                return user
        return None

    @property
    def owner(self) -> Optional[User]:
        for user in self._users.values():
            if user.is_owner:
                return user
        return None

    def list_users(self) -> List[User]:
        return list(self._users.values())

    def is_display_name_taken(
        self, name: str, exclude_user_id: Optional[str] = None
    ) -> bool:
        """
        Check display-name uniqueness, case-insensitively.

        Args:
            name: Candidate display name
            exclude_user_id: A user whose own name is ignored

        Returns:
            True if some other user already has this name
        """
        wanted = (name or "").strip().lower()
        for user_id, user in self._users.items():
            if user_id == exclude_user_id:
                continue
            if user.display_name.lower() == wanted:
                return True
        return False

    # Profile

    def update_profile_picture(self, user_id: str, url: Optional[str]) -> User:
        """
        Set or clear a user's profile picture.

        Args:
            user_id: The user
            url: Image URL ending in a recognised image extension, or None
                (or the empty string) to clear it

        Raises:
            NotFound: Unknown user
            ValidationFailed: URL does not point at an image
        """
        user = self.require_user(user_id)
        url = coerce_text(url, MAX_URL_LENGTH).strip()
        if not url:
            user.profile_picture = None
        elif is_image_url(url):
            user.profile_picture = url
        else:
            raise ValidationFailed(
                "Profile picture must be a .jpg, .jpeg, .png, .gif or .webp URL"
            )
        return user

    def change_display_name(self, user_id: str, new_name: str) -> Optional[int]:
        """
        Apply a self-service display-name change.

        The owner may rename freely. Other users get FREE_NAME_CHANGES
        direct changes; after that they must file a request.

        Returns:
            Remaining free changes, or None for the owner

        Raises:
            ValidationFailed: Name length out of bounds
            DisplayNameTaken: Another user has this name
            QuotaExceeded: No free changes left (user is not modified)
        """
        user = self.require_user(user_id)
        new_name = validate_display_name(new_name)

        if self.is_display_name_taken(new_name, exclude_user_id=user_id):
            raise DisplayNameTaken()

        if user.is_owner:
            user.display_name = new_name
            logger.info(f"Owner renamed to '{new_name}'")
            return None

        if user.name_change_count >= FREE_NAME_CHANGES:
            raise QuotaExceeded()

        user.display_name = new_name
        user.name_change_count += 1
        logger.info(
            f"User {user_id} renamed to '{new_name}' "
            f"({user.name_change_count}/{FREE_NAME_CHANGES} free changes used)"
        )
        return FREE_NAME_CHANGES - user.name_change_count

    def rename(self, user_id: str, new_name: str) -> User:
        """Set a display name without touching the change counter."""
        user = self.require_user(user_id)
        user.display_name = new_name
        return user

    def set_capabilities(
        self,
        user_id: str,
        can_send_images: Optional[bool] = None,
        can_send_videos: Optional[bool] = None,
    ) -> User:
        """Grant or revoke image/video sending."""
        user = self.require_user(user_id)
        if can_send_images is not None:
            user.can_send_images = bool(can_send_images)
        if can_send_videos is not None:
            user.can_send_videos = bool(can_send_videos)
        return user

    # Deletion

    def delete_user(self, user_id: str) -> User:
        """
        Remove a user record. Cascades to other stores are the caller's job.

        Raises:
            NotFound: Unknown user
            PermissionDenied: Target is the owner
        """
        user = self.require_user(user_id)
        if user.is_owner:
            raise PermissionDenied("Cannot delete the owner")
        del self._users[user_id]
        logger.info(f"Deleted user '{user.display_name}' (ID: {user_id})")
        return user


def validate_display_name(name: Any) -> str:
    """
    Trim a requested display name and check its length.

    Raises:
        ValidationFailed: If it is not 3 to 30 characters long
    """
    name = coerce_text(name).strip()
    if not MIN_DISPLAY_NAME_LENGTH <= len(name) <= MAX_DISPLAY_NAME_LENGTH:
        raise ValidationFailed(
            f"Name must be {MIN_DISPLAY_NAME_LENGTH}-"
            f"{MAX_DISPLAY_NAME_LENGTH} characters"
        )
    return name
