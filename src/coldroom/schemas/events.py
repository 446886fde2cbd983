"""
Event Schema Definitions

Contains functions for creating the outbound event structures sent to
clients: directory and membership lists, room entry acknowledgements and
login results.
"""

from typing import Any, Dict, List, Optional

from ..presence import PresenceTracker
from ..room_state import Room
from ..system_settings import SystemSettings
from ..user_registry import User, UserRegistry


def create_event(event_type: str, data: Any = None) -> Dict[str, Any]:
    """
    Wrap a payload in the wire envelope.

    Args:
        event_type: Outbound event name
        data: Event payload

    Returns:
        dict: {"type": event_type, "data": data}
    """
    return {"type": event_type, "data": data}


def create_users_list(
    room: Room, users: UserRegistry, presence: PresenceTracker
) -> List[Dict[str, Any]]:
    """
    Create the membership list of a room.

    Args:
        room: The room
        users: User registry for profile lookups
        presence: Presence tracker for online flags

    Returns:
        list: One entry per member that still exists
    """
    members = []
    for user_id in room.members:
        user = users.get_user(user_id)
        if user is None:
            continue
        members.append(
            {
                "id": user.user_id,
                "username": user.handle,
                "displayName": user.display_name,
                "avatar": user.avatar,
                "profilePicture": user.profile_picture,
                "isOwner": user.is_owner,
                "isModerator": user.user_id in room.moderators,
                "isOnline": presence.is_online(user.user_id),
                "specialBadges": list(user.special_badges),
            }
        )
    return members


def create_room_joined_event(
    room: Room,
    user: User,
    messages: List[Dict[str, Any]],
    settings: SystemSettings,
) -> Dict[str, Any]:
    """
    Create the room-joined acknowledgement.

    The active video-watch session is included only for the official room,
    which is the only room it is shown in.

    Args:
        room: Room that was entered
        user: The joining user
        messages: Recent messages to replay
        settings: System settings (party mode, video session)

    Returns:
        dict: room-joined event
    """
    return create_event(
        "room-joined",
        {
            "room": create_room_summary(room, user, messages, settings),
            "video": _video_for(room, settings),
        },
    )


def create_room_summary(
    room: Room,
    user: User,
    messages: List[Dict[str, Any]],
    settings: SystemSettings,
) -> Dict[str, Any]:
    return {
        "id": room.room_id,
        "name": room.name,
        "description": room.description,
        "messages": messages,
        "isOfficial": room.is_official,
        "isCreator": room.creator_id == user.user_id,
        "isModerator": user.user_id in room.moderators,
        "isSilenced": room.is_silenced,
        "partyMode": settings.is_party_mode(room.room_id),
        "moderators": list(room.moderators),
    }


def create_login_success_event(
    user: User,
    room: Room,
    messages: List[Dict[str, Any]],
    settings: SystemSettings,
    blocked_users: List[str],
) -> Dict[str, Any]:
    """
    Create the login-success event.

    Args:
        user: Authenticated user
        room: The official room the user was placed in
        messages: Recent messages of that room
        settings: System settings
        blocked_users: IDs the user has blocked

    Returns:
        dict: login-success event
    """
    user_data = user.to_public_dict()
    user_data["isModerator"] = user.user_id in room.moderators
    return create_event(
        "login-success",
        {
            "user": user_data,
            "room": create_room_summary(room, user, messages, settings),
            "systemSettings": settings.to_dict(),
            "video": _video_for(room, settings),
            "blockedUsers": blocked_users,
        },
    )


def create_room_deleted_event(room: Room) -> Dict[str, Any]:
    """
    Create a room-deleted event.

    Args:
        room: The room that is being deleted

    Returns:
        dict: Event broadcast
    """
    return create_event(
        "room-deleted",
        {
            "roomId": room.room_id,
            "roomName": room.name,
            "message": f"Room '{room.name}' has been deleted",
        },
    )


def _video_for(room: Room, settings: SystemSettings) -> Optional[Dict[str, Any]]:
    if room.is_official and settings.video is not None:
        return settings.video.to_dict()
    return None
