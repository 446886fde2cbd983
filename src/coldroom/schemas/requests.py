"""
Request Schema Definitions

Every inbound event name maps to exactly one request dataclass. Frames are
decoded into these at the boundary: unknown event names and payloads that
are not JSON objects are rejected, and individual fields are coerced or
truncated rather than trusted.
"""

import json
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Type, TypeVar

from ..errors import ValidationFailed
from ..utils import (
    MAX_MESSAGE_LENGTH,
    MAX_ROOM_DESCRIPTION_LENGTH,
    MAX_ROOM_NAME_LENGTH,
    MAX_URL_LENGTH,
    coerce_bool,
    coerce_int,
    coerce_text,
)

T = TypeVar("T", bound="BaseRequest")

REQUEST_TYPES: Dict[str, Type["BaseRequest"]] = {}

# Upper bound on ids accepted by the bulk operations
MAX_BULK_IDS = 500


def _text(key: str, max_length: Optional[int] = None, default: str = ""):
    return field(
        default=default,
        metadata={"key": key, "coerce": lambda v: coerce_text(v, max_length)},
    )


def _optional_text(key: str, max_length: Optional[int] = None):
    def coerce(value):
        return None if value is None else coerce_text(value, max_length)

    return field(default=None, metadata={"key": key, "coerce": coerce})


def _int(key: str, default: int = 0):
    return field(
        default=default,
        metadata={"key": key, "coerce": lambda v: coerce_int(v, default)},
    )


def _flag(key: str):
    return field(default=False, metadata={"key": key, "coerce": coerce_bool})


def _optional_flag(key: str):
    def coerce(value):
        return None if value is None else coerce_bool(value)

    return field(default=None, metadata={"key": key, "coerce": coerce})


def _id_list(key: str):
    def coerce(value):
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str) and v][:MAX_BULK_IDS]

    return field(default_factory=list, metadata={"key": key, "coerce": coerce})


def request(name: str, requires_auth: bool = True):
    """
    Class decorator registering a request dataclass under an event name.
    """

    def decorator(cls: Type[T]) -> Type[T]:
        cls = dataclass(cls)
        cls.event_name = name
        cls.requires_auth = requires_auth
        REQUEST_TYPES[name] = cls
        return cls

    return decorator


class BaseRequest:
    """
    Base class for inbound requests.

    Subclasses declare their fields with the _text/_int/... helpers, whose
    metadata names the camelCase payload key and the coercion to apply.
    """

    event_name: ClassVar[str] = ""
    requires_auth: ClassVar[bool] = True

    @classmethod
    def from_payload(cls: Type[T], payload: Dict[str, Any]) -> T:
        """
        Build the request from a decoded payload object.

        Missing keys take the field default.
        """
        values = {}
        for f in fields(cls):
            key = f.metadata.get("key", f.name)
            if key in payload:
                values[f.name] = f.metadata.get("coerce", lambda v: v)(payload[key])
        return cls(**values)


# Authentication


@request("login", requires_auth=False)
class LoginRequest(BaseRequest):
    handle: str = _text("handle", 100)
    password: str = _text("password", 200)


@request("register", requires_auth=False)
class RegisterRequest(BaseRequest):
    handle: str = _text("handle", 100)
    password: str = _text("password", 200)
    display_name: str = _text("displayName", 100)
    gender_tag: str = _text("genderTag", 20)


@request("ping", requires_auth=False)
class PingRequest(BaseRequest):
    pass


# Room messages


@request("send-message")
class SendMessageRequest(BaseRequest):
    text: str = _text("text", MAX_MESSAGE_LENGTH)


@request("edit-message")
class EditMessageRequest(BaseRequest):
    message_id: str = _text("messageId", 100)
    new_text: str = _text("newText", MAX_MESSAGE_LENGTH)


@request("delete-message")
class DeleteMessageRequest(BaseRequest):
    room_id: str = _text("roomId", 100)
    message_id: str = _text("messageId", 100)


@request("send-image")
class SendImageRequest(BaseRequest):
    url: str = _text("url", MAX_URL_LENGTH)


@request("send-video")
class SendVideoRequest(BaseRequest):
    url: str = _text("url", MAX_URL_LENGTH)


# Rooms


@request("create-room")
class CreateRoomRequest(BaseRequest):
    name: str = _text("name", MAX_ROOM_NAME_LENGTH)
    description: str = _text("description", MAX_ROOM_DESCRIPTION_LENGTH)
    password: Optional[str] = _optional_text("password", 200)


@request("join-room")
class JoinRoomRequest(BaseRequest):
    room_id: str = _text("roomId", 100)
    password: Optional[str] = _optional_text("password", 200)


@request("leave-room")
class LeaveRoomRequest(BaseRequest):
    pass


@request("update-room")
class UpdateRoomRequest(BaseRequest):
    room_id: str = _text("roomId", 100)
    name: Optional[str] = _optional_text("name", MAX_ROOM_NAME_LENGTH)
    description: Optional[str] = _optional_text(
        "description", MAX_ROOM_DESCRIPTION_LENGTH
    )
    password: Optional[str] = _optional_text("password", 200)
    password_given: bool = False

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "UpdateRoomRequest":
        req = super().from_payload(payload)
        # An explicit null password clears protection; an absent one keeps it
        req.password_given = "password" in payload
        return req


@request("delete-room")
class DeleteRoomRequest(BaseRequest):
    room_id: str = _text("roomId", 100)


@request("clean-chat")
class CleanChatRequest(BaseRequest):
    room_id: str = _text("roomId", 100)


@request("clean-all-rooms")
class CleanAllRoomsRequest(BaseRequest):
    pass


@request("silence-room")
class SilenceRoomRequest(BaseRequest):
    room_id: str = _text("roomId", 100)


@request("unsilence-room")
class UnsilenceRoomRequest(BaseRequest):
    room_id: str = _text("roomId", 100)


@request("get-room-media")
class GetRoomMediaRequest(BaseRequest):
    room_id: str = _text("roomId", 100)


@request("update-room-media")
class UpdateRoomMediaRequest(BaseRequest):
    room_id: str = _text("roomId", 100)
    type: str = _text("type", 20)
    video_url: Optional[str] = _optional_text("videoUrl", MAX_URL_LENGTH)
    music_url: Optional[str] = _optional_text("musicUrl", MAX_URL_LENGTH)
    music_volume: Any = field(default=None, metadata={"key": "musicVolume"})


@request("add-moderator")
class AddModeratorRequest(BaseRequest):
    room_id: str = _text("roomId", 100)
    user_id: str = _text("userId", 100)


@request("remove-moderator")
class RemoveModeratorRequest(BaseRequest):
    room_id: str = _text("roomId", 100)
    user_id: str = _text("userId", 100)


@request("toggle-party-mode")
class TogglePartyModeRequest(BaseRequest):
    room_id: str = _text("roomId", 100)
    enabled: bool = _flag("enabled")


@request("get-rooms")
class GetRoomsRequest(BaseRequest):
    pass


@request("get-users")
class GetUsersRequest(BaseRequest):
    room_id: str = _text("roomId", 100)


# Moderation


@request("mute-user")
class MuteUserRequest(BaseRequest):
    user_id: str = _text("userId", 100)
    duration_minutes: int = _int("durationMinutes")
    reason: str = _text("reason", 200)
    room_id: str = _text("roomId", 100)


@request("unmute-user")
class UnmuteUserRequest(BaseRequest):
    user_id: str = _text("userId", 100)


@request("unmute-multiple")
class UnmuteMultipleRequest(BaseRequest):
    user_ids: List[str] = _id_list("userIds")


@request("ban-user")
class BanUserRequest(BaseRequest):
    user_id: str = _text("userId", 100)
    reason: str = _text("reason", 200)


@request("unban-user")
class UnbanUserRequest(BaseRequest):
    user_id: str = _text("userId", 100)


@request("unban-multiple")
class UnbanMultipleRequest(BaseRequest):
    user_ids: List[str] = _id_list("userIds")


@request("get-muted-list")
class GetMutedListRequest(BaseRequest):
    pass


@request("get-banned-list")
class GetBannedListRequest(BaseRequest):
    pass


@request("delete-account")
class DeleteAccountRequest(BaseRequest):
    user_id: str = _text("userId", 100)


@request("grant-capabilities")
class GrantCapabilitiesRequest(BaseRequest):
    user_id: str = _text("userId", 100)
    can_send_images: Optional[bool] = _optional_flag("canSendImages")
    can_send_videos: Optional[bool] = _optional_flag("canSendVideos")


# Private messages and blocks


@request("send-private-message")
class SendPrivateMessageRequest(BaseRequest):
    to_user_id: str = _text("toUserId", 100)
    text: str = _text("text", MAX_MESSAGE_LENGTH)


@request("get-private-messages")
class GetPrivateMessagesRequest(BaseRequest):
    with_user_id: str = _text("withUserId", 100)


@request("edit-private-message")
class EditPrivateMessageRequest(BaseRequest):
    message_id: str = _text("messageId", 100)
    with_user_id: str = _text("withUserId", 100)
    new_text: str = _text("newText", MAX_MESSAGE_LENGTH)


@request("block-user")
class BlockUserRequest(BaseRequest):
    user_id: str = _text("userId", 100)


@request("unblock-user")
class UnblockUserRequest(BaseRequest):
    user_id: str = _text("userId", 100)


# Profile


@request("update-profile-picture")
class UpdateProfilePictureRequest(BaseRequest):
    url: Optional[str] = _optional_text("url", MAX_URL_LENGTH)


@request("change-display-name")
class ChangeDisplayNameRequest(BaseRequest):
    new_name: str = _text("newName", 100)


@request("request-name-change")
class RequestNameChangeRequest(BaseRequest):
    new_name: str = _text("newName", 100)


@request("approve-name-change")
class ApproveNameChangeRequest(BaseRequest):
    request_id: str = _text("requestId", 100)


# Support inbox


@request("send-support-message", requires_auth=False)
class SendSupportMessageRequest(BaseRequest):
    message: str = _text("message", MAX_MESSAGE_LENGTH)


@request("get-support-messages")
class GetSupportMessagesRequest(BaseRequest):
    pass


@request("delete-support-message")
class DeleteSupportMessageRequest(BaseRequest):
    message_id: str = _text("messageId", 100)


# System settings, video watch, party mode


@request("update-settings")
class UpdateSettingsRequest(BaseRequest):
    changes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "UpdateSettingsRequest":
        return cls(changes=dict(payload))


@request("start-video-watch")
class StartVideoWatchRequest(BaseRequest):
    url: str = _text("url", MAX_URL_LENGTH)
    type: str = _text("type", 20)
    size: str = _text("size", 20)


@request("stop-video-watch")
class StopVideoWatchRequest(BaseRequest):
    pass


@request("video-resize")
class VideoResizeRequest(BaseRequest):
    size: str = _text("size", 20)


def parse_request(raw: str) -> BaseRequest:
    """
    Decode one inbound frame into its request object.

    Expected frame format:
    {
        "type": "<event name>",
        "data": {...}
    }

    Raises:
        ValidationFailed: Invalid JSON, unknown event, or non-object payload
    """
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid JSON format")

    if not isinstance(envelope, dict):
        raise ValidationFailed("Message must be a JSON object")

    event_name = envelope.get("type")
    request_cls = REQUEST_TYPES.get(event_name) if isinstance(event_name, str) else None
    if request_cls is None:
        raise ValidationFailed(f"Unknown message type: {event_name}")

    payload = envelope.get("data")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed(f"Payload of '{event_name}' must be an object")

    return request_cls.from_payload(payload)
