"""
Session Handler

Processes inbound events for every live connection. For each event the
handler checks authentication, then permission, coerces the payload,
mutates the stores in AppState and finally emits direct replies and room
or global broadcasts.

Each handler performs all of its checks and mutations before its first
await, so check-then-write sequences never interleave on the event loop.
"""

import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional

from .channels import ChannelHub, ClientSession
from .errors import (
    Banned,
    Blocked,
    ChatError,
    InvalidCredentials,
    Muted,
    NameConflict,
    NotAuthenticated,
    NotFound,
    PermissionDenied,
    QuotaExceeded,
    ValidationFailed,
)
from .persistence import Persister
from .room_state import Message, MessageKind, Room
from .schemas import (
    BaseRequest,
    create_error_response,
    create_event,
    create_login_success_event,
    create_room_deleted_event,
    create_room_joined_event,
    create_success_response,
    create_users_list,
    parse_request,
)
from .schemas import requests as req
from .state import AppState
from .system_settings import normalize_video_size, normalize_volume
from .user_registry import User, validate_display_name
from .utils import epoch_seconds, is_video_url

logger = logging.getLogger(__name__)

# Login throttling per connection
LOGIN_FAILURE_LIMIT = 5
LOGIN_BACKOFF_SECONDS = 30

# Error replies that use a dedicated event name instead of "error"
ERROR_EVENTS = {
    "login": "login-error",
    "register": "register-error",
    "join-room": "join-room-error",
}

Handler = Callable[[ClientSession, BaseRequest], Awaitable[None]]


class SessionHandler:
    """
    Event protocol for the chat server.

    Args:
        state: Application state
        hub: Channel hub used for replies and broadcasts
        persister: Optional persister notified after every mutation
    """

    def __init__(
        self,
        state: AppState,
        hub: ChannelHub,
        persister: Optional[Persister] = None,
    ):
        self.state = state
        self.hub = hub
        self.persister = persister
        self._handlers: Dict[str, Handler] = {
            "login": self.handle_login,
            "register": self.handle_register,
            "ping": self.handle_ping,
            "send-message": self.handle_send_message,
            "edit-message": self.handle_edit_message,
            "delete-message": self.handle_delete_message,
            "send-image": self.handle_send_image,
            "send-video": self.handle_send_video,
            "create-room": self.handle_create_room,
            "join-room": self.handle_join_room,
            "leave-room": self.handle_leave_room,
            "update-room": self.handle_update_room,
            "delete-room": self.handle_delete_room,
            "clean-chat": self.handle_clean_chat,
            "clean-all-rooms": self.handle_clean_all_rooms,
            "silence-room": self.handle_silence_room,
            "unsilence-room": self.handle_unsilence_room,
            "get-room-media": self.handle_get_room_media,
            "update-room-media": self.handle_update_room_media,
            "add-moderator": self.handle_add_moderator,
            "remove-moderator": self.handle_remove_moderator,
            "toggle-party-mode": self.handle_toggle_party_mode,
            "get-rooms": self.handle_get_rooms,
            "get-users": self.handle_get_users,
            "mute-user": self.handle_mute_user,
            "unmute-user": self.handle_unmute_user,
            "unmute-multiple": self.handle_unmute_multiple,
            "ban-user": self.handle_ban_user,
            "unban-user": self.handle_unban_user,
            "unban-multiple": self.handle_unban_multiple,
            "get-muted-list": self.handle_get_muted_list,
            "get-banned-list": self.handle_get_banned_list,
            "delete-account": self.handle_delete_account,
            "grant-capabilities": self.handle_grant_capabilities,
            "send-private-message": self.handle_send_private_message,
            "get-private-messages": self.handle_get_private_messages,
            "edit-private-message": self.handle_edit_private_message,
            "block-user": self.handle_block_user,
            "unblock-user": self.handle_unblock_user,
            "update-profile-picture": self.handle_update_profile_picture,
            "change-display-name": self.handle_change_display_name,
            "request-name-change": self.handle_request_name_change,
            "approve-name-change": self.handle_approve_name_change,
            "send-support-message": self.handle_send_support_message,
            "get-support-messages": self.handle_get_support_messages,
            "delete-support-message": self.handle_delete_support_message,
            "update-settings": self.handle_update_settings,
            "start-video-watch": self.handle_start_video_watch,
            "stop-video-watch": self.handle_stop_video_watch,
            "video-resize": self.handle_video_resize,
        }

    # Dispatch

    async def handle_frame(self, session: ClientSession, raw: str):
        """
        Entry point for one raw inbound frame.

        Malformed frames are answered with an error event; nothing raised
        here escapes to the connection loop.
        """
        try:
            request = parse_request(raw)
        except ChatError as e:
            logger.warning(f"Rejected frame from {session.session_id}: {e.message}")
            await self.hub.send(session, create_error_response(e))
            return
        except Exception:
            logger.exception(f"Could not parse frame from {session.session_id}")
            await self.hub.send(
                session, create_error_response(ValidationFailed("Malformed payload"))
            )
            return
        await self.dispatch(session, request)

    async def dispatch(self, session: ClientSession, request: BaseRequest):
        """
        Run the handler for a parsed request, converting failures into
        error replies.
        """
        event_name = request.event_name
        handler = self._handlers[event_name]
        logger.debug(f"Session {session.session_id} -> {event_name}")
        try:
            if request.requires_auth:
                self._require_user(session)
            await handler(session, request)
        except ChatError as e:
            logger.warning(
                f"{event_name} from session {session.session_id} failed: "
                f"{e.code.value} {e.message}"
            )
            await self.hub.send(
                session,
                create_error_response(e, ERROR_EVENTS.get(event_name, "error")),
            )
        except Exception:
            logger.exception(f"Unexpected error handling {event_name}")
            await self.hub.send(
                session,
                create_error_response(
                    ChatError(), ERROR_EVENTS.get(event_name, "error")
                ),
            )

    # Helpers

    def _require_user(self, session: ClientSession) -> User:
        user = self.state.users.get_user(session.user_id)
        if user is None:
            raise NotAuthenticated()
        return user

    def _require_owner(self, session: ClientSession) -> User:
        user = self._require_user(session)
        if not user.is_owner:
            raise PermissionDenied()
        return user

    def _current_room(self, session: ClientSession) -> Room:
        room = self.state.rooms.get_room(session.current_room)
        if room is None:
            raise NotFound("Not in a room")
        return room

    def _changed(self):
        if self.persister is not None:
            self.persister.mark_dirty()

    def _check_can_post(self, user: User, room: Room):
        """
        Raise if the user may not post to the room right now.

        Raises:
            Muted: The user has an active mute
            PermissionDenied: The room is silenced and the user is neither
                the owner nor one of its moderators
        """
        if self.state.moderation.is_muted(user.user_id):
            raise Muted()
        if (
            room.is_silenced
            and not user.is_owner
            and user.user_id not in room.moderators
        ):
            raise PermissionDenied("Room is silenced")

    def _build_message(
        self, user: User, room: Room, kind: MessageKind, text: str = "", url: str = ""
    ) -> Message:
        return Message(
            message_id=f"msg_{uuid.uuid4()}",
            room_id=room.room_id,
            user_id=user.user_id,
            display_name=user.display_name,
            avatar=user.avatar,
            profile_picture=user.profile_picture,
            kind=kind,
            text=text,
            url=url,
            is_owner=user.is_owner,
            is_moderator=user.user_id in room.moderators,
        )

    def _move_to_room(self, session: ClientSession, user: User, room: Room) -> Optional[str]:
        """
        Move a session into a room, leaving its previous room.

        Returns:
            The previous room ID if it differs from the new one
        """
        previous = session.current_room
        if previous and previous != room.room_id:
            if not self._user_in_room_elsewhere(user.user_id, previous, session):
                self.state.rooms.remove_member(previous, user.user_id)
        self.state.rooms.add_member(room.room_id, user.user_id)
        self.hub.join(session, room.room_id)
        return previous if previous != room.room_id else None

    def _user_in_room_elsewhere(
        self, user_id: str, room_id: str, exclude: ClientSession
    ) -> bool:
        return any(
            s is not exclude and s.current_room == room_id
            for s in self.hub.sessions_for_user(user_id)
        )

    def _release_session(self, session: ClientSession) -> List[str]:
        """
        Remove a session's user from room membership and presence.

        Membership held by another live session of the same user is kept.

        Returns:
            IDs of rooms whose member list changed
        """
        user_id = session.user_id
        if user_id is None:
            return []
        other_rooms = {
            s.current_room
            for s in self.hub.sessions_for_user(user_id)
            if s is not session and s.current_room
        }
        changed = [
            room.room_id
            for room in self.state.rooms.all_rooms()
            if room.room_id not in other_rooms
            and self.state.rooms.remove_member(room.room_id, user_id)
        ]
        if not any(s is not session for s in self.hub.sessions_for_user(user_id)):
            self.state.presence.remove(user_id)
        return changed

    def _evict_user(self, user_id: str, sessions: List[ClientSession]) -> List[str]:
        """
        Drop every session of a user from its channel, then remove the user
        from all room memberships and presence.

        Returns:
            IDs of rooms whose member list changed
        """
        for s in sessions:
            self.hub.leave(s)
        changed = [
            room.room_id
            for room in self.state.rooms.all_rooms()
            if self.state.rooms.remove_member(room.room_id, user_id)
        ]
        self.state.presence.remove(user_id)
        return changed

    async def _send(self, session: ClientSession, event_type: str, data=None):
        await self.hub.send(session, create_event(event_type, data))

    async def _success(self, session: ClientSession, message: str, **extra):
        await self.hub.send(session, create_success_response(message, additional_data=extra))

    async def broadcast_users_list(self, room_id: Optional[str]):
        """Recompute and broadcast a room's full membership list."""
        room = self.state.rooms.get_room(room_id)
        if room is None:
            return
        await self.hub.broadcast_room(
            room_id,
            create_event(
                "users-list",
                create_users_list(room, self.state.users, self.state.presence),
            ),
        )

    async def broadcast_rooms_list(self):
        """Recompute and broadcast the room directory to everyone."""
        await self.hub.broadcast_all(
            create_event("rooms-list", self.state.rooms.list_rooms())
        )

    # Authentication

    async def handle_login(self, session: ClientSession, request: req.LoginRequest):
        """
        Authenticate, bind the user to the session and place it in the
        official room.
        """
        now = epoch_seconds()
        if now < session.login_blocked_until:
            raise PermissionDenied("Too many failed attempts, try again later")

        try:
            user_id = self.state.credentials.authenticate(
                request.handle, request.password
            )
        except InvalidCredentials:
            session.login_failures += 1
            if session.login_failures >= LOGIN_FAILURE_LIMIT:
                session.login_blocked_until = now + LOGIN_BACKOFF_SECONDS
                session.login_failures = 0
                logger.warning(
                    f"Session {session.session_id} throttled after repeated "
                    f"login failures"
                )
            raise
        session.login_failures = 0

        ban = self.state.moderation.get_ban(user_id)
        if ban is not None:
            logger.info(f"Banned user {user_id} attempted to log in")
            await self._send(
                session,
                "banned-user",
                {**Banned().to_dict(), "reason": ban.reason},
            )
            return

        user = self.state.users.require_user(user_id)
        official = self.state.official_room
        if official is None:
            raise NotFound("Room not found")

        changed_rooms = []
        if session.user_id is not None and session.user_id != user_id:
            changed_rooms = self._release_session(session)
            self.hub.leave(session)

        session.user_id = user_id
        self.state.presence.touch(user_id, now)
        previous = self._move_to_room(session, user, official)
        if previous:
            changed_rooms.append(previous)

        logger.info(f"User '{user.display_name}' logged in (session {session.session_id})")
        await self.hub.send(
            session,
            create_login_success_event(
                user,
                official,
                self.state.rooms.recent_messages(official.room_id),
                self.state.settings,
                self.state.moderation.blocked_by(user_id),
            ),
        )
        await self.broadcast_rooms_list()
        await self.broadcast_users_list(official.room_id)
        for room_id in changed_rooms:
            await self.broadcast_users_list(room_id)

    async def handle_register(
        self, session: ClientSession, request: req.RegisterRequest
    ):
        self.state.credentials.register(
            request.handle,
            request.password,
            request.display_name,
            request.gender_tag,
        )
        self._changed()
        await self._send(
            session,
            "register-success",
            {"message": "Account created!", "username": request.handle.strip()},
        )

    async def handle_ping(self, session: ClientSession, request: req.PingRequest):
        if session.is_authenticated:
            self.state.presence.touch(session.user_id)
        await self._send(session, "pong", {})

    async def handle_disconnect(self, session: ClientSession):
        """
        Clean up after a closed connection: presence, room membership and
        channel subscriptions. Already-applied mutations stay.
        """
        room_id = session.current_room
        changed_rooms = self._release_session(session)
        self.hub.unregister(session)
        if session.user_id is not None:
            logger.info(f"User {session.user_id} disconnected")
        for changed in set(changed_rooms) | ({room_id} if room_id else set()):
            await self.broadcast_users_list(changed)
        if changed_rooms:
            await self.broadcast_rooms_list()

    # Room messages

    async def handle_send_message(
        self, session: ClientSession, request: req.SendMessageRequest
    ):
        user = self._require_user(session)
        room = self._current_room(session)
        self._check_can_post(user, room)
        if not request.text.strip():
            raise ValidationFailed("Message cannot be empty")

        message = self.state.rooms.append_message(
            room.room_id,
            self._build_message(user, room, MessageKind.TEXT, text=request.text),
        )
        self._changed()
        await self.hub.broadcast_room(
            room.room_id, create_event("new-message", message.to_dict())
        )

    async def handle_send_image(
        self, session: ClientSession, request: req.SendImageRequest
    ):
        user = self._require_user(session)
        if not user.can_send_images:
            raise PermissionDenied("No permission to send images")
        room = self._current_room(session)
        self._check_can_post(user, room)
        url = request.url.strip()
        if not url.lower().startswith(("http://", "https://")):
            raise ValidationFailed("Image URL must be an http(s) link")

        message = self.state.rooms.append_message(
            room.room_id, self._build_message(user, room, MessageKind.IMAGE, url=url)
        )
        self._changed()
        await self.hub.broadcast_room(
            room.room_id, create_event("new-message", message.to_dict())
        )

    async def handle_send_video(
        self, session: ClientSession, request: req.SendVideoRequest
    ):
        user = self._require_user(session)
        if not user.can_send_videos:
            raise PermissionDenied("No permission to send videos")
        room = self._current_room(session)
        self._check_can_post(user, room)
        url = request.url.strip()
        if not is_video_url(url):
            raise ValidationFailed("Video URL must end in a video file extension")

        message = self.state.rooms.append_message(
            room.room_id, self._build_message(user, room, MessageKind.VIDEO, url=url)
        )
        self._changed()
        await self.hub.broadcast_room(
            room.room_id, create_event("new-message", message.to_dict())
        )

    async def handle_edit_message(
        self, session: ClientSession, request: req.EditMessageRequest
    ):
        user = self._require_user(session)
        room = self._current_room(session)
        message = self.state.rooms.edit_message(
            room.room_id, request.message_id, user.user_id, request.new_text
        )
        self._changed()
        await self.hub.broadcast_room(
            room.room_id,
            create_event(
                "message-edited",
                {
                    "roomId": room.room_id,
                    "messageId": message.message_id,
                    "newText": message.text,
                    "edited": True,
                },
            ),
        )

    async def handle_delete_message(
        self, session: ClientSession, request: req.DeleteMessageRequest
    ):
        self._require_owner(session)
        room_id = request.room_id or session.current_room
        if not self.state.rooms.delete_message(room_id, request.message_id):
            raise NotFound("Message not found")
        self._changed()
        await self.hub.broadcast_room(
            room_id,
            create_event(
                "message-deleted",
                {"roomId": room_id, "messageId": request.message_id},
            ),
        )

    # Rooms

    async def handle_create_room(
        self, session: ClientSession, request: req.CreateRoomRequest
    ):
        user = self._require_user(session)
        room = self.state.rooms.create_room(
            request.name, request.description, request.password, user
        )
        previous = self._move_to_room(session, user, room)
        self._changed()

        await self._send(
            session, "room-created", {"roomId": room.room_id, "roomName": room.name}
        )
        await self.hub.send(
            session, create_room_joined_event(room, user, [], self.state.settings)
        )
        await self.broadcast_rooms_list()
        await self.broadcast_users_list(room.room_id)
        if previous:
            await self.broadcast_users_list(previous)

    async def handle_join_room(
        self, session: ClientSession, request: req.JoinRoomRequest
    ):
        user = self._require_user(session)
        room = self.state.rooms.check_join(
            request.room_id, request.password, bypass_password=user.is_owner
        )
        previous = self._move_to_room(session, user, room)

        await self.hub.send(
            session,
            create_room_joined_event(
                room,
                user,
                self.state.rooms.recent_messages(room.room_id),
                self.state.settings,
            ),
        )
        await self.broadcast_users_list(room.room_id)
        if previous:
            await self.broadcast_users_list(previous)
        await self.broadcast_rooms_list()

    async def handle_leave_room(
        self, session: ClientSession, request: req.LeaveRoomRequest
    ):
        user = self._require_user(session)
        room_id = session.current_room
        if room_id is None:
            raise NotFound("Not in a room")
        if not self._user_in_room_elsewhere(user.user_id, room_id, session):
            self.state.rooms.remove_member(room_id, user.user_id)
        self.hub.leave(session)

        await self._send(session, "room-left", {"roomId": room_id})
        await self.broadcast_users_list(room_id)
        await self.broadcast_rooms_list()

    async def handle_update_room(
        self, session: ClientSession, request: req.UpdateRoomRequest
    ):
        self._require_owner(session)
        room = self.state.rooms.update_room(
            request.room_id,
            name=request.name,
            description=request.description,
            password=request.password,
            password_given=request.password_given,
        )
        self._changed()
        await self.hub.broadcast_room(
            room.room_id,
            create_event(
                "room-updated",
                {
                    "roomId": room.room_id,
                    "name": room.name,
                    "description": room.description,
                    "hasPassword": room.has_password,
                },
            ),
        )
        await self.broadcast_rooms_list()

    async def handle_delete_room(
        self, session: ClientSession, request: req.DeleteRoomRequest
    ):
        self._require_owner(session)
        room = self.state.rooms.require_room(request.room_id)
        notice = create_room_deleted_event(room)
        self.state.rooms.delete_room(room.room_id)
        self.state.settings.party_mode.pop(room.room_id, None)
        evicted = self.hub.close_channel(room.room_id)
        self._changed()

        for member in evicted:
            await self.hub.send(member, notice)
        await self.broadcast_rooms_list()

    async def handle_clean_chat(
        self, session: ClientSession, request: req.CleanChatRequest
    ):
        self._require_owner(session)
        room = self.state.rooms.clean_room(request.room_id)
        self._changed()
        await self.hub.broadcast_room(
            room.room_id,
            create_event(
                "chat-cleaned", {"roomId": room.room_id, "message": "Chat cleaned"}
            ),
        )

    async def handle_clean_all_rooms(
        self, session: ClientSession, request: req.CleanAllRoomsRequest
    ):
        self._require_owner(session)
        room_ids = self.state.rooms.clean_all_rooms()
        self._changed()
        for room_id in room_ids:
            await self.hub.broadcast_room(
                room_id,
                create_event(
                    "chat-cleaned", {"roomId": room_id, "message": "All chats cleaned"}
                ),
            )

    async def handle_silence_room(
        self, session: ClientSession, request: req.SilenceRoomRequest
    ):
        self._require_owner(session)
        room = self.state.rooms.set_silenced(request.room_id, True)
        self._changed()
        await self.hub.broadcast_room(
            room.room_id,
            create_event(
                "room-silenced",
                {
                    "roomId": room.room_id,
                    "message": "Room silenced",
                    "forceDisable": True,
                },
            ),
        )

    async def handle_unsilence_room(
        self, session: ClientSession, request: req.UnsilenceRoomRequest
    ):
        self._require_owner(session)
        room = self.state.rooms.set_silenced(request.room_id, False)
        self._changed()
        await self.hub.broadcast_room(
            room.room_id,
            create_event(
                "room-unsilenced", {"roomId": room.room_id, "message": "Room unsilenced"}
            ),
        )

    async def handle_get_room_media(
        self, session: ClientSession, request: req.GetRoomMediaRequest
    ):
        room = self.state.rooms.require_room(request.room_id or session.current_room)
        await self._send(session, "room-media-data", room.media_dict())

    async def handle_update_room_media(
        self, session: ClientSession, request: req.UpdateRoomMediaRequest
    ):
        self._require_owner(session)
        room_id = request.room_id or session.current_room
        if request.type == "video":
            room = self.state.rooms.set_room_video(room_id, request.video_url)
            data = {
                "roomId": room.room_id,
                "type": "video",
                "videoUrl": room.video_url,
                "message": "Room video updated" if room.video_url else "Room video removed",
            }
        elif request.type == "music":
            room = self.state.rooms.set_room_music(
                room_id, request.music_url, normalize_volume(request.music_volume)
            )
            data = {
                "roomId": room.room_id,
                "type": "music",
                "musicUrl": room.music_url,
                "musicVolume": room.music_volume,
                "message": "Room music updated" if room.music_url else "Room music removed",
            }
        else:
            raise ValidationFailed("Media type must be 'video' or 'music'")

        self._changed()
        await self.hub.broadcast_room(
            room.room_id, create_event("room-media-updated", data)
        )

    async def handle_add_moderator(
        self, session: ClientSession, request: req.AddModeratorRequest
    ):
        self._require_owner(session)
        target = self.state.users.require_user(request.user_id)
        room = self.state.rooms.add_moderator(request.room_id, target.user_id)
        self._changed()
        await self._success(
            session, f"{target.display_name} is now moderator", roomId=room.room_id
        )
        await self.broadcast_users_list(room.room_id)

    async def handle_remove_moderator(
        self, session: ClientSession, request: req.RemoveModeratorRequest
    ):
        self._require_owner(session)
        target = self.state.users.require_user(request.user_id)
        room = self.state.rooms.remove_moderator(request.room_id, target.user_id)
        self._changed()
        await self._success(
            session,
            f"{target.display_name} removed from moderators",
            roomId=room.room_id,
        )
        await self.broadcast_users_list(room.room_id)

    async def handle_toggle_party_mode(
        self, session: ClientSession, request: req.TogglePartyModeRequest
    ):
        user = self._require_user(session)
        room = self.state.rooms.require_room(request.room_id or session.current_room)
        if not user.is_owner and user.user_id not in room.moderators:
            raise PermissionDenied()
        self.state.settings.set_party_mode(room.room_id, request.enabled)
        self._changed()
        await self.hub.broadcast_room(
            room.room_id,
            create_event(
                "party-mode-changed",
                {"roomId": room.room_id, "enabled": request.enabled},
            ),
        )

    async def handle_get_rooms(self, session: ClientSession, request: req.GetRoomsRequest):
        await self._send(session, "rooms-list", self.state.rooms.list_rooms())

    async def handle_get_users(self, session: ClientSession, request: req.GetUsersRequest):
        room = self.state.rooms.get_room(request.room_id or session.current_room)
        users = (
            create_users_list(room, self.state.users, self.state.presence)
            if room
            else []
        )
        await self._send(session, "users-list", users)

    # Moderation

    async def handle_mute_user(
        self, session: ClientSession, request: req.MuteUserRequest
    ):
        issuer = self._require_user(session)
        room_id = request.room_id or session.current_room
        if not issuer.is_owner and not self.state.rooms.is_moderator(
            room_id, issuer.user_id
        ):
            raise PermissionDenied()
        target = self.state.users.get_user(request.user_id)
        if target is None:
            raise NotFound("Invalid user")
        if target.user_id == issuer.user_id:
            raise ValidationFailed("Cannot mute yourself")

        record = self.state.moderation.mute(
            target, request.duration_minutes, request.reason, issuer, room_id
        )
        self._changed()
        await self._success(session, f"Muted {target.display_name}")
        await self.hub.send_to_user(
            target.user_id,
            create_event(
                "muted", {"reason": record.reason, "expires": record.expires_at}
            ),
        )

    async def handle_unmute_user(
        self, session: ClientSession, request: req.UnmuteUserRequest
    ):
        user = self._require_user(session)
        removed = self.state.moderation.unmute(
            request.user_id,
            user.user_id,
            user.is_owner,
            self.state.rooms.is_moderator_anywhere(user.user_id),
        )
        if not removed:
            await self._success(session, "User not muted")
            return
        self._changed()
        await self._success(session, "User unmuted")
        await self.hub.send_to_user(request.user_id, create_event("unmuted", {}))

    async def handle_unmute_multiple(
        self, session: ClientSession, request: req.UnmuteMultipleRequest
    ):
        owner = self._require_owner(session)
        removed = self.state.moderation.unmute_many(
            request.user_ids, owner.user_id, True
        )
        if removed:
            self._changed()
        await self._success(session, "Users unmuted", userIds=removed)

    async def handle_ban_user(
        self, session: ClientSession, request: req.BanUserRequest
    ):
        owner = self._require_owner(session)
        target = self.state.users.get_user(request.user_id)
        if target is None:
            raise NotFound("Invalid target")
        record = self.state.moderation.ban(target, request.reason, owner)

        targets = self.hub.sessions_for_user(target.user_id)
        changed_rooms = set(self._evict_user(target.user_id, targets))
        self._changed()

        notice = create_event("banned", {"reason": record.reason})
        for target_session in targets:
            await self.hub.disconnect(target_session, notice, reason="banned")
        await self._success(session, f"Banned {target.display_name}")
        for room_id in changed_rooms:
            await self.broadcast_users_list(room_id)
        if changed_rooms:
            await self.broadcast_rooms_list()

    async def handle_unban_user(
        self, session: ClientSession, request: req.UnbanUserRequest
    ):
        self._require_owner(session)
        if self.state.moderation.unban(request.user_id):
            self._changed()
        await self._success(session, "User unbanned")

    async def handle_unban_multiple(
        self, session: ClientSession, request: req.UnbanMultipleRequest
    ):
        self._require_owner(session)
        removed = self.state.moderation.unban_many(request.user_ids)
        if removed:
            self._changed()
        await self._success(session, "Users unbanned", userIds=removed)

    async def handle_get_muted_list(
        self, session: ClientSession, request: req.GetMutedListRequest
    ):
        user = self._require_user(session)
        if not user.is_owner and not self.state.rooms.is_moderator_anywhere(
            user.user_id
        ):
            raise PermissionDenied()
        records = self.state.moderation.list_mutes(user.user_id, user.is_owner)
        await self._send(session, "muted-list", [r.to_dict() for r in records])

    async def handle_get_banned_list(
        self, session: ClientSession, request: req.GetBannedListRequest
    ):
        self._require_owner(session)
        records = self.state.moderation.list_bans()
        await self._send(session, "banned-list", [r.to_dict() for r in records])

    async def handle_delete_account(
        self, session: ClientSession, request: req.DeleteAccountRequest
    ):
        self._require_owner(session)
        targets = self.hub.sessions_for_user(request.user_id)
        member_rooms = [
            room.room_id
            for room in self.state.rooms.all_rooms()
            if request.user_id in room.members
        ]
        user = self.state.delete_user(request.user_id)
        for target_session in targets:
            self.hub.leave(target_session)
        self._changed()

        notice = create_event("account-deleted", {"message": "Account deleted"})
        for target_session in targets:
            await self.hub.disconnect(target_session, notice, reason="account deleted")
        await self._success(session, f"Deleted: {user.display_name}")
        for room_id in member_rooms:
            await self.broadcast_users_list(room_id)
        await self.broadcast_rooms_list()

    async def handle_grant_capabilities(
        self, session: ClientSession, request: req.GrantCapabilitiesRequest
    ):
        self._require_owner(session)
        target = self.state.users.set_capabilities(
            request.user_id,
            can_send_images=request.can_send_images,
            can_send_videos=request.can_send_videos,
        )
        self._changed()
        capabilities = {
            "userId": target.user_id,
            "canSendImages": target.can_send_images,
            "canSendVideos": target.can_send_videos,
        }
        await self._success(
            session, f"Updated permissions for {target.display_name}", **capabilities
        )
        await self.hub.send_to_user(
            target.user_id, create_event("capabilities-updated", capabilities)
        )

    # Private messages and blocks

    async def handle_send_private_message(
        self, session: ClientSession, request: req.SendPrivateMessageRequest
    ):
        sender = self._require_user(session)
        receiver = self.state.users.get_user(request.to_user_id)
        if receiver is None:
            raise NotFound("Invalid users")
        if receiver.user_id == sender.user_id:
            raise ValidationFailed("Cannot message yourself")
        if self.state.moderation.is_blocked(receiver.user_id, sender.user_id):
            raise Blocked()
        if not request.text.strip():
            raise ValidationFailed("Message cannot be empty")

        message = self.state.private_messages.send(
            sender.user_id, sender.display_name, receiver.user_id, request.text
        )
        self._changed()
        await self.hub.send_to_user(
            receiver.user_id, create_event("new-private-message", message.to_dict())
        )
        await self._send(session, "private-message-sent", message.to_dict())

    async def handle_get_private_messages(
        self, session: ClientSession, request: req.GetPrivateMessagesRequest
    ):
        user = self._require_user(session)
        thread = self.state.private_messages.get_thread(
            user.user_id, request.with_user_id
        )
        await self._send(
            session,
            "private-messages-list",
            {
                "withUserId": request.with_user_id,
                "messages": [m.to_dict() for m in thread],
            },
        )

    async def handle_edit_private_message(
        self, session: ClientSession, request: req.EditPrivateMessageRequest
    ):
        user = self._require_user(session)
        message = self.state.private_messages.edit(
            user.user_id, request.with_user_id, request.message_id, request.new_text
        )
        self._changed()
        event = create_event("private-message-edited", message.to_dict())
        await self.hub.send_to_user(user.user_id, event)
        await self.hub.send_to_user(request.with_user_id, event)

    async def handle_block_user(
        self, session: ClientSession, request: req.BlockUserRequest
    ):
        user = self._require_user(session)
        target = self.state.users.require_user(request.user_id)
        if target.user_id == user.user_id:
            raise ValidationFailed("Cannot block yourself")
        self.state.moderation.block(user.user_id, target.user_id)
        self._changed()
        await self._success(
            session,
            "User blocked",
            blockedUsers=self.state.moderation.blocked_by(user.user_id),
        )

    async def handle_unblock_user(
        self, session: ClientSession, request: req.UnblockUserRequest
    ):
        user = self._require_user(session)
        self.state.moderation.unblock(user.user_id, request.user_id)
        self._changed()
        await self._success(
            session,
            "User unblocked",
            blockedUsers=self.state.moderation.blocked_by(user.user_id),
        )

    # Profile

    async def handle_update_profile_picture(
        self, session: ClientSession, request: req.UpdateProfilePictureRequest
    ):
        user = self._require_user(session)
        self.state.users.update_profile_picture(user.user_id, request.url)
        self._changed()
        await self._send(
            session,
            "profile-updated",
            {
                "userId": user.user_id,
                "profilePicture": user.profile_picture,
                "message": "Profile picture updated",
            },
        )
        await self.broadcast_users_list(session.current_room)

    async def handle_change_display_name(
        self, session: ClientSession, request: req.ChangeDisplayNameRequest
    ):
        user = self._require_user(session)
        try:
            remaining = self.state.users.change_display_name(
                user.user_id, request.new_name
            )
        except QuotaExceeded:
            entry = self.state.support.file_name_change(
                user.user_id, user.display_name, request.new_name.strip()
            )
            self._changed()
            await self._send(
                session,
                "name-change-requested",
                {
                    "requestId": entry.entry_id,
                    "requestedName": entry.requested_name,
                    "message": "Name change request sent to owner",
                },
            )
            raise QuotaExceeded(
                "Maximum free changes used. A name change request was sent "
                "to the owner."
            )

        self._changed()
        if remaining is None:
            message = "Name changed successfully"
        else:
            message = f"Name changed! {remaining} free changes remaining"
        await self._send(
            session,
            "display-name-changed",
            {
                "userId": user.user_id,
                "displayName": user.display_name,
                "remainingChanges": remaining,
                "message": message,
            },
        )
        await self.broadcast_users_list(session.current_room)

    async def handle_request_name_change(
        self, session: ClientSession, request: req.RequestNameChangeRequest
    ):
        user = self._require_user(session)
        requested = validate_display_name(request.new_name)
        entry = self.state.support.file_name_change(
            user.user_id, user.display_name, requested
        )
        self._changed()
        await self._send(
            session,
            "name-change-requested",
            {
                "requestId": entry.entry_id,
                "requestedName": requested,
                "message": "Name change request sent to owner",
            },
        )

    async def handle_approve_name_change(
        self, session: ClientSession, request: req.ApproveNameChangeRequest
    ):
        """
        Approve a pending name-change request.

        Uniqueness is checked now, not when the request was filed; on a
        conflict the request stays pending.
        """
        self._require_owner(session)
        entry = self.state.support.get_name_change(request.request_id)
        target = self.state.users.get_user(entry.user_id)
        if target is None:
            raise NotFound("User not found")
        if self.state.users.is_display_name_taken(
            entry.requested_name, exclude_user_id=target.user_id
        ):
            raise NameConflict()

        self.state.users.rename(target.user_id, entry.requested_name)
        self.state.support.remove(entry.entry_id)
        self._changed()

        await self._success(session, "Name change approved")
        rooms = set()
        for target_session in self.hub.sessions_for_user(target.user_id):
            await self.hub.send(
                target_session,
                create_success_response(
                    f"Your name has been changed to: {target.display_name}"
                ),
            )
            await self._send(
                target_session,
                "display-name-changed",
                {
                    "userId": target.user_id,
                    "displayName": target.display_name,
                    "remainingChanges": None,
                    "message": "Name change approved",
                },
            )
            if target_session.current_room:
                rooms.add(target_session.current_room)
        for room_id in rooms:
            await self.broadcast_users_list(room_id)

    # Support inbox

    async def handle_send_support_message(
        self, session: ClientSession, request: req.SendSupportMessageRequest
    ):
        if not request.message.strip():
            raise ValidationFailed("Message cannot be empty")
        user = self.state.users.get_user(session.user_id)
        self.state.support.add_support_message(
            user.display_name if user else "Anonymous", request.message
        )
        self._changed()
        await self._send(session, "support-message-sent", {"message": "Message sent"})

    async def handle_get_support_messages(
        self, session: ClientSession, request: req.GetSupportMessagesRequest
    ):
        self._require_owner(session)
        entries = self.state.support.list_entries()
        await self._send(
            session, "support-messages-list", [e.to_dict() for e in entries]
        )

    async def handle_delete_support_message(
        self, session: ClientSession, request: req.DeleteSupportMessageRequest
    ):
        self._require_owner(session)
        if not self.state.support.remove(request.message_id):
            raise NotFound("Message not found")
        self._changed()
        await self._success(session, "Message deleted")

    # System settings, video watch, party mode

    async def handle_update_settings(
        self, session: ClientSession, request: req.UpdateSettingsRequest
    ):
        self._require_owner(session)
        self.state.settings.update(request.changes)
        self._changed()
        await self.hub.broadcast_all(
            create_event("settings-updated", self.state.settings.to_dict())
        )
        await self._success(session, "Settings updated")

    async def handle_start_video_watch(
        self, session: ClientSession, request: req.StartVideoWatchRequest
    ):
        owner = self._require_owner(session)
        url = request.url.strip()
        if not url:
            raise ValidationFailed("Missing video URL")
        official = self.state.official_room
        if official is None:
            raise NotFound("Room not found")
        video = self.state.settings.start_video(
            url, request.type, request.size, owner.display_name
        )
        self._changed()
        await self.hub.broadcast_room(
            official.room_id, create_event("video-started", video.to_dict())
        )

    async def handle_stop_video_watch(
        self, session: ClientSession, request: req.StopVideoWatchRequest
    ):
        self._require_owner(session)
        self.state.settings.stop_video()
        self._changed()
        official = self.state.official_room
        if official is not None:
            await self.hub.broadcast_room(
                official.room_id, create_event("video-stopped", {})
            )

    async def handle_video_resize(
        self, session: ClientSession, request: req.VideoResizeRequest
    ):
        self._require_owner(session)
        video = self.state.settings.video
        if video is None:
            raise NotFound("No video session")
        video.size = normalize_video_size(request.size, fallback=video.size)
        self._changed()
        official = self.state.official_room
        if official is not None:
            await self.hub.broadcast_room(
                official.room_id, create_event("video-resize", {"size": video.size})
            )
