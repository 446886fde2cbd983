"""
Tests for Room State Management

Tests for the room store including:
- Room creation, listing and the official room
- Password protected joins
- Bounded message log and edit rules
- Room deletion
"""

import pytest

from coldroom.errors import NotFound, PermissionDenied, WrongPassword
from coldroom.room_state import (
    MAX_ROOM_MESSAGES,
    Message,
    MessageKind,
    Room,
    RoomStateManager,
)
from coldroom.user_registry import UserRegistry


@pytest.fixture
def users():
    registry = UserRegistry()
    registry.create_owner("COLDKING", "hash", "Cold Room King")
    registry.create_user("ana", "hash", "Ana", "princess")
    return registry


@pytest.fixture
def owner(users):
    return users.owner


@pytest.fixture
def ana(users):
    return users.find_by_handle("ana")


@pytest.fixture
def manager(owner):
    rooms = RoomStateManager()
    rooms.create_official_room(owner)
    return rooms


def make_message(room_id, user, text="hi", kind=MessageKind.TEXT, index=0):
    return Message(
        message_id=f"msg_{index}",
        room_id=room_id,
        user_id=user.user_id,
        display_name=user.display_name,
        avatar=user.avatar,
        kind=kind,
        text=text if kind == MessageKind.TEXT else "",
        url="" if kind == MessageKind.TEXT else "https://example.com/a.png",
    )


# ===== Room Tests =====


def test_official_room_is_created_once(manager, owner):
    """The official room is idempotent."""
    first = manager.official_room
    again = manager.create_official_room(owner, name="Other")
    assert again is first
    assert len(manager) == 1
    assert first.is_official


def test_create_room_truncates_fields(manager, ana):
    """Room name and description are bounded."""
    room = manager.create_room("n" * 150, "d" * 600, None, ana)
    assert len(room.name) == 100
    assert len(room.description) == 500
    assert room.creator_id == ana.user_id
    assert room.room_id.startswith("room_")
    assert not room.has_password


def test_list_rooms_puts_official_first(manager, ana):
    """The directory lists the official room first, then by member count."""
    quiet = manager.create_room("Quiet", "", None, ana)
    busy = manager.create_room("Busy", "", None, ana)
    manager.add_member(busy.room_id, "user_1")
    manager.add_member(busy.room_id, "user_2")
    manager.add_member(quiet.room_id, "user_3")

    listing = manager.list_rooms()
    assert listing[0]["isOfficial"] is True
    assert [r["name"] for r in listing[1:]] == ["Busy", "Quiet"]
    assert listing[1]["userCount"] == 2


def test_room_to_dict_hides_password(manager, ana):
    """The directory entry only says whether a password is set."""
    room = manager.create_room("Secret", "", "hunter2", ana)
    data = room.to_dict()
    assert data["hasPassword"] is True
    assert "password" not in data


# ===== Join Tests =====


def test_check_join_wrong_password(manager, ana):
    """A protected room rejects the wrong password."""
    room = manager.create_room("Secret", "", "hunter2", ana)
    with pytest.raises(WrongPassword):
        manager.check_join(room.room_id, "nope")
    assert manager.check_join(room.room_id, "hunter2") is room


def test_check_join_owner_bypasses_password(manager, ana):
    """The password check can be bypassed for the owner."""
    room = manager.create_room("Secret", "", "hunter2", ana)
    assert manager.check_join(room.room_id, None, bypass_password=True) is room


def test_check_join_unknown_room(manager):
    with pytest.raises(NotFound):
        manager.check_join("room_missing", None)


def test_add_and_remove_member(manager, ana):
    room = manager.create_room("Room", "", None, ana)
    assert manager.add_member(room.room_id, ana.user_id) is True
    assert manager.add_member(room.room_id, ana.user_id) is False
    assert room.members == [ana.user_id]
    assert manager.remove_member(room.room_id, ana.user_id) is True
    assert manager.remove_member(room.room_id, ana.user_id) is False


def test_update_room_clears_password(manager, ana):
    """An explicitly given empty password removes protection."""
    room = manager.create_room("Secret", "", "hunter2", ana)
    manager.update_room(room.room_id, name="Open", password="", password_given=True)
    assert room.name == "Open"
    assert not room.has_password


def test_update_room_keeps_password_when_not_given(manager, ana):
    room = manager.create_room("Secret", "", "hunter2", ana)
    manager.update_room(room.room_id, description="new")
    assert room.has_password
    assert room.description == "new"


# ===== Message Log Tests =====


def test_message_log_is_bounded_fifo(manager, ana):
    """Appending beyond the cap evicts the oldest messages first."""
    room = manager.official_room
    for i in range(MAX_ROOM_MESSAGES + 5):
        manager.append_message(room.room_id, make_message(room.room_id, ana, index=i))

    assert len(room.messages) == MAX_ROOM_MESSAGES
    assert room.messages[0].message_id == "msg_5"
    assert room.messages[-1].message_id == f"msg_{MAX_ROOM_MESSAGES + 4}"


def test_recent_messages_returns_tail(manager, ana):
    room = manager.official_room
    for i in range(60):
        manager.append_message(room.room_id, make_message(room.room_id, ana, index=i))
    recent = manager.recent_messages(room.room_id)
    assert len(recent) == 50
    assert recent[-1]["id"] == "msg_59"


def test_edit_message_by_author(manager, ana):
    """The author can edit a text message; author and date are preserved."""
    room = manager.official_room
    message = manager.append_message(room.room_id, make_message(room.room_id, ana))
    created = message.created_at

    edited = manager.edit_message(room.room_id, message.message_id, ana.user_id, "fixed")
    assert edited.text == "fixed"
    assert edited.edited is True
    assert edited.user_id == ana.user_id
    assert edited.created_at == created


def test_edit_message_by_other_user_fails(manager, ana, owner):
    room = manager.official_room
    message = manager.append_message(room.room_id, make_message(room.room_id, ana))
    with pytest.raises(NotFound):
        manager.edit_message(room.room_id, message.message_id, owner.user_id, "hijack")
    assert message.text == "hi"


def test_edit_media_message_fails(manager, ana):
    """Only text messages are editable."""
    room = manager.official_room
    message = manager.append_message(
        room.room_id, make_message(room.room_id, ana, kind=MessageKind.IMAGE)
    )
    with pytest.raises(NotFound):
        manager.edit_message(room.room_id, message.message_id, ana.user_id, "text")


def test_message_to_dict_media_keys():
    """Image messages carry imageUrl instead of text."""
    message = Message(
        message_id="msg_1",
        room_id="room_1",
        user_id="user_1",
        display_name="Ana",
        avatar="👸",
        kind=MessageKind.IMAGE,
        url="https://example.com/a.png",
    )
    data = message.to_dict()
    assert data["isImage"] is True
    assert data["imageUrl"] == "https://example.com/a.png"
    assert "text" not in data


def test_clean_room(manager, ana):
    room = manager.official_room
    manager.append_message(room.room_id, make_message(room.room_id, ana))
    manager.clean_room(room.room_id)
    assert room.messages == []


# ===== Deletion Tests =====


def test_official_room_cannot_be_deleted(manager):
    with pytest.raises(PermissionDenied):
        manager.delete_room(manager.official_room.room_id)
    assert manager.official_room is not None


def test_delete_room_returns_members(manager, ana):
    room = manager.create_room("Temp", "", None, ana)
    manager.add_member(room.room_id, ana.user_id)
    assert manager.delete_room(room.room_id) == [ana.user_id]
    assert manager.get_room(room.room_id) is None


def test_purge_user_removes_messages_and_moderatorship(manager, ana):
    room = manager.official_room
    manager.append_message(room.room_id, make_message(room.room_id, ana))
    manager.add_moderator(room.room_id, ana.user_id)
    manager.add_member(room.room_id, ana.user_id)

    assert manager.purge_user(ana.user_id) == [room.room_id]
    assert room.messages == []
    assert ana.user_id not in room.moderators
    assert ana.user_id not in room.members


# ===== Snapshot Tests =====


def test_snapshot_restores_rooms_without_members(manager, ana):
    """Members are connection state and are not restored."""
    room = manager.create_room("Keep", "desc", "pw", ana)
    manager.add_member(room.room_id, ana.user_id)
    manager.append_message(room.room_id, make_message(room.room_id, ana))

    restored = RoomStateManager()
    restored.load_snapshot(manager.to_snapshot())
    copy = restored.get_room(room.room_id)

    assert isinstance(copy, Room)
    assert copy.name == "Keep"
    assert copy.members == []
    assert copy.has_password
    assert copy.messages[0].text == "hi"
    assert restored.official_room is not None
