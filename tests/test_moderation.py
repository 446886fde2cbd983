"""
Tests for Moderation State

Tests for mutes, bans and blocks including:
- Timed and permanent mutes
- Unmute permissions for owner and moderators
- Ban rules
- Directional blocking
"""

import pytest

from coldroom.errors import PermissionDenied
from coldroom.moderation import ModerationState
from coldroom.user_registry import UserRegistry


@pytest.fixture
def users():
    registry = UserRegistry()
    registry.create_owner("COLDKING", "hash", "Cold Room King")
    registry.create_user("ana", "hash", "Ana", "princess")
    registry.create_user("bob", "hash", "Bob", "prince")
    registry.create_user("cam", "hash", "Cam", "prince")
    return registry


@pytest.fixture
def owner(users):
    return users.owner


@pytest.fixture
def ana(users):
    return users.find_by_handle("ana")


@pytest.fixture
def bob(users):
    return users.find_by_handle("bob")


@pytest.fixture
def cam(users):
    return users.find_by_handle("cam")


@pytest.fixture
def moderation():
    return ModerationState()


# ===== Mute Tests =====


def test_permanent_mute_never_expires(moderation, owner, ana):
    """A 0 minute mute is permanent."""
    record = moderation.mute(ana, 0, "", owner, now=1000.0)
    assert record.expires_at is None
    assert record.reason == "Rule violation"
    assert moderation.is_muted(ana.user_id, now=10 ** 10)


def test_timed_mute_expires(moderation, owner, ana):
    """A timed mute is active until its expiry and lapses after it."""
    moderation.mute(ana, 5, "spam", owner, now=1000.0)
    assert moderation.is_muted(ana.user_id, now=1000.0 + 5 * 60)
    assert not moderation.is_muted(ana.user_id, now=1000.0 + 5 * 60 + 1)
    # Lapsed mutes are purged
    assert moderation.get_mute(ana.user_id, now=1000.0) is None


def test_owner_cannot_be_muted(moderation, owner, ana):
    with pytest.raises(PermissionDenied):
        moderation.mute(owner, 0, "", ana)


def test_owner_can_unmute_anyone(moderation, owner, ana, bob):
    moderation.mute(ana, 0, "", bob)
    assert moderation.unmute(ana.user_id, owner.user_id, True) is True
    assert not moderation.is_muted(ana.user_id)


def test_moderator_cannot_unmute_owner_issued_mute(moderation, owner, ana, bob):
    """A moderator may not lift a mute the owner issued."""
    moderation.mute(ana, 0, "", owner)
    with pytest.raises(PermissionDenied):
        moderation.unmute(ana.user_id, bob.user_id, False, True)
    assert moderation.is_muted(ana.user_id)


def test_moderator_can_unmute_other_moderator_mute(moderation, ana, bob, cam):
    moderation.mute(ana, 0, "", cam)
    assert moderation.unmute(ana.user_id, bob.user_id, False, True) is True


def test_plain_member_cannot_unmute(moderation, ana, bob, cam):
    moderation.mute(ana, 0, "", cam)
    with pytest.raises(PermissionDenied):
        moderation.unmute(ana.user_id, bob.user_id, False, False)


def test_unmute_not_muted_returns_false(moderation, owner, ana):
    assert moderation.unmute(ana.user_id, owner.user_id, True) is False


def test_unmute_many_skips_forbidden(moderation, owner, ana, bob, cam):
    """Bulk unmute skips the mutes the requester may not lift."""
    moderation.mute(ana, 0, "", owner)
    moderation.mute(bob, 0, "", cam)
    removed = moderation.unmute_many([ana.user_id, bob.user_id], cam.user_id, False, True)
    assert removed == [bob.user_id]
    assert moderation.is_muted(ana.user_id)


def test_list_mutes_for_moderator(moderation, owner, ana, bob, cam):
    moderation.mute(ana, 0, "", owner)
    moderation.mute(bob, 0, "", cam)
    assert len(moderation.list_mutes(owner.user_id, True)) == 2
    visible = moderation.list_mutes(cam.user_id, False)
    assert [r.user_id for r in visible] == [bob.user_id]


# ===== Ban Tests =====


def test_ban_requires_owner(moderation, ana, bob):
    with pytest.raises(PermissionDenied):
        moderation.ban(bob, "", ana)


def test_owner_cannot_be_banned(moderation, owner):
    with pytest.raises(PermissionDenied):
        moderation.ban(owner, "", owner)


def test_ban_and_unban(moderation, owner, ana):
    record = moderation.ban(ana, "", owner)
    assert record.reason == "Violation"
    assert moderation.is_banned(ana.user_id)
    assert moderation.unban(ana.user_id) is True
    assert not moderation.is_banned(ana.user_id)
    assert moderation.unban(ana.user_id) is False


def test_unban_many(moderation, owner, ana, bob):
    moderation.ban(ana, "x", owner)
    moderation.ban(bob, "y", owner)
    assert moderation.unban_many([ana.user_id, bob.user_id, "user_x"]) == [
        ana.user_id,
        bob.user_id,
    ]


# ===== Block Tests =====


def test_blocking_is_directional(moderation, ana, bob):
    """If ana blocks bob, bob is blocked by ana but ana is not blocked by bob."""
    moderation.block(ana.user_id, bob.user_id)
    assert moderation.is_blocked(ana.user_id, bob.user_id)
    assert not moderation.is_blocked(bob.user_id, ana.user_id)
    assert moderation.blocked_by(ana.user_id) == [bob.user_id]

    moderation.unblock(ana.user_id, bob.user_id)
    assert not moderation.is_blocked(ana.user_id, bob.user_id)


def test_forget_user_drops_references(moderation, owner, ana, bob):
    moderation.mute(ana, 0, "", owner)
    moderation.block(bob.user_id, ana.user_id)
    moderation.forget_user(ana.user_id)
    assert not moderation.is_muted(ana.user_id)
    assert not moderation.is_blocked(bob.user_id, ana.user_id)


# ===== Snapshot Tests =====


def test_snapshot_round_trip(moderation, owner, ana, bob):
    moderation.mute(ana, 10, "spam", owner, room_id="room_1", now=1000.0)
    moderation.ban(bob, "abuse", owner)
    moderation.block(ana.user_id, bob.user_id)

    restored = ModerationState()
    restored.load_snapshot(moderation.to_snapshot())

    mute = restored.get_mute(ana.user_id, now=1000.0)
    assert mute.reason == "spam"
    assert mute.room_id == "room_1"
    assert mute.by_owner is True
    assert restored.get_ban(bob.user_id).reason == "abuse"
    assert restored.is_blocked(ana.user_id, bob.user_id)
