"""
Tests for the User Registry and Credential Store

Tests for accounts including:
- Registration and login
- Display-name uniqueness and the rename quota
- Profile pictures and capabilities
- The single owner rule
"""

import pytest

from coldroom.credentials import CredentialStore, hash_password, verify_password
from coldroom.errors import (
    DisplayNameTaken,
    HandleTaken,
    InvalidCredentials,
    NotFound,
    PermissionDenied,
    QuotaExceeded,
    ValidationFailed,
)
from coldroom.user_registry import FREE_NAME_CHANGES, Role, User, UserRegistry


@pytest.fixture
def users():
    registry = UserRegistry()
    registry.create_owner("COLDKING", hash_password("kingpass"), "Cold Room King")
    return registry


@pytest.fixture
def credentials(users):
    return CredentialStore(users)


# ===== Credential Tests =====


def test_password_hash_round_trip():
    hashed = hash_password("secret")
    assert hashed != "secret"
    assert verify_password(hashed, "secret")
    assert not verify_password(hashed, "wrong")
    assert not verify_password(None, "secret")


def test_register_then_login(credentials, users):
    """A registered user can log in with the same credentials."""
    user_id = credentials.register("ana", "pw123456", "Ana", "princess")
    assert user_id.startswith("user_")
    assert credentials.authenticate("ana", "pw123456") == user_id
    # Handles match case-insensitively
    assert credentials.authenticate("ANA", "pw123456") == user_id
    assert users.get_user(user_id).avatar == "👸"


def test_login_wrong_password(credentials):
    credentials.register("ana", "pw123456", "Ana", "princess")
    with pytest.raises(InvalidCredentials):
        credentials.authenticate("ana", "nope")


def test_login_missing_fields(credentials):
    with pytest.raises(InvalidCredentials):
        credentials.authenticate("", "")


def test_register_duplicate_handle(credentials):
    credentials.register("ana", "pw", "Ana", "princess")
    with pytest.raises(HandleTaken):
        credentials.register("Ana", "pw", "Other", "princess")


def test_register_duplicate_display_name(credentials):
    """Display names are unique ignoring case."""
    credentials.register("ana", "pw", "Ana", "princess")
    with pytest.raises(DisplayNameTaken):
        credentials.register("ana2", "pw", "ANA", "princess")


def test_register_missing_fields(credentials):
    with pytest.raises(ValidationFailed):
        credentials.register("ana", "", "Ana", "princess")


def test_register_uses_rename_length_rule(credentials, users):
    """Registration and renames accept the same display-name lengths."""
    with pytest.raises(ValidationFailed):
        credentials.register("al", "pw", "Al", "prince")
    with pytest.raises(ValidationFailed):
        credentials.register("long", "pw", "x" * 31, "prince")
    user_id = credentials.register("ana", "pw", "  Ana  ", "princess")
    assert users.get_user(user_id).display_name == "Ana"


# ===== Owner Tests =====


def test_only_one_owner(users):
    with pytest.raises(ValueError):
        users.create_owner("other", "hash", "Other King")
    duplicate = User(
        user_id="user_x", handle="x", display_name="X", password_hash="", role=Role.OWNER
    )
    with pytest.raises(ValueError):
        users.add(duplicate)


def test_owner_cannot_be_deleted(users):
    with pytest.raises(PermissionDenied):
        users.delete_user(users.owner.user_id)


# ===== Display Name Tests =====


def test_two_free_renames_then_quota(users, credentials):
    """After the free changes are used, direct renames are refused."""
    user_id = credentials.register("ana", "pw", "Ana", "princess")

    assert users.change_display_name(user_id, "Ana One") == FREE_NAME_CHANGES - 1
    assert users.change_display_name(user_id, "Ana Two") == 0
    with pytest.raises(QuotaExceeded):
        users.change_display_name(user_id, "Ana Three")
    assert users.get_user(user_id).display_name == "Ana Two"


def test_owner_renames_freely(users):
    owner = users.owner
    for name in ("King A", "King B", "King C"):
        assert users.change_display_name(owner.user_id, name) is None
    assert owner.display_name == "King C"
    assert owner.name_change_count == 0


def test_rename_rejects_taken_name(users, credentials):
    user_id = credentials.register("ana", "pw", "Ana", "princess")
    with pytest.raises(DisplayNameTaken):
        users.change_display_name(user_id, "cold room king")


def test_rename_length_bounds(users, credentials):
    user_id = credentials.register("ana", "pw", "Ana", "princess")
    with pytest.raises(ValidationFailed):
        users.change_display_name(user_id, "ab")
    with pytest.raises(ValidationFailed):
        users.change_display_name(user_id, "x" * 31)


# ===== Profile Tests =====


def test_profile_picture_requires_image_extension(users, credentials):
    user_id = credentials.register("ana", "pw", "Ana", "princess")
    with pytest.raises(ValidationFailed):
        users.update_profile_picture(user_id, "https://example.com/file.exe")

    users.update_profile_picture(user_id, "https://example.com/me.PNG?size=2")
    assert users.get_user(user_id).profile_picture == "https://example.com/me.PNG?size=2"

    users.update_profile_picture(user_id, "")
    assert users.get_user(user_id).profile_picture is None


def test_set_capabilities(users, credentials):
    user_id = credentials.register("ana", "pw", "Ana", "princess")
    user = users.set_capabilities(user_id, can_send_images=True)
    assert user.can_send_images is True
    assert user.can_send_videos is False


def test_require_user_unknown():
    with pytest.raises(NotFound):
        UserRegistry().require_user("user_missing")


def test_user_dict_round_trip(users):
    owner = users.owner
    restored = User.from_dict(owner.to_dict())
    assert restored == owner
