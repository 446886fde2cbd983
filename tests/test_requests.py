"""
Tests for Request Parsing and Configuration
"""

import json

import pytest

from coldroom.config import ServerConfig
from coldroom.errors import ValidationFailed
from coldroom.schemas import REQUEST_TYPES, parse_request
from coldroom.schemas import requests as req
from coldroom.system_settings import normalize_volume
from coldroom.utils import coerce_float, coerce_int


def frame(event_type, data=None):
    return json.dumps({"type": event_type, "data": data})


# ===== Parsing Tests =====


def test_parse_login():
    request = parse_request(frame("login", {"handle": "ana", "password": "pw"}))
    assert isinstance(request, req.LoginRequest)
    assert request.handle == "ana"
    assert request.password == "pw"
    assert request.requires_auth is False


def test_parse_send_message_truncates_text():
    request = parse_request(frame("send-message", {"text": "x" * 1500}))
    assert len(request.text) == 1000
    assert request.requires_auth is True


def test_parse_coerces_wrong_types():
    """Wrong field types are coerced rather than trusted."""
    request = parse_request(
        frame("mute-user", {"userId": ["x"], "durationMinutes": "abc", "reason": 5})
    )
    assert request.user_id == ""
    assert request.duration_minutes == 0
    assert request.reason == "5"


def test_parse_out_of_range_numbers_fall_back():
    """Numbers too large for an int are treated like any other garbage."""
    request = parse_request(
        '{"type": "mute-user", "data": {"userId": "u", "durationMinutes": 1e400}}'
    )
    assert request.duration_minutes == 0


def test_coerce_numbers():
    assert coerce_int(float("inf"), 7) == 7
    assert coerce_float(10**400, 0.5) == 0.5
    assert coerce_float(float("nan"), 0.5) == 0.5
    assert coerce_float(0, 0.5) == 0.0
    assert coerce_float("0.25", 0.5) == 0.25


def test_normalize_volume_keeps_silence():
    assert normalize_volume(0) == 0.0
    assert normalize_volume(3) == 1.0
    assert normalize_volume(None) == 0.5


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), (False, False), ("true", True), ("false", False), ("0", False), (1, True)],
)
def test_parse_flag_values(value, expected):
    request = parse_request(frame("toggle-party-mode", {"roomId": "r", "enabled": value}))
    assert request.enabled is expected


def test_parse_optional_flags():
    request = parse_request(
        frame("grant-capabilities", {"userId": "u", "canSendImages": "false"})
    )
    assert request.can_send_images is False
    assert request.can_send_videos is None


def test_parse_null_data_uses_defaults():
    request = parse_request(frame("get-rooms", None))
    assert isinstance(request, req.GetRoomsRequest)


def test_parse_update_room_password_presence():
    """An absent password keeps protection; an explicit null clears it."""
    kept = parse_request(frame("update-room", {"roomId": "room_1", "name": "n"}))
    cleared = parse_request(frame("update-room", {"roomId": "room_1", "password": None}))
    assert kept.password_given is False
    assert cleared.password_given is True
    assert cleared.password is None


def test_parse_bulk_ids_filters_garbage():
    request = parse_request(frame("unban-multiple", {"userIds": ["user_1", 2, "", None]}))
    assert request.user_ids == ["user_1"]


def test_parse_update_settings_keeps_payload():
    request = parse_request(frame("update-settings", {"siteTitle": "Frozen"}))
    assert request.changes == {"siteTitle": "Frozen"}


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2]",
        json.dumps({"type": "launch-rockets", "data": {}}),
        json.dumps({"type": "login", "data": [1]}),
        json.dumps({"data": {}}),
    ],
)
def test_parse_rejects_malformed_frames(raw):
    with pytest.raises(ValidationFailed):
        parse_request(raw)


def test_every_request_type_is_registered():
    for name, cls in REQUEST_TYPES.items():
        assert cls.event_name == name
    assert {"login", "register", "send-message", "delete-room", "ban-user"} <= set(
        REQUEST_TYPES
    )


# ===== Configuration Tests =====


def test_config_defaults():
    config = ServerConfig.from_env({})
    assert config.port == 3000
    assert config.host == "0.0.0.0"
    assert config.data_file == "cold_room_data.json"
    assert config.owner_handle == "COLDKING"
    assert config.owner_password is None
    assert config.log_level == "INFO"


def test_config_from_env():
    config = ServerConfig.from_env(
        {
            "COLDROOM_PORT": "8080",
            "COLDROOM_OWNER_PASSWORD": "secret",
            "COLDROOM_LOG_LEVEL": "debug",
            "COLDROOM_FLUSH_INTERVAL": "5",
        }
    )
    assert config.port == 8080
    assert config.owner_password == "secret"
    assert config.log_level == "DEBUG"
    assert config.flush_interval == 5


def test_config_invalid_integer_falls_back():
    config = ServerConfig.from_env({"COLDROOM_PORT": "not-a-port"})
    assert config.port == 3000
