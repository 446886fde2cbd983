"""
Tests for Snapshot Persistence and Application State

Tests for the snapshot file and the state aggregate including:
- Loading missing and corrupt files
- Atomic saves and the background persister
- Bootstrapping and snapshot restore
- Account deletion cascade
"""

import json

import pytest

from coldroom.persistence import Persister, SnapshotStore
from coldroom.state import AppState


@pytest.fixture
def state():
    app = AppState()
    app.bootstrap("COLDKING", "kingpass", "Cold Room King", "Global")
    return app


# ===== Snapshot Store Tests =====


def test_load_missing_file_returns_empty(tmp_path):
    store = SnapshotStore(str(tmp_path / "missing.json"))
    assert store.load() == {}


def test_load_corrupt_file_returns_empty(tmp_path):
    path = tmp_path / "data.json"
    path.write_text("{not json", encoding="utf-8")
    assert SnapshotStore(str(path)).load() == {}


def test_load_non_object_returns_empty(tmp_path):
    path = tmp_path / "data.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert SnapshotStore(str(path)).load() == {}


def test_save_then_load(tmp_path):
    store = SnapshotStore(str(tmp_path / "data.json"))
    store.save({"users": {}, "rooms": {"a": 1}})
    assert store.load() == {"users": {}, "rooms": {"a": 1}}
    # No temp files are left behind
    assert [p.name for p in tmp_path.iterdir()] == ["data.json"]


# ===== Application State Tests =====


def test_bootstrap_is_idempotent(state):
    assert state.owner is not None
    assert state.official_room.name == "Global"
    assert state.bootstrap("COLDKING", "kingpass", "Cold Room King") is False
    assert len(state.rooms) == 1


def test_state_snapshot_round_trip(state):
    ana_id = state.credentials.register("ana", "pw123456", "Ana", "princess")
    ana = state.users.get_user(ana_id)
    room = state.rooms.create_room("Games", "fun", None, ana)
    state.rooms.add_moderator(room.room_id, ana_id)
    state.private_messages.send(ana_id, "Ana", state.owner.user_id, "hi king")
    state.moderation.block(ana_id, state.owner.user_id)
    state.settings.update({"siteTitle": "Frozen"})

    snapshot = json.loads(json.dumps(state.to_snapshot()))
    restored = AppState.from_snapshot(snapshot)

    assert restored.credentials.authenticate("ana", "pw123456") == ana_id
    assert restored.owner.user_id == state.owner.user_id
    assert restored.rooms.get_room(room.room_id).moderators == [ana_id]
    assert restored.private_messages.get_thread(state.owner.user_id, ana_id)[0].text == "hi king"
    assert restored.moderation.is_blocked(ana_id, state.owner.user_id)
    assert restored.settings.site_title == "Frozen"
    assert restored.bootstrap("COLDKING", "other", "Cold Room King") is False


def test_from_empty_snapshot():
    restored = AppState.from_snapshot({})
    assert restored.owner is None
    assert len(restored.rooms) == 0


def test_delete_user_cascades(state):
    ana_id = state.credentials.register("ana", "pw", "Ana", "princess")
    owner_id = state.owner.user_id
    official = state.official_room
    state.rooms.add_member(official.room_id, ana_id)
    state.private_messages.send(ana_id, "Ana", owner_id, "hi")
    state.moderation.block(owner_id, ana_id)
    state.support.file_name_change(ana_id, "Ana", "Anna")
    state.presence.touch(ana_id)

    state.delete_user(ana_id)

    assert state.users.get_user(ana_id) is None
    assert ana_id not in official.members
    assert state.private_messages.get_thread(owner_id, ana_id) == []
    assert not state.moderation.is_blocked(owner_id, ana_id)
    assert state.support.pending_name_changes() == []
    assert not state.presence.is_online(ana_id)


# ===== Persister Tests =====


@pytest.mark.asyncio
async def test_flush_writes_snapshot(tmp_path, state):
    store = SnapshotStore(str(tmp_path / "data.json"))
    persister = Persister(state, store)
    try:
        persister.mark_dirty()
        await persister.flush_now()
        assert not persister.dirty
        data = store.load()
        assert state.owner.user_id in data["users"]
        assert state.official_room.room_id in data["rooms"]
    finally:
        persister.close()


@pytest.mark.asyncio
async def test_flush_failure_keeps_dirty(tmp_path, state):
    store = SnapshotStore(str(tmp_path / "no_such_dir" / "data.json"))
    persister = Persister(state, store)
    try:
        assert await persister.flush_now() is False
        assert persister.dirty
    finally:
        persister.close()


def test_mark_dirty_without_loop(tmp_path, state):
    persister = Persister(state, SnapshotStore(str(tmp_path / "data.json")))
    try:
        persister.mark_dirty()
        assert persister.dirty
    finally:
        persister.close()
