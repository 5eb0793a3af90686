"""
Tests for the preference synchronization engine.
"""

import asyncio
import json

import pytest

from pulseconnect.storage import MemorySlot
from pulseconnect.sync import (
    ChecksumConflictPolicy,
    PreferenceSnapshot,
    PreferenceSyncEngine,
    SyncStatus,
)
from pulseconnect.sync.snapshot import DEFAULT_SETTINGS
from pulseconnect.utils.config import StorageConfig, SyncConfig
from pulseconnect.utils.errors import StorageError, ValidationError
from tests.fixtures import FakeRemote, SyncFixtures
from tests.utils import drain, wait_for_condition


SETTINGS_KEY = StorageConfig().settings_key
META_KEY = StorageConfig().meta_key


def make_engine(slot=None, remote=None, policy=None, debounce=0.01):
    return PreferenceSyncEngine(
        slot if slot is not None else MemorySlot(),
        remote if remote is not None else FakeRemote(),
        sync_config=SyncConfig(debounce_seconds=debounce),
        conflict_policy=policy,
    )


class TestLocalState:
    """Test offline reads and writes."""

    @pytest.mark.asyncio
    async def test_initialize_without_saved_state(self, engine, remote):
        """An empty slot yields defaults and no network traffic."""
        status = await engine.initialize(False)

        assert status == SyncStatus.IDLE
        assert engine.settings == DEFAULT_SETTINGS
        assert remote.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_initialize_loads_saved_state(self, slot, engine):
        slot.set(SETTINGS_KEY, SyncFixtures.stored_snapshot(theme="dark", layoutMode="compact"))
        await engine.initialize(False)

        assert engine.get("theme") == "dark"
        assert engine.get("layoutMode") == "compact"
        assert engine.get("avatarGradient") == "aurora"

    @pytest.mark.asyncio
    async def test_corrupt_saved_state_falls_back_to_defaults(self, slot, engine):
        slot.set(SETTINGS_KEY, "{truncated")
        await engine.initialize(False)
        assert engine.settings == DEFAULT_SETTINGS

    def test_update_persists_synchronously(self, slot, engine):
        """Writes without a session need no event loop and no remote."""
        engine.update("theme", "dark")

        stored = json.loads(slot.get(SETTINGS_KEY))
        assert stored["theme"] == "dark"
        assert engine.push_pending is False

    def test_update_unknown_key_rejected(self, slot, engine):
        with pytest.raises(ValidationError):
            engine.update("notARealSetting", 1)
        assert slot.get(SETTINGS_KEY) is None

    def test_update_many_single_write(self, slot, engine):
        engine.update_many({"theme": "dark", "soundStyle": "chime", "notificationVolume": 0.8})

        assert slot.writes == 1
        assert engine.get("soundStyle") == "chime"

    def test_update_many_validates_before_writing(self, slot, engine):
        with pytest.raises(ValidationError):
            engine.update_many({"theme": "dark", "mystery": True})
        assert engine.get("theme") == "default"
        assert slot.writes == 0

    def test_unencodable_value_leaves_state_intact(self, slot, engine):
        """A value the slot cannot hold is never adopted in memory."""
        with pytest.raises(TypeError):
            engine.update("notificationVolume", {1, 2})

        assert engine.get("notificationVolume") == 0.5
        assert slot.get(SETTINGS_KEY) is None

        engine.update("theme", "dark")
        assert json.loads(slot.get(SETTINGS_KEY))["theme"] == "dark"

    def test_failed_slot_write_leaves_state_intact(self):
        class BrokenSlot(MemorySlot):
            def set(self, key, value):
                raise StorageError("disk full")

        broken = make_engine(slot=BrokenSlot())

        with pytest.raises(StorageError):
            broken.update_many({"theme": "dark", "soundStyle": "chime"})
        assert broken.get("theme") == "default"

        with pytest.raises(StorageError):
            broken.import_settings(json.dumps({"theme": "royal"}))
        assert broken.get("theme") == "default"

    @pytest.mark.asyncio
    async def test_unknown_keys_survive_round_trip(self, slot, engine):
        """Keys from a newer client are kept through load, update and persist."""
        slot.set(SETTINGS_KEY, json.dumps({"theme": "dark", "holographicMode": {"level": 3}}))
        await engine.initialize(False)

        engine.update("layoutMode", "wide")

        stored = json.loads(slot.get(SETTINGS_KEY))
        assert stored["holographicMode"] == {"level": 3}
        assert stored["layoutMode"] == "wide"
        assert stored["theme"] == "dark"

    def test_reset_all(self, slot, engine):
        engine.update("theme", "dark")
        engine.preview_theme("royal")

        engine.reset_all()

        assert engine.settings == DEFAULT_SETTINGS
        assert engine.theme_preview is None
        assert engine.status == SyncStatus.IDLE
        assert slot.get(SETTINGS_KEY) is None

    def test_export_import(self, engine):
        engine.update("theme", "dark")
        exported = engine.export_settings()
        assert json.loads(exported)["theme"] == "dark"
        assert "\n  " in exported

        other = make_engine()
        assert other.import_settings(exported) is True
        assert other.settings == engine.settings

    def test_import_malformed(self, engine):
        engine.update("theme", "dark")
        assert engine.import_settings("not json") is False
        assert engine.import_settings('"a string"') is False
        assert engine.get("theme") == "dark"

    def test_theme_preview(self, slot, engine):
        engine.preview_theme("royal")
        assert engine.active_theme == "royal"
        assert engine.get("theme") == "default"
        assert slot.get(SETTINGS_KEY) is None

        engine.cancel_preview()
        assert engine.active_theme == "default"

        engine.preview_theme("midnight")
        assert engine.apply_previewed_theme() is True
        assert engine.get("theme") == "midnight"
        assert engine.theme_preview is None
        assert engine.apply_previewed_theme() is False


class TestDebouncedPush:
    """Test coalescing of pushes."""

    @pytest.mark.asyncio
    async def test_burst_coalesces_into_one_push(self, remote, engine):
        """A burst within the debounce window pushes once, carrying the last value."""
        engine.set_session(True)

        for theme in ("dark", "royal", "midnight", "aurora"):
            engine.update("theme", theme)

        assert engine.push_pending is True
        assert remote.stored == []

        await wait_for_condition(lambda: len(remote.stored) == 1 and not engine.get_stats()["pushes_in_flight"])
        await asyncio.sleep(0.05)

        assert len(remote.stored) == 1
        assert remote.stored[0]["theme"] == "aurora"
        assert engine.status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_flush_fires_pending_push(self, remote, engine):
        engine.set_session(True)
        engine.update("layoutMode", "compact")

        await engine.flush()

        assert engine.push_pending is False
        assert [p["layoutMode"] for p in remote.stored] == ["compact"]

    @pytest.mark.asyncio
    async def test_update_during_push_restarts_debounce(self, slot, remote, engine):
        """A mutation while a push is awaiting the server is written locally at once."""
        engine.set_session(True)
        remote.store_gate = asyncio.Event()

        engine.update("theme", "dark")
        await wait_for_condition(remote.store_started.is_set)
        assert engine.status == SyncStatus.SYNCING

        engine.update("theme", "royal")

        assert json.loads(slot.get(SETTINGS_KEY))["theme"] == "royal"
        assert engine.push_pending is True

        remote.store_gate.set()
        await wait_for_condition(lambda: len(remote.stored) == 2)
        await engine.flush()

        assert [p["theme"] for p in remote.stored] == ["dark", "royal"]
        assert engine.status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_no_push_without_session(self, remote, engine):
        engine.update("theme", "dark")
        await engine.flush()

        assert remote.stored == []
        assert engine.status == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_logout_cancels_pending_push(self, remote, engine):
        engine.set_session(True)
        engine.update("theme", "dark")

        engine.set_session(False)
        await asyncio.sleep(0.05)

        assert remote.stored == []

    @pytest.mark.asyncio
    async def test_push_records_sync_metadata(self, slot, engine):
        engine.set_session(True)
        engine.update("theme", "dark")
        await engine.flush()

        meta = json.loads(slot.get(META_KEY))
        assert meta["checksum"] == engine.snapshot.checksum
        assert meta["lastSynced"] is not None


class TestPull:
    """Test pull direction and conflict policies."""

    @pytest.mark.asyncio
    async def test_first_sync_pushes_local(self, slot):
        """An empty server is seeded from this device; local data is untouched."""
        slot.set(SETTINGS_KEY, SyncFixtures.stored_snapshot(theme="dark"))
        remote = FakeRemote(settings={})
        engine = make_engine(slot, remote)

        status = await engine.initialize(True)

        assert status == SyncStatus.SYNCED
        assert len(remote.stored) == 1
        assert remote.stored[0]["theme"] == "dark"
        assert engine.get("theme") == "dark"

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_treated_as_empty(self, slot):
        remote = FakeRemote(settings={"theme": "royal"}, success=False)
        engine = make_engine(slot, remote)

        await engine.initialize(True)

        assert engine.get("theme") == "default"
        assert len(remote.stored) == 1

    @pytest.mark.asyncio
    async def test_remote_wins_on_existing_data(self, slot):
        """Server data replaces local state wholesale: defaults plus the server's keys."""
        slot.set(SETTINGS_KEY, SyncFixtures.stored_snapshot(theme="light", layoutMode="compact"))
        remote = FakeRemote(settings={"theme": "dark"})
        engine = make_engine(slot, remote)

        status = await engine.initialize(True)

        expected = dict(DEFAULT_SETTINGS, theme="dark")
        assert status == SyncStatus.SYNCED
        assert engine.settings == expected
        assert json.loads(slot.get(SETTINGS_KEY)) == expected
        assert remote.stored == []

    @pytest.mark.asyncio
    async def test_offline_degradation(self, slot):
        """A failing remote leaves status offline and local data intact."""
        slot.set(SETTINGS_KEY, SyncFixtures.stored_snapshot(theme="dark"))
        remote = FakeRemote(fail=True)
        engine = make_engine(slot, remote)

        status = await engine.initialize(True)

        assert status == SyncStatus.OFFLINE
        assert engine.get("theme") == "dark"

        engine.update("theme", "royal")
        await engine.flush()

        assert engine.status == SyncStatus.OFFLINE
        assert json.loads(slot.get(SETTINGS_KEY))["theme"] == "royal"
        assert engine.get_stats()["remote_failures"] == 2

    @pytest.mark.asyncio
    async def test_recovers_after_offline(self, slot):
        remote = FakeRemote(fail=True)
        engine = make_engine(slot, remote)
        await engine.initialize(True)
        assert engine.status == SyncStatus.OFFLINE

        remote.fail = False
        await engine.pull_from_remote()

        assert engine.status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_status_listener_sees_transitions(self, engine):
        seen = []
        engine.on_status_change(seen.append)

        await engine.initialize(True)

        assert seen == [SyncStatus.SYNCING, SyncStatus.SYNCED]

    @pytest.mark.asyncio
    async def test_checksum_policy_keeps_local_changes(self, slot):
        """Only local moved since the last sync: keep local and push it."""
        base = PreferenceSnapshot.from_dict({"theme": "dark"})
        slot.set(SETTINGS_KEY, SyncFixtures.stored_snapshot(theme="royal"))
        slot.set(META_KEY, SyncFixtures.sync_meta(base.checksum))
        remote = FakeRemote(settings=base.to_dict())
        engine = make_engine(slot, remote, policy=ChecksumConflictPolicy())

        status = await engine.initialize(True)

        assert status == SyncStatus.SYNCED
        assert engine.get("theme") == "royal"
        assert remote.stored[-1]["theme"] == "royal"

    @pytest.mark.asyncio
    async def test_checksum_policy_accepts_remote_changes(self, slot):
        base = PreferenceSnapshot.from_dict({"theme": "dark"})
        slot.set(SETTINGS_KEY, base.to_json())
        slot.set(META_KEY, SyncFixtures.sync_meta(base.checksum))
        remote = FakeRemote(settings={"theme": "midnight"})
        engine = make_engine(slot, remote, policy=ChecksumConflictPolicy())

        await engine.initialize(True)

        assert engine.get("theme") == "midnight"
        assert remote.stored == []

    @pytest.mark.asyncio
    async def test_checksum_policy_detects_conflict(self, slot):
        base = PreferenceSnapshot.from_dict({"theme": "dark"})
        slot.set(SETTINGS_KEY, SyncFixtures.stored_snapshot(theme="royal"))
        slot.set(META_KEY, SyncFixtures.sync_meta(base.checksum))
        remote = FakeRemote(settings={"theme": "midnight"})
        engine = make_engine(slot, remote, policy=ChecksumConflictPolicy())

        status = await engine.initialize(True)

        assert status == SyncStatus.CONFLICT
        assert engine.conflict_data.local.get("theme") == "royal"
        assert engine.conflict_data.server.get("theme") == "midnight"
        assert engine.get("theme") == "royal"
        assert remote.stored == []


class TestConflictResolution:
    """Test all-or-nothing conflict resolution."""

    @pytest.mark.asyncio
    async def test_keep_remote(self, slot, remote, engine):
        engine.set_session(True)
        engine.update("theme", "dark")
        engine.flag_conflict({"theme": "royal"}, reason="server changed")

        assert engine.status == SyncStatus.CONFLICT
        assert engine.push_pending is False

        assert engine.resolve_conflict(True) is True

        assert engine.get("theme") == "royal"
        assert engine.status == SyncStatus.SYNCED
        assert engine.conflict_data is None
        assert json.loads(slot.get(SETTINGS_KEY))["theme"] == "royal"

        await engine.flush()
        assert remote.stored == []

    @pytest.mark.asyncio
    async def test_keep_local(self, remote, engine):
        engine.set_session(True)
        engine.update("theme", "dark")
        engine.flag_conflict({"theme": "royal"})

        assert engine.resolve_conflict(False) is True
        assert engine.status == SyncStatus.SYNCED

        await engine.flush()

        assert engine.get("theme") == "dark"
        assert [p["theme"] for p in remote.stored] == ["dark"]
        assert engine.status == SyncStatus.SYNCED

    def test_resolve_without_conflict(self, engine):
        assert engine.resolve_conflict(True) is False
        assert engine.status == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_sync_paused_while_conflicted(self, remote, engine):
        engine.set_session(True)
        engine.flag_conflict({"theme": "royal"})

        assert await engine.push_to_remote() is False
        assert await engine.pull_from_remote() == SyncStatus.CONFLICT
        assert remote.fetch_calls == 0
        await drain()
        assert remote.stored == []
