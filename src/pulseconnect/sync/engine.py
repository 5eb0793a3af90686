"""
Offline-first preference synchronization.

This module keeps one authoritative preference snapshot in memory, mirrors
every mutation to a durable slot, and keeps the snapshot consistent with the
remote preference service whenever a session exists:

- local writes are synchronous and never wait on the network
- bursts of mutations are coalesced into one debounced full-snapshot push
- a pull replaces local state once the server holds data, and seeds the
  server from local state on the first-ever sync
- divergence is surfaced as a conflict for the caller to resolve
- every network failure degrades the status to offline instead of raising
"""

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

import aiohttp

from ..storage.slot import DurableSlot
from ..utils.config import StorageConfig, SyncConfig
from ..utils.errors import NetworkError, ValidationError
from ..utils.logging import get_logger
from .conflict import ConflictData, ConflictPolicy, PullDecision, RemoteWinsPolicy
from .remote import RemotePreferenceService
from .snapshot import KNOWN_KEYS, PreferenceSnapshot, unknown_keys


logger = get_logger("pulseconnect.sync")

# Failures that mean "the service is unreachable right now"
REMOTE_FAILURES = (NetworkError, aiohttp.ClientError, asyncio.TimeoutError, OSError)


class SyncStatus(Enum):
    """Synchronization status of the preference snapshot."""
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    OFFLINE = "offline"
    CONFLICT = "conflict"


class PreferenceSyncEngine:
    """
    Owner of the preference snapshot.

    Provides:
    - Synchronous reads and mutations backed by a durable slot
    - Debounced, coalesced pushes of the full snapshot
    - Pull with first-sync seeding and pluggable conflict detection
    - All-or-nothing conflict resolution
    """

    def __init__(
        self,
        slot: DurableSlot,
        remote: RemotePreferenceService,
        sync_config: Optional[SyncConfig] = None,
        storage_config: Optional[StorageConfig] = None,
        conflict_policy: Optional[ConflictPolicy] = None,
    ):
        """
        Initialize the engine.

        Args:
            slot: Durable slot holding the last known good snapshot
            remote: Remote preference service
            sync_config: Debounce and remote settings
            storage_config: Slot key names
            conflict_policy: Pull-time divergence policy (remote wins by default)
        """
        sync_config = sync_config or SyncConfig()
        storage_config = storage_config or StorageConfig()

        self.slot = slot
        self.remote = remote
        self.debounce_seconds = sync_config.debounce_seconds
        self.settings_key = storage_config.settings_key
        self.meta_key = storage_config.meta_key
        self.conflict_policy = conflict_policy or RemoteWinsPolicy()

        self._snapshot = PreferenceSnapshot()
        self._status = SyncStatus.IDLE
        self.has_session = False
        self.conflict_data: Optional[ConflictData] = None
        self.last_synced: Optional[datetime] = None
        self._last_synced_checksum: Optional[str] = None

        # Transient, never persisted
        self.theme_preview: Optional[str] = None

        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._push_tasks: Set[asyncio.Task] = set()
        self._status_listeners: List[Callable[[SyncStatus], Any]] = []
        self._stats = {
            "local_writes": 0,
            "pushes": 0,
            "pulls": 0,
            "remote_failures": 0,
        }

    # ------------------------------------------------------------------
    # Introspection

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def snapshot(self) -> PreferenceSnapshot:
        """Copy of the current snapshot."""
        return self._snapshot.copy()

    @property
    def settings(self) -> Dict[str, Any]:
        """Copy of the known preference values."""
        return self._snapshot.copy().values

    @property
    def push_pending(self) -> bool:
        return self._debounce_handle is not None

    @property
    def active_theme(self) -> str:
        return self.theme_preview or self._snapshot.values["theme"]

    def get(self, key: str, default: Any = None) -> Any:
        return self._snapshot.get(key, default)

    def on_status_change(self, callback: Callable[[SyncStatus], Any]) -> None:
        """Register a callback invoked with the new status on every transition."""
        self._status_listeners.append(callback)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "status": self._status.value,
            "has_session": self.has_session,
            "push_pending": self.push_pending,
            "pushes_in_flight": len(self._push_tasks),
            "last_synced": self.last_synced.isoformat() if self.last_synced else None,
        }

    # ------------------------------------------------------------------
    # Lifecycle

    async def initialize(self, has_session: bool = False) -> SyncStatus:
        """
        Load the durable slot and, with a session, pull from the remote.

        Safe to call repeatedly; the latest has_session wins.
        """
        self.set_session(has_session)
        self._load_local()

        logger.info("engine_initialized", has_session=has_session, extras=len(self._snapshot.extras))

        if has_session:
            await self.pull_from_remote()
        return self._status

    def set_session(self, has_session: bool) -> None:
        """Enable or disable remote sync; disabling cancels a pending push."""
        self.has_session = has_session
        if not has_session:
            self._cancel_debounce()

    async def flush(self) -> None:
        """Fire any pending debounced push now and wait for pushes in flight."""
        if self._debounce_handle is not None:
            self._cancel_debounce()
            self._spawn_push()

        while self._push_tasks:
            await asyncio.gather(*list(self._push_tasks))

    # ------------------------------------------------------------------
    # Local state

    def _load_local(self) -> None:
        raw = self.slot.get(self.settings_key)
        if raw:
            try:
                self._snapshot = PreferenceSnapshot.from_json(raw)
            except ValueError as e:
                logger.error("saved_settings_unreadable", key=self.settings_key, error=str(e))
                self._snapshot = PreferenceSnapshot()
        else:
            self._snapshot = PreferenceSnapshot()

        meta_raw = self.slot.get(self.meta_key)
        if meta_raw:
            try:
                meta = json.loads(meta_raw)
                self._last_synced_checksum = meta.get("checksum")
                if meta.get("lastSynced"):
                    self.last_synced = datetime.fromisoformat(meta["lastSynced"])
            except (ValueError, AttributeError, TypeError) as e:
                logger.warning("sync_metadata_unreadable", error=str(e))

    def _commit(self, snapshot: PreferenceSnapshot) -> None:
        """Write the snapshot to the slot, then make it current."""
        self.slot.set(self.settings_key, snapshot.to_json())
        self._snapshot = snapshot
        self._stats["local_writes"] += 1

    def _persist_meta(self) -> None:
        self.slot.set(self.meta_key, json.dumps({
            "checksum": self._last_synced_checksum,
            "lastSynced": self.last_synced.isoformat() if self.last_synced else None,
        }))

    def update(self, key: str, value: Any) -> None:
        """Set one preference, persist it, and schedule a debounced push."""
        if key not in KNOWN_KEYS:
            raise ValidationError(key, value, "unknown preference key")

        self._commit(self._snapshot.with_updates({key: value}))
        self._schedule_push()

    def update_many(self, patch: Mapping[str, Any]) -> None:
        """Apply several preferences with one slot write and at most one push."""
        unknown = unknown_keys(patch)
        if unknown:
            raise ValidationError(unknown[0], patch[unknown[0]], "unknown preference key")
        if not patch:
            return

        self._commit(self._snapshot.with_updates(patch))
        self._schedule_push()

    def reset_all(self) -> None:
        """Restore defaults, forget the stored snapshot, and return to idle."""
        self._cancel_debounce()
        self._snapshot = PreferenceSnapshot()
        self.theme_preview = None
        self.conflict_data = None
        self.slot.remove(self.settings_key)
        self._set_status(SyncStatus.IDLE)

        logger.info("settings_reset")

        if self.has_session:
            self._spawn_push()

    def export_settings(self) -> str:
        """Full snapshot as indented JSON text."""
        return self._snapshot.to_json(indent=2)

    def import_settings(self, text: str) -> bool:
        """Replace the snapshot from JSON text; returns False on malformed input."""
        try:
            imported = PreferenceSnapshot.from_json(text)
        except ValueError as e:
            logger.error("settings_import_failed", error=str(e))
            return False

        self._commit(imported)
        self._cancel_debounce()
        if self.has_session:
            self._spawn_push()
        return True

    # Theme preview

    def preview_theme(self, theme: str) -> None:
        self.theme_preview = theme

    def apply_previewed_theme(self) -> bool:
        if not self.theme_preview:
            return False
        theme, self.theme_preview = self.theme_preview, None
        self.update("theme", theme)
        return True

    def cancel_preview(self) -> None:
        self.theme_preview = None

    # ------------------------------------------------------------------
    # Scheduling

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _schedule_push(self) -> None:
        """Restart the debounce timer; only its last firing pushes."""
        if not self.has_session:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("push_not_scheduled", reason="no running event loop")
            return

        self._cancel_debounce()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._fire_debounced_push)

    def _fire_debounced_push(self) -> None:
        self._debounce_handle = None
        self._spawn_push()

    def _spawn_push(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("push_not_scheduled", reason="no running event loop")
            return
        task = loop.create_task(self.push_to_remote())
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    # ------------------------------------------------------------------
    # Remote

    def _set_status(self, status: SyncStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        logger.debug("sync_status_changed", previous=previous.value, status=status.value)

        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error("status_listener_failed", error=str(e))

    def _mark_synced(self, checksum: str) -> None:
        self._last_synced_checksum = checksum
        self.last_synced = datetime.now(timezone.utc)
        self._persist_meta()
        self._set_status(SyncStatus.SYNCED)

    def _go_offline(self, operation: str, error: Exception) -> None:
        self._stats["remote_failures"] += 1
        logger.warning("remote_sync_failed", operation=operation, error=str(error),
                       error_type=type(error).__name__)
        self._set_status(SyncStatus.OFFLINE)

    async def push_to_remote(self) -> bool:
        """Submit the full current snapshot. Returns True when acknowledged."""
        if not self.has_session:
            logger.debug("push_skipped", reason="no session")
            return False
        if self._status is SyncStatus.CONFLICT:
            logger.warning("push_skipped", reason="conflict pending")
            return False

        payload = self._snapshot.to_dict()
        checksum = self._snapshot.checksum
        self._set_status(SyncStatus.SYNCING)

        try:
            await self.remote.store(payload)
        except REMOTE_FAILURES as e:
            self._go_offline("push", e)
            return False

        self._stats["pushes"] += 1
        logger.info("push_completed", keys=len(payload))
        self._mark_synced(checksum)
        return True

    async def pull_from_remote(self) -> SyncStatus:
        """Fetch the canonical snapshot and reconcile local state with it."""
        if not self.has_session:
            logger.debug("pull_skipped", reason="no session")
            return self._status
        if self._status is SyncStatus.CONFLICT:
            logger.warning("pull_skipped", reason="conflict pending")
            return self._status

        self._set_status(SyncStatus.SYNCING)

        try:
            envelope = await self.remote.fetch()
        except REMOTE_FAILURES as e:
            self._go_offline("pull", e)
            return self._status

        self._stats["pulls"] += 1
        if not isinstance(envelope, dict):
            envelope = {}
        settings = envelope.get("settings")

        if not (envelope.get("success") and isinstance(settings, dict) and settings):
            # Server has nothing yet: seed it from this device
            logger.info("remote_snapshot_empty", action="push_local")
            await self.push_to_remote()
            return self._status

        remote_snapshot = PreferenceSnapshot.from_dict(settings)
        decision = self.conflict_policy.decide(
            self._snapshot, remote_snapshot, self._last_synced_checksum
        )

        if decision is PullDecision.CONFLICT:
            self.conflict_data = ConflictData(
                local=self._snapshot.copy(),
                server=remote_snapshot,
                reason="local and remote both changed since last sync",
            )
            self._cancel_debounce()
            logger.warning("sync_conflict_detected", policy=type(self.conflict_policy).__name__)
            self._set_status(SyncStatus.CONFLICT)
            return self._status

        if decision is PullDecision.KEEP_LOCAL:
            logger.info("remote_snapshot_stale", action="push_local")
            await self.push_to_remote()
            return self._status

        self._commit(remote_snapshot)
        logger.info("pull_applied", keys=len(settings))
        self._mark_synced(remote_snapshot.checksum)
        return self._status

    # ------------------------------------------------------------------
    # Conflicts

    def flag_conflict(
        self,
        server: Union[PreferenceSnapshot, Mapping[str, Any], None],
        reason: str = "",
    ) -> None:
        """Record a divergence found by an external check."""
        if server is not None and not isinstance(server, PreferenceSnapshot):
            server = PreferenceSnapshot.from_dict(server)

        self._cancel_debounce()
        self.conflict_data = ConflictData(local=self._snapshot.copy(), server=server, reason=reason)
        logger.warning("sync_conflict_flagged", reason=reason)
        self._set_status(SyncStatus.CONFLICT)

    def resolve_conflict(self, keep_remote: bool) -> bool:
        """
        Settle a pending conflict by picking one side wholesale.

        Args:
            keep_remote: True adopts the captured server snapshot; False keeps
                local state and pushes it.

        Returns:
            False when there was no conflict to resolve.
        """
        if self._status is not SyncStatus.CONFLICT or self.conflict_data is None:
            logger.warning("resolve_conflict_ignored", status=self._status.value)
            return False

        data = self.conflict_data

        if keep_remote and data.server is not None:
            self._commit(data.server.copy())
            self.conflict_data = None
            logger.info("conflict_resolved", kept="remote")
            self._mark_synced(self._snapshot.checksum)
        else:
            self.conflict_data = None
            logger.info("conflict_resolved", kept="local")
            self._set_status(SyncStatus.SYNCED)
            self._spawn_push()

        return True


__all__ = [
    'SyncStatus',
    'PreferenceSyncEngine',
    'REMOTE_FAILURES',
]
