"""
Conflict detection policies.

The engine never merges field by field. After a pull, a policy decides
whether the remote snapshot replaces local state, whether local state should
be pushed instead, or whether both are held back as a conflict for the
caller to resolve.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .snapshot import PreferenceSnapshot


class PullDecision(Enum):
    """Outcome of comparing a pulled snapshot with local state."""
    ACCEPT_REMOTE = "accept_remote"
    KEEP_LOCAL = "keep_local"
    CONFLICT = "conflict"


@dataclass
class ConflictData:
    """Both candidate snapshots captured when a conflict is raised."""
    local: PreferenceSnapshot
    server: Optional[PreferenceSnapshot]
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: str = ""


class ConflictPolicy(ABC):
    """Decides what a pulled remote snapshot does to local state."""

    @abstractmethod
    def decide(
        self,
        local: PreferenceSnapshot,
        remote: PreferenceSnapshot,
        last_synced_checksum: Optional[str],
    ) -> PullDecision:
        """Compare local and remote against the last synced checksum."""


class RemoteWinsPolicy(ConflictPolicy):
    """Once the server holds a snapshot it is authoritative."""

    def decide(self, local, remote, last_synced_checksum):
        return PullDecision.ACCEPT_REMOTE


class ChecksumConflictPolicy(ConflictPolicy):
    """
    Three-way comparison against the checksum recorded at the last sync.

    - only the remote moved: accept it
    - only local moved: keep local and push it
    - both moved to different contents: conflict

    Without a recorded base (first sync on this device) the remote wins.
    """

    def decide(self, local, remote, last_synced_checksum):
        if last_synced_checksum is None:
            return PullDecision.ACCEPT_REMOTE

        local_sum = local.checksum
        remote_sum = remote.checksum
        if local_sum == remote_sum or local_sum == last_synced_checksum:
            return PullDecision.ACCEPT_REMOTE

        if remote_sum == last_synced_checksum:
            return PullDecision.KEEP_LOCAL

        return PullDecision.CONFLICT


__all__ = [
    'PullDecision',
    'ConflictData',
    'ConflictPolicy',
    'RemoteWinsPolicy',
    'ChecksumConflictPolicy',
]
