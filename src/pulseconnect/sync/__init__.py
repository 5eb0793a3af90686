"""
Preference synchronization components for the PulseConnect client core.

This package keeps the user's preference snapshot consistent between the
local device and the remote preference service, offline first.
"""

from .snapshot import DEFAULT_SETTINGS, PreferenceSnapshot
from .conflict import (
    ConflictData,
    ConflictPolicy,
    PullDecision,
    RemoteWinsPolicy,
    ChecksumConflictPolicy,
)
from .remote import RemotePreferenceService, HttpPreferenceService
from .engine import PreferenceSyncEngine, SyncStatus
from .variants import ThemeVariants, CUSTOM_THEME_TEMPLATE

__all__ = [
    'DEFAULT_SETTINGS',
    'PreferenceSnapshot',
    'ConflictData',
    'ConflictPolicy',
    'PullDecision',
    'RemoteWinsPolicy',
    'ChecksumConflictPolicy',
    'RemotePreferenceService',
    'HttpPreferenceService',
    'PreferenceSyncEngine',
    'SyncStatus',
    'ThemeVariants',
    'CUSTOM_THEME_TEMPLATE',
]
