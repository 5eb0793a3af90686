"""
Preference snapshot model.

A snapshot is the complete set of known preference values plus any keys the
current schema does not understand. Unknown keys are carried along untouched
so that data written by a newer client survives a round-trip through an
older one.
"""

import copy
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional


DEFAULT_SETTINGS: Dict[str, Any] = {
    # Theme
    "theme": "default",
    "customThemes": {},
    "avatarGradient": "aurora",

    # Motion
    "cursorGravity": True,
    "physicsStrength": "medium",
    "parallaxBackground": True,
    "animationSpeed": "normal",
    "hapticFeedback": False,

    # Sound
    "interfaceSounds": False,
    "soundStyle": "glass",
    "loginSound": True,
    "notificationVolume": 0.5,

    # Emergency alerts
    "emergencyVisualMode": "enhanced",
    "notificationPopups": True,
    "urgentShake": True,
    "reactionAnimation": "bounce",
    "reducedEmergencyMotion": False,
    "silentEmergencyMode": False,
    "autoAcknowledgeOnOpen": False,

    # Layout
    "layoutMode": "standard",
    "splitViewEnabled": False,
    "autoCollapseSidebar": False,

    # Spatial mode
    "spatialModeEnabled": False,
    "spatialMotionIntensity": "full",
    "spatialDepthBlur": 0.5,
    "spatialParallax": True,
}

KNOWN_KEYS = frozenset(DEFAULT_SETTINGS)


def default_values() -> Dict[str, Any]:
    """Fresh deep copy of the defaults."""
    return copy.deepcopy(DEFAULT_SETTINGS)


def unknown_keys(keys: Iterable[str]) -> list:
    return [k for k in keys if k not in KNOWN_KEYS]


@dataclass
class PreferenceSnapshot:
    """Known preference values plus opaque forward-compatible extras."""
    values: Dict[str, Any] = field(default_factory=default_values)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "PreferenceSnapshot":
        """Build a snapshot from a raw mapping; defaults fill missing keys."""
        values = default_values()
        extras: Dict[str, Any] = {}
        for key, value in (raw or {}).items():
            if key in KNOWN_KEYS:
                values[key] = copy.deepcopy(value)
            else:
                extras[key] = copy.deepcopy(value)
        return cls(values=values, extras=extras)

    @classmethod
    def from_json(cls, text: str) -> "PreferenceSnapshot":
        """Parse JSON text. Raises ValueError when it is not a JSON object."""
        raw = json.loads(text)
        if not isinstance(raw, dict):
            raise ValueError("snapshot JSON must be an object")
        return cls.from_dict(raw)

    def to_dict(self) -> Dict[str, Any]:
        """Full snapshot as stored and pushed, extras included."""
        data = copy.deepcopy(self.extras)
        data.update(copy.deepcopy(self.values))
        return data

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @property
    def checksum(self) -> str:
        """SHA-256 over the canonical JSON form."""
        content = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(content.encode()).hexdigest()

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def with_updates(self, patch: Mapping[str, Any]) -> "PreferenceSnapshot":
        """New snapshot with known keys in patch applied."""
        values = copy.deepcopy(self.values)
        for key, value in patch.items():
            values[key] = copy.deepcopy(value)
        return PreferenceSnapshot(values=values, extras=copy.deepcopy(self.extras))

    def copy(self) -> "PreferenceSnapshot":
        return PreferenceSnapshot(values=copy.deepcopy(self.values), extras=copy.deepcopy(self.extras))


__all__ = [
    'DEFAULT_SETTINGS',
    'KNOWN_KEYS',
    'PreferenceSnapshot',
    'default_values',
    'unknown_keys',
]
