"""
User-defined theme variants.

Variants live in the ``customThemes`` mapping of the preference snapshot;
every change goes through the engine so it is persisted and synced like any
other preference.
"""

import copy
import json
import time
from typing import Any, Dict, Mapping, Optional

from ..utils.logging import get_logger
from .engine import PreferenceSyncEngine


logger = get_logger("pulseconnect.sync.variants")

VARIANTS_KEY = "customThemes"
FALLBACK_THEME = "default"

CUSTOM_THEME_TEMPLATE: Dict[str, Any] = {
    "name": "My Theme",
    "description": "Custom theme",
    "primaryColor": "#a855f7",
    "accentGlow": "#8b5cf6",
    "typography": "sans",
    "backgroundTexture": "clean",
    "buttonStyle": "softGlass",
    "motionIntensity": 0.5,
    "notificationAnimation": "slide",
    "preview": "linear-gradient(135deg, #a855f7 0%, #8b5cf6 100%)",
}


class ThemeVariants:
    """CRUD over the custom theme variants held by an engine."""

    def __init__(self, engine: PreferenceSyncEngine):
        self.engine = engine

    def _variants(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self.engine.get(VARIANTS_KEY) or {})

    def _new_id(self, existing: Mapping[str, Any]) -> str:
        stamp = int(time.time() * 1000)
        variant_id = f"custom_{stamp}"
        while variant_id in existing:
            stamp += 1
            variant_id = f"custom_{stamp}"
        return variant_id

    def list_variants(self) -> Dict[str, Dict[str, Any]]:
        return self._variants()

    def get_variant(self, variant_id: str) -> Optional[Dict[str, Any]]:
        return self._variants().get(variant_id)

    def create_variant(self, name: str, data: Optional[Mapping[str, Any]] = None) -> str:
        """Create a variant from the template overlaid with data; returns its id."""
        variants = self._variants()
        variant_id = self._new_id(variants)
        variants[variant_id] = {
            **copy.deepcopy(CUSTOM_THEME_TEMPLATE),
            **copy.deepcopy(dict(data or {})),
            "name": name,
            "id": variant_id,
        }
        self.engine.update(VARIANTS_KEY, variants)
        logger.info("variant_created", variant_id=variant_id)
        return variant_id

    def update_variant(self, variant_id: str, changes: Mapping[str, Any]) -> bool:
        variants = self._variants()
        if variant_id not in variants:
            return False
        variants[variant_id].update(copy.deepcopy(dict(changes)))
        variants[variant_id]["id"] = variant_id
        self.engine.update(VARIANTS_KEY, variants)
        return True

    def duplicate_variant(self, variant_id: str) -> Optional[str]:
        original = self.get_variant(variant_id)
        if original is None:
            return None
        return self.create_variant(f"{original.get('name', 'Theme')} (Copy)", original)

    def delete_variant(self, variant_id: str) -> bool:
        """Remove a variant; an active deleted variant falls back to the default theme."""
        variants = self._variants()
        if variant_id not in variants:
            return False

        del variants[variant_id]
        patch: Dict[str, Any] = {VARIANTS_KEY: variants}
        if self.engine.get("theme") == variant_id:
            patch["theme"] = FALLBACK_THEME
        self.engine.update_many(patch)

        logger.info("variant_deleted", variant_id=variant_id)
        return True

    def export_variant(self, variant_id: str) -> Optional[str]:
        variant = self.get_variant(variant_id)
        if variant is None:
            return None
        return json.dumps(variant, indent=2)

    def import_variant(self, text: str) -> Optional[str]:
        """Create a variant from exported JSON; None when the text is unusable."""
        try:
            data = json.loads(text)
        except ValueError as e:
            logger.error("variant_import_failed", error=str(e))
            return None

        if not isinstance(data, dict) or not data.get("name"):
            logger.error("variant_import_failed", error="variant must be an object with a name")
            return None

        data.pop("id", None)
        return self.create_variant(data["name"], data)


__all__ = [
    'ThemeVariants',
    'CUSTOM_THEME_TEMPLATE',
]
