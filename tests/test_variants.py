"""
Tests for custom theme variants.
"""

import json

import pytest

from pulseconnect.sync import CUSTOM_THEME_TEMPLATE, ThemeVariants
from tests.fixtures import SyncFixtures


@pytest.fixture
def variants(engine) -> ThemeVariants:
    return ThemeVariants(engine)


class TestVariantCrud:
    """Test creating, updating and deleting variants."""

    def test_create_from_template(self, engine, variants):
        variant_id = variants.create_variant("Ops Blue", {"primaryColor": "#2563eb"})

        assert variant_id.startswith("custom_")
        variant = variants.get_variant(variant_id)
        assert variant["name"] == "Ops Blue"
        assert variant["id"] == variant_id
        assert variant["primaryColor"] == "#2563eb"
        assert variant["typography"] == CUSTOM_THEME_TEMPLATE["typography"]
        assert variant_id in engine.get("customThemes")

    def test_ids_are_unique(self, variants):
        ids = {variants.create_variant(f"Theme {i}") for i in range(5)}
        assert len(ids) == 5
        assert set(variants.list_variants()) == ids

    def test_returned_variants_are_copies(self, engine, variants):
        variant_id = variants.create_variant("Ops Blue")
        variants.get_variant(variant_id)["name"] = "mutated"
        assert engine.get("customThemes")[variant_id]["name"] == "Ops Blue"

    def test_update_variant(self, variants):
        variant_id = variants.create_variant("Ops Blue")

        assert variants.update_variant(variant_id, {"accentGlow": "#000000", "id": "hijack"}) is True
        variant = variants.get_variant(variant_id)
        assert variant["accentGlow"] == "#000000"
        assert variant["id"] == variant_id

        assert variants.update_variant("custom_missing", {"name": "x"}) is False

    def test_duplicate_variant(self, variants):
        original_id = variants.create_variant("Night Shift", SyncFixtures.variant())
        copy_id = variants.duplicate_variant(original_id)

        assert copy_id != original_id
        duplicate = variants.get_variant(copy_id)
        assert duplicate["name"] == "Night Shift (Copy)"
        assert duplicate["primaryColor"] == "#1e293b"
        assert variants.duplicate_variant("custom_missing") is None

    def test_delete_active_variant_falls_back(self, engine, slot, variants):
        variant_id = variants.create_variant("Ops Blue")
        engine.update("theme", variant_id)
        writes = slot.writes

        assert variants.delete_variant(variant_id) is True

        assert engine.get("theme") == "default"
        assert variant_id not in engine.get("customThemes")
        assert slot.writes == writes + 1

    def test_delete_inactive_variant_keeps_theme(self, engine, variants):
        keep = variants.create_variant("Keep")
        drop = variants.create_variant("Drop")
        engine.update("theme", keep)

        variants.delete_variant(drop)

        assert engine.get("theme") == keep
        assert variants.delete_variant(drop) is False


class TestVariantExchange:
    """Test export and import of single variants."""

    def test_export_import_round_trip(self, variants):
        original_id = variants.create_variant("Night Shift", SyncFixtures.variant())
        exported = variants.export_variant(original_id)

        imported_id = variants.import_variant(exported)

        assert imported_id is not None and imported_id != original_id
        original = variants.get_variant(original_id)
        imported = variants.get_variant(imported_id)
        original.pop("id")
        imported.pop("id")
        assert imported == original

    def test_export_missing(self, variants):
        assert variants.export_variant("custom_missing") is None

    @pytest.mark.parametrize("text", [
        "not json",
        "[1, 2]",
        json.dumps({"primaryColor": "#fff"}),
        json.dumps({"name": ""}),
    ])
    def test_import_rejects_unusable_input(self, variants, text):
        assert variants.import_variant(text) is None
        assert variants.list_variants() == {}
