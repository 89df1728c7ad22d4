"""Tests for EventNormalizer."""

import pytest

from agentmesh.validation import EVENT_TYPES, EventNormalizer


class TestNormalize:
    """Tests for EventNormalizer.normalize()."""

    def test_maps_raw_type_to_canonical(self, normalizer):
        """Test that a known raw type maps to its canonical type."""
        assert normalizer.normalize("semantic.validation.request") == "specification.validate"
        assert normalizer.normalize("context.propagation.request") == "context.propagate"

    def test_canonical_type_maps_to_itself(self, normalizer):
        """Test that canonical types are fixed points."""
        assert normalizer.normalize("specification.validate") == "specification.validate"
        assert normalizer.normalize("system.ready") == "system.ready"

    def test_unresolved_type_maps_to_itself(self, normalizer):
        """Test that unknown types are returned unchanged."""
        assert normalizer.normalize("weather.report") == "weather.report"

    @pytest.mark.parametrize(
        "raw_type",
        list(EVENT_TYPES) + list(EVENT_TYPES.values()) + ["not.in.table", ""],
    )
    def test_idempotent(self, normalizer, raw_type):
        """Test that normalizing twice equals normalizing once."""
        once = normalizer.normalize(raw_type)
        assert normalizer.normalize(once) == once

    def test_is_canonical(self, normalizer):
        """Test canonical type detection."""
        assert normalizer.is_canonical("dag.orchestrate")
        assert not normalizer.is_canonical("dag.orchestration.request")


class TestAddMapping:
    """Tests for the append-only table."""

    def test_add_new_mapping(self):
        """Test that a new mapping is used by normalize()."""
        normalizer = EventNormalizer()
        normalizer.add_mapping("legacy.schema.check", "specification.validate")
        assert normalizer.normalize("legacy.schema.check") == "specification.validate"

    def test_existing_mapping_cannot_change(self):
        """Test that an existing entry is never rewritten."""
        normalizer = EventNormalizer()
        with pytest.raises(ValueError):
            normalizer.add_mapping("semantic.validation.request", "rag.retrieve")

    def test_readding_same_mapping_is_allowed(self):
        """Test that re-adding an identical entry is a no-op."""
        normalizer = EventNormalizer()
        normalizer.add_mapping("semantic.validation.request", "specification.validate")
        assert normalizer.normalize("semantic.validation.request") == "specification.validate"

    def test_canonical_type_cannot_be_remapped(self):
        """Test that a canonical type cannot become an alias."""
        normalizer = EventNormalizer()
        with pytest.raises(ValueError):
            normalizer.add_mapping("specification.validate", "rag.retrieve")

    def test_custom_table_does_not_touch_default(self):
        """Test that instances do not share their tables."""
        custom = EventNormalizer({"a.request": "a.run"})
        custom.add_mapping("b.request", "b.run")
        assert "b.request" not in EVENT_TYPES
        assert custom.normalize("semantic.validation.request") == "semantic.validation.request"
