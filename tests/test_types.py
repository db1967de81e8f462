"""Tests for notex.types: destination paths and the placement plan."""

from pathlib import Path

import pytest

from notex.types import (
    Note,
    OutputFormat,
    PlacementPlan,
    Segment,
    destination_for,
    normalize_destination,
)


class TestNormalizeDestination:
    def test_adds_suffix(self):
        assert normalize_destination("mathematics/topology", OutputFormat.MARKDOWN) == "mathematics/topology.md"

    def test_plain_suffix(self):
        assert normalize_destination("mathematics/topology.md", OutputFormat.PLAIN) == "mathematics/topology.txt"

    def test_lowercases_and_underscores(self):
        assert normalize_destination("Machine Learning/Neural Nets", OutputFormat.MARKDOWN) == \
            "machine_learning/neural_nets.md"

    def test_single_component_gets_general(self):
        assert normalize_destination("physics", OutputFormat.MARKDOWN) == "physics/general.md"

    def test_backslashes_become_slashes(self):
        assert normalize_destination("physics\\waves.md", OutputFormat.MARKDOWN) == "physics/waves.md"

    @pytest.mark.parametrize("raw", ["", "   ", "/etc/passwd", "physics/../secrets", "physics/-bad", "phys!cs/x"])
    def test_rejects_invalid(self, raw):
        with pytest.raises(ValueError):
            normalize_destination(raw, OutputFormat.MARKDOWN)

    def test_destination_for_default_subcategory(self):
        assert destination_for("quantum_foo", None, OutputFormat.MARKDOWN) == "quantum_foo/general.md"
        assert destination_for("physics", "  ", OutputFormat.MARKDOWN) == "physics/general.md"


class TestSegment:
    def test_enhanced_text_starts_as_raw(self):
        seg = Segment(id="a.md#0", note_id="a.md", index=0, raw_text="hello")
        assert seg.enhanced_text == "hello"

    def test_source_stem(self):
        seg = Segment(id="dir/My Notes.md#0", note_id="dir/My Notes.md", index=0, raw_text="x")
        assert seg.source_stem == "my_notes"

    def test_note_id_is_posix_path(self):
        note = Note(path=Path("a") / "b.md", text="x", order=0)
        assert note.id == "a/b.md"


class TestPlacementPlan:
    def test_keeps_insertion_order(self):
        plan = PlacementPlan()
        plan.add("b#0", ["x/one.md"])
        plan.add("a#0", ["y/two.md", "z/three.md"])
        assert list(plan) == ["b#0", "a#0"]
        assert plan.primary("a#0") == "y/two.md"
        assert plan.paths() == ["x/one.md", "y/two.md", "z/three.md"]

    def test_rejects_duplicate_destination(self):
        plan = PlacementPlan()
        with pytest.raises(ValueError, match="Duplicate"):
            plan.add("a#0", ["x/one.md", "x/one.md"])

    def test_rejects_uncategorized_path(self):
        plan = PlacementPlan()
        with pytest.raises(ValueError, match="category-rooted"):
            plan.add("a#0", ["one.md"])
        with pytest.raises(ValueError):
            plan.add("a#0", [""])

    def test_rejects_empty_and_repeat(self):
        plan = PlacementPlan()
        with pytest.raises(ValueError):
            plan.add("a#0", [])
        plan.add("a#0", ["x/one.md"])
        with pytest.raises(ValueError, match="already placed"):
            plan.add("a#0", ["x/two.md"])
        assert "a#0" in plan
        assert len(plan) == 1
