"""Tests for notex.categorizer: the categorization pass."""

import json

import pytest

from notex.categorizer import CategorizationResponse, categorize, resolve_destinations
from notex.errors import FatalOracleError
from notex.oracle import MAX_USER_CHARS
from notex.types import OutputFormat, Segment


def _segments(*texts, note="notes/Daily Log.md"):
    return [
        Segment(id=f"{note}#{i}", note_id=note, index=i, raw_text=t)
        for i, t in enumerate(texts)
    ]


class TestResolveDestinations:
    def test_category_and_subcategory(self):
        resp = CategorizationResponse(category="Mathematics", subcategory="Topology")
        assert resolve_destinations(resp, OutputFormat.MARKDOWN) == ["mathematics/topology.md"]

    def test_category_only(self):
        resp = CategorizationResponse(category="physics")
        assert resolve_destinations(resp, OutputFormat.PLAIN) == ["physics/general.txt"]

    def test_explicit_path_must_be_rooted_in_category(self):
        resp = CategorizationResponse(category="physics", path="waves.md")
        assert resolve_destinations(resp, OutputFormat.MARKDOWN) == ["physics/waves.md"]

    def test_cross_filing_dedupes_and_drops_invalid(self):
        resp = CategorizationResponse(
            category="physics",
            path="physics/thermo.md",
            cross_file_to=["chemistry/thermo.md", "physics/thermo.md", "/abs/path.md", "chemistry/thermo"],
        )
        assert resolve_destinations(resp, OutputFormat.MARKDOWN) == [
            "physics/thermo.md",
            "chemistry/thermo.md",
        ]

    def test_paths_list_shape(self):
        resp = CategorizationResponse(category="ideas", paths=["ideas/apps.md", "todo/apps.md"])
        assert resolve_destinations(resp, OutputFormat.MARKDOWN) == ["ideas/apps.md", "todo/apps.md"]

    def test_invalid_subcategory_keeps_category(self):
        resp = CategorizationResponse(category="physics", subcategory="Mechanics!")
        assert resolve_destinations(resp, OutputFormat.MARKDOWN) == ["physics/general.md"]

    def test_invalid_path_keeps_category(self):
        resp = CategorizationResponse(category="physics", path="physics/../secrets.md")
        assert resolve_destinations(resp, OutputFormat.MARKDOWN) == ["physics/general.md"]

    def test_invalid_category_raises(self):
        resp = CategorizationResponse(category="??!!")
        with pytest.raises(ValueError):
            resolve_destinations(resp, OutputFormat.MARKDOWN)


class TestCategorize:
    def test_custom_category_is_accepted(self, scripted, executor):
        _, oracle = scripted(lambda s, u: json.dumps({"category": "quantum_foo"}))
        segments = _segments("spooky action")

        result = categorize(segments, oracle, executor)

        assert segments[0].destinations == ["quantum_foo/general.md"]
        assert result.plan.primary(segments[0].id) == "quantum_foo/general.md"
        assert result.custom_categories == {"quantum_foo"}
        assert result.fallbacks == {}

    def test_invalid_answer_falls_back(self, scripted, executor):
        _, oracle = scripted(lambda s, u: json.dumps({"category": "bad/../path"}))
        segments = _segments("something")

        result = categorize(segments, oracle, executor)

        assert segments[0].destinations == ["uncategorized/daily_log.md"]
        assert "invalid destination" in result.fallbacks[segments[0].id]
        assert result.failed == []

    def test_oracle_failure_falls_back(self, scripted, executor):
        def respond(system, user):
            if "second" in user:
                raise FatalOracleError("400 bad request")
            return json.dumps({"category": "ideas", "subcategory": "apps"})

        _, oracle = scripted(respond)
        segments = _segments("first", "second")

        result = categorize(segments, oracle, executor, default_category="inbox")

        assert segments[0].destinations == ["ideas/apps.md"]
        assert segments[1].destinations == ["inbox/daily_log.md"]
        assert result.failed == [segments[1].id]
        assert result.succeeded == 1

    def test_plan_follows_segment_order(self, scripted, executor):
        _, oracle = scripted(lambda s, u: json.dumps({"category": "ideas"}))
        segments = _segments("a", "b", "c", "d", "e")
        result = categorize(segments, oracle, executor)
        assert list(result.plan) == [s.id for s in segments]

    def test_malformed_then_valid_is_retried(self, scripted, executor):
        answers = iter(["not json at all", json.dumps({"category": "physics"})])
        provider, oracle = scripted(lambda s, u: next(answers))
        segments = _segments("heat")

        categorize(segments, oracle, executor)

        assert segments[0].destinations == ["physics/general.md"]
        assert len(provider.calls) == 2

    def test_valid_category_with_bad_subcategory_is_not_a_fallback(self, scripted, executor):
        _, oracle = scripted(lambda s, u: json.dumps({"category": "physics", "subcategory": "Mechanics!"}))
        segments = _segments("forces")

        result = categorize(segments, oracle, executor)

        assert segments[0].destinations == ["physics/general.md"]
        assert result.fallbacks == {}

    def test_long_segment_is_truncated_for_placement(self, scripted, executor):
        provider, oracle = scripted(lambda s, u: json.dumps({"category": "ideas"}))
        segments = _segments("y" * (MAX_USER_CHARS + 100))

        categorize(segments, oracle, executor)

        assert segments[0].destinations == ["ideas/general.md"]
        assert len(provider.calls[0][1]) == MAX_USER_CHARS

    def test_reports_each_finished_segment(self, scripted, executor):
        _, oracle = scripted(lambda s, u: json.dumps({"category": "ideas"}))
        done = []
        categorize(_segments("a", "b"), oracle, executor, on_done=done.append)
        assert len(done) == 2
        assert all(o.ok for o in done)

    def test_request_carries_taxonomy_and_text(self, scripted, executor):
        provider, oracle = scripted(lambda s, u: json.dumps({"category": "ideas"}))
        categorize(_segments("segment body"), oracle, executor)
        system, user = provider.calls[0]
        assert "machine_learning" in system
        assert "segment body" in user
