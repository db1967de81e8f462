"""Tests for notex.segmenter."""

import re
from pathlib import Path

import pytest

from notex.segmenter import MAX_SEGMENT_CHARS, find_questions, segment, segment_all, split_long
from notex.types import Note


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text)


NOTES = [
    "single line",
    "first block\n\nsecond block\n\n\nthird block",
    "# Heading\n\nbody under heading\n\nanother\n",
    "Title\n=====\n\ntext\r\n\r\nmore text",
    "trailing heading\n\n## Alone",
    "  \n\nleading blanks\n\n  \n",
    "What is entropy? ?entropy definition\n\nsee http://x.org/?q=1 ?why",
]


class TestSegment:
    @pytest.mark.parametrize("text", NOTES)
    def test_reconstructs_note(self, text):
        note = Note(path=Path("n.md"), text=text, order=0)
        joined = "".join(s.raw_text for s in segment(note))
        assert _squash(joined) == _squash(text)

    @pytest.mark.parametrize("text", NOTES)
    def test_every_marker_in_exactly_one_segment(self, text):
        note = Note(path=Path("n.md"), text=text, order=0)
        expected = find_questions(text)
        found = [q for s in segment(note) for q in s.questions]
        assert found == list(expected)

    def test_ids_and_indices(self):
        note = Note(path=Path("dir/n.md"), text="a\n\nb", order=0)
        segs = segment(note)
        assert [s.id for s in segs] == ["dir/n.md#0", "dir/n.md#1"]
        assert [s.index for s in segs] == [0, 1]
        assert all(s.note_id == "dir/n.md" for s in segs)

    def test_heading_joins_following_block(self):
        note = Note(path=Path("n.md"), text="# Topology\n\nOpen sets.", order=0)
        segs = segment(note)
        assert len(segs) == 1
        assert segs[0].raw_text == "# Topology\n\nOpen sets."

    def test_empty_note_has_no_segments(self):
        assert segment(Note(path=Path("n.md"), text="\n\n  \n", order=0)) == []

    def test_long_block_split_at_lines(self):
        lines = [f"line {i} " + "word " * 20 for i in range(400)]
        text = "\n".join(lines)
        note = Note(path=Path("n.md"), text=text, order=0)
        segs = segment(note)
        assert len(segs) > 1
        assert all(len(s.raw_text) <= MAX_SEGMENT_CHARS for s in segs)
        assert _squash("".join(s.raw_text for s in segs)) == _squash(text)
        # Cuts fall on line breaks
        assert all(s.raw_text.startswith("line ") for s in segs)

    def test_oversized_note_loses_nothing(self):
        text = "x" * 50000 + " TAIL_SENTINEL"
        segs = segment(Note(path=Path("n.md"), text=text, order=0))
        assert segs[-1].raw_text == "TAIL_SENTINEL"
        assert _squash("".join(s.raw_text for s in segs)) == _squash(text)

    def test_segment_all_follows_discovery_order(self):
        a = Note(path=Path("a.md"), text="a", order=1)
        b = Note(path=Path("b.md"), text="b", order=0)
        assert [s.note_id for s in segment_all([a, b])] == ["b.md", "a.md"]


class TestFindQuestions:
    def test_entropy_scenario(self):
        assert find_questions("What is entropy? ?entropy definition") == ("?entropy definition",)

    def test_trailing_question_mark_is_not_a_marker(self):
        assert find_questions("Is this a question? yes") == ()

    def test_query_string_is_not_a_marker(self):
        assert find_questions("http://example.com/?q=1") == ()

    def test_span_ends_at_line_end(self):
        text = "?first thing\nplain\n  ?second"
        assert find_questions(text) == ("?first thing", "?second")


class TestSplitLong:
    def test_short_block_untouched(self):
        assert split_long("a b c", 10) == ["a b c"]

    def test_long_line_cut_at_spaces(self):
        assert split_long("aaaa bbbb cccc dddd", 10) == ["aaaa bbbb", "cccc dddd"]

    def test_question_span_never_cut(self):
        block = "intro text ?why does this long question stay whole\nafter"
        pieces = split_long(block, 20)
        assert "?why does this long question stay whole" in pieces
        assert [q for p in pieces for q in find_questions(p)] == list(find_questions(block))

    def test_unbreakable_run_stays_whole(self):
        assert split_long("y" * 30, 10) == ["y" * 30]
