"""Tests for notex.discovery: walking the input tree."""

from pathlib import Path

import pytest

from notex.discovery import discover_notes, is_excluded


class TestDiscoverNotes:
    def test_skips_hidden_and_blank(self, notes_dir):
        notes = discover_notes(notes_dir)
        assert [n.id for n in notes] == ["math/topology.md", "physics.md"]
        assert [n.order for n in notes] == [0, 1]

    def test_hidden_directories_skipped(self, notes_dir):
        hidden = notes_dir / ".git"
        hidden.mkdir()
        (hidden / "config").write_text("[core]")
        assert all(not n.id.startswith(".git") for n in discover_notes(notes_dir))

    def test_exclude_by_name_and_path(self, notes_dir):
        assert [n.id for n in discover_notes(notes_dir, ["physics.md"])] == ["math/topology.md"]
        assert [n.id for n in discover_notes(notes_dir, ["math/*"])] == ["physics.md"]

    def test_undecodable_file_skipped(self, notes_dir):
        (notes_dir / "image.md").write_bytes(b"\xff\xfe\x00\x01binary")
        assert "image.md" not in [n.id for n in discover_notes(notes_dir)]

    def test_note_paths_are_relative(self, notes_dir):
        for note in discover_notes(notes_dir):
            assert not note.path.is_absolute()

    def test_not_a_directory(self, tmp_path):
        with pytest.raises(NotADirectoryError):
            discover_notes(tmp_path / "missing")


class TestIsExcluded:
    @pytest.mark.parametrize("path,patterns,expected", [
        ("a/b.tmp", ["*.tmp"], True),
        ("drafts/x.md", ["drafts/*"], True),
        ("notes/x.md", ["drafts/*"], False),
        ("x.md", [], False),
    ])
    def test_patterns(self, path, patterns, expected):
        assert is_excluded(path, patterns) is expected
