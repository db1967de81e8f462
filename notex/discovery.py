"""
Find notes in the input tree.
"""

import fnmatch
import logging
import os
from pathlib import Path
from typing import Iterable

from .types import Note

logger = logging.getLogger(__name__)


def is_excluded(rel_path: str, patterns: Iterable[str]) -> bool:
    """Check a relative path (and its file name) against glob patterns."""
    name = rel_path.rsplit("/", 1)[-1]
    return any(
        fnmatch.fnmatch(rel_path, p) or fnmatch.fnmatch(name, p)
        for p in patterns
    )


def discover_notes(root: Path, exclude: Iterable[str] = ()) -> list[Note]:
    """
    Walk root and read every note.

    Skips hidden files and directories, excluded paths, files that can't
    be decoded as text, and files that are empty or whitespace-only.
    Traversal is sorted so discovery order is stable across runs.

    Raises:
        NotADirectoryError: if root is not a directory
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Input is not a directory: {root}")
    patterns = list(exclude)

    notes: list[Note] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            path = Path(dirpath) / filename
            rel = path.relative_to(root).as_posix()
            if is_excluded(rel, patterns):
                logger.debug("Excluded: %s", rel)
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read %s: %s", rel, e)
                continue
            if not text.strip():
                continue
            logger.debug("Discovered: %s", rel)
            notes.append(Note(path=Path(rel), text=text, order=len(notes)))

    return notes
