"""
Split notes into segments.

Segments are blank-line separated blocks. A block consisting only of a
heading is joined to the block after it so headings stay with their body.
Blocks longer than MAX_SEGMENT_CHARS are cut at line breaks, or at spaces
when a single line is too long, so each enhancement request and its
answer stay within one completion. Joining the raw texts of a note's
segments in order gives back the note modulo whitespace, and a question
span is never cut, so a marker is always inside exactly one segment.
"""

import re

from .types import Note, Segment

# One or more blank lines
_BLOCK_SPLIT_RE = re.compile(r"\n[ \t\r]*\n+")

# "?" at the start of a token, immediately followed by non-whitespace.
# The recorded question runs from the marker to the end of its line.
QUESTION_RE = re.compile(r"(?<!\S)\?\S[^\n]*")

# Roughly 2k tokens, so the enhanced text fits the completion budget
MAX_SEGMENT_CHARS = 8000


def find_questions(text: str) -> tuple[str, ...]:
    """Return every question span in text, verbatim and in order."""
    return tuple(m.group(0).rstrip() for m in QUESTION_RE.finditer(text))


def _blocks(text: str) -> list[str]:
    blocks = [b.strip() for b in _BLOCK_SPLIT_RE.split(text)]
    blocks = [b for b in blocks if b]

    merged: list[str] = []
    pending_heading = ""
    for block in blocks:
        if _is_heading_only(block):
            pending_heading = f"{pending_heading}\n\n{block}" if pending_heading else block
            continue
        if pending_heading:
            block = f"{pending_heading}\n\n{block}"
            pending_heading = ""
        merged.append(block)
    if pending_heading:
        merged.append(pending_heading)
    return merged


def _is_heading_only(block: str) -> bool:
    lines = block.splitlines()
    if len(lines) == 1:
        return lines[0].lstrip().startswith("#")
    # Setext heading: "Title" underlined with === or ---
    return len(lines) == 2 and bool(re.fullmatch(r"[=\-]{3,}", lines[1].strip()))


def _breakable(text: str, i: int, questions: list[tuple[int, int]]) -> bool:
    return text[i].isspace() and not any(start <= i < end for start, end in questions)


def _break_before(text: str, lo: int, hi: int, questions: list[tuple[int, int]]):
    """Rightmost break in text[lo:hi], preferring a line break."""
    newline = text.rfind("\n", lo + 1, hi)
    if newline > lo:
        return newline
    for i in range(hi - 1, lo, -1):
        if _breakable(text, i, questions):
            return i
    return None


def _break_after(text: str, lo: int, questions: list[tuple[int, int]]):
    """First break at or after lo. Used when a question span is longer than the limit."""
    for i in range(lo, len(text)):
        if _breakable(text, i, questions):
            return i
    return None


def split_long(block: str, limit: int = MAX_SEGMENT_CHARS) -> list[str]:
    """
    Cut a block into pieces of at most ``limit`` characters.

    Only whitespace outside question spans is a break point. A stretch
    with no break point stays whole even when it exceeds the limit.
    """
    if len(block) <= limit:
        return [block]
    questions = [m.span() for m in QUESTION_RE.finditer(block)]
    pieces: list[str] = []
    start = 0
    while len(block) - start > limit:
        cut = _break_before(block, start, start + limit, questions)
        if cut is None:
            cut = _break_after(block, start + limit, questions)
            if cut is None:
                break
        pieces.append(block[start:cut].strip())
        start = cut
    pieces.append(block[start:].strip())
    return [p for p in pieces if p]


def segment(note: Note, max_chars: int = MAX_SEGMENT_CHARS) -> list[Segment]:
    """Split a note into segments. Pure function of the note text."""
    pieces = [piece for block in _blocks(note.text) for piece in split_long(block, max_chars)]
    segments = []
    for index, piece in enumerate(pieces):
        segments.append(Segment(
            id=f"{note.id}#{index}",
            note_id=note.id,
            index=index,
            raw_text=piece,
            questions=find_questions(piece),
        ))
    return segments


def segment_all(notes: list[Note]) -> list[Segment]:
    """Segment notes in discovery order."""
    result: list[Segment] = []
    for note in sorted(notes, key=lambda n: n.order):
        result.extend(segment(note))
    return result
