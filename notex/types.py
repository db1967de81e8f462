"""
Data types for the note pipeline.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class OutputFormat(str, Enum):
    """Serialization style for output files."""
    MARKDOWN = "markdown"
    PLAIN = "plain"

    @property
    def suffix(self) -> str:
        return ".md" if self is OutputFormat.MARKDOWN else ".txt"


# Advisory taxonomy - the oracle may name categories outside this list
CATEGORIES = (
    # Sciences
    "mathematics", "statistics", "physics", "chemistry", "biology", "computer_science",
    # Applied
    "machine_learning", "engineering", "finance",
    # Humanities
    "philosophy", "history", "literature", "languages",
    # Personal
    "journal", "ideas", "todo",
    # Media
    "books", "videos", "articles", "podcasts",
    # Misc
    "reference", "links", "uncategorized",
)

DEFAULT_SUBCATEGORY = "general"

# A single path component: lowercase alnum start, then alnum, underscore, dot, hyphen
_COMPONENT_RE = re.compile(r'^[a-z0-9][a-z0-9_.\-]*$')
_KNOWN_SUFFIXES = (".md", ".txt", ".markdown", ".text")


def normalize_component(raw: str) -> str:
    """Lowercase a category or topic name and replace whitespace with underscores."""
    return re.sub(r'\s+', "_", raw.strip().lower())


def normalize_destination(raw: str, fmt: OutputFormat) -> str:
    """Normalize an oracle-suggested destination into a category-rooted path.

    The result always ends with the format's suffix and has at least two
    components (category + file). Raises ValueError if the path is not
    syntactically valid.
    """
    if not raw or not raw.strip():
        raise ValueError("Destination path is empty")
    text = raw.strip().replace("\\", "/")
    if text.startswith("/"):
        raise ValueError(f"Destination path must be relative: {raw!r}")
    parts = [normalize_component(p) for p in text.split("/") if p.strip()]
    if not parts:
        raise ValueError(f"Destination path is empty: {raw!r}")

    stem = parts[-1]
    for known in _KNOWN_SUFFIXES:
        if stem.endswith(known):
            stem = stem[: -len(known)]
            break
    parts[-1] = stem
    if len(parts) == 1:
        parts.append(DEFAULT_SUBCATEGORY)

    for part in parts:
        if part in (".", "..") or not _COMPONENT_RE.match(part):
            raise ValueError(f"Invalid path component {part!r} in {raw!r}")

    return "/".join(parts) + fmt.suffix


def destination_for(
    category: str,
    subcategory: Optional[str],
    fmt: OutputFormat,
) -> str:
    """Build a destination path from a category and optional subcategory."""
    sub = subcategory if subcategory and subcategory.strip() else DEFAULT_SUBCATEGORY
    return normalize_destination(f"{category}/{sub}", fmt)


@dataclass(frozen=True)
class Note:
    """A note read from the input tree. Immutable once read."""
    path: Path
    text: str
    order: int  # discovery order, for deterministic tie-breaking

    @property
    def id(self) -> str:
        return self.path.as_posix()


@dataclass
class Segment:
    """
    The unit of all downstream work.

    Attributes:
        id: Stable identifier ``<note id>#<index>``
        note_id: Identifier of the source note
        index: Position of the segment within its note
        raw_text: Text as it appeared in the note
        questions: Verbatim question spans found in the segment
        destinations: Assigned destination paths (first = primary)
        enhanced_text: Improved text; starts out equal to raw_text
    """
    id: str
    note_id: str
    index: int
    raw_text: str
    questions: tuple[str, ...] = ()
    destinations: list[str] = field(default_factory=list)
    enhanced_text: str = ""

    def __post_init__(self):
        if not self.enhanced_text:
            self.enhanced_text = self.raw_text

    @property
    def source_stem(self) -> str:
        return normalize_component(Path(self.note_id).stem) or "note"


class PlacementPlan:
    """
    Mapping from segment id to an ordered set of destination paths.

    The first path of each entry is the primary destination, the rest are
    cross-filed copies. Iteration follows insertion order, which callers
    keep equal to discovery order.
    """

    def __init__(self):
        self._entries: dict[str, list[str]] = {}

    def add(self, segment_id: str, paths: list[str]) -> None:
        """Record destinations for a segment.

        Raises:
            ValueError: if paths is empty, a path is blank or not
                category-rooted, a path repeats, or the segment is
                already placed.
        """
        if segment_id in self._entries:
            raise ValueError(f"Segment already placed: {segment_id}")
        if not paths:
            raise ValueError(f"No destinations for segment {segment_id}")
        seen: set[str] = set()
        for path in paths:
            if not path or "/" not in path or path.startswith("/"):
                raise ValueError(f"Destination is not category-rooted: {path!r}")
            if path in seen:
                raise ValueError(f"Duplicate destination {path!r} for segment {segment_id}")
            seen.add(path)
        self._entries[segment_id] = list(paths)

    def primary(self, segment_id: str) -> Optional[str]:
        paths = self._entries.get(segment_id)
        return paths[0] if paths else None

    def items(self):
        return self._entries.items()

    def paths(self) -> list[str]:
        """All distinct destination paths, in first-seen order."""
        seen: dict[str, None] = {}
        for paths in self._entries.values():
            for path in paths:
                seen.setdefault(path, None)
        return list(seen)

    def __contains__(self, segment_id: str) -> bool:
        return segment_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)


@dataclass
class OutputFile:
    """
    A file in the output tree.

    Holds the ids of the segments materialized into it, in write order,
    plus any appended cross-reference annotations.
    """
    path: str
    segment_ids: list[str] = field(default_factory=list)
    annotations: list[str] = field(default_factory=list)
    content: str = ""  # mirror of what was written (authoritative in dry-run)

    @property
    def is_empty(self) -> bool:
        return not self.content
