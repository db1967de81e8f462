"""
Reorganization pass: let the oracle restructure the materialized tree.

The whole listing (path + opening text of each file) goes to the oracle
in as few requests as fit the file-count and character limits. It answers with move and
merge directives, applied one by one through the store. A directive
whose destination already exists and is not one of its sources is
skipped, never forced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from .errors import ConflictingWriteError
from .executor import BoundedExecutor, Task
from .oracle import MAX_USER_CHARS, OracleClient, OracleRequest
from .store import MaterializationStore
from .types import OutputFormat, normalize_destination

logger = logging.getLogger(__name__)

# Listing characters per request, leaving room for the request header
LISTING_CHAR_BUDGET = MAX_USER_CHARS - 200


REORGANIZATION_SYSTEM_PROMPT = """You are a file organization expert. Given a list of note files with the start of their content, suggest structural improvements.

Consider:
1. Files that would be better under a different category
2. Categories that should be split into subcategories
3. Files covering the same topic that should be merged
4. Redundant or overlapping categories

Return JSON:
{
  "directives": [
    {"action": "move", "source": "machine_learning/tsne.md", "dest": "statistics/dimensionality_reduction.md", "reason": "t-SNE is a general statistical technique"},
    {"action": "merge", "sources": ["physics/waves.md", "physics/oscillations.md"], "dest": "physics/waves.md", "reason": "Same topic"}
  ],
  "new_categories": [
    {"category": "statistics", "subcategory": "dimensionality_reduction", "affected_files": ["machine_learning/tsne.md"], "reason": "General statistical methods, not specific to ML"}
  ]
}

Return {"directives": []} if the structure is already good. Only use paths from the listing as sources."""


class DirectiveModel(BaseModel):
    action: Literal["move", "merge"]
    source: Optional[str] = None
    sources: list[str] = Field(default_factory=list)
    dest: str = Field(min_length=1)
    reason: str = ""


class FileMoveModel(BaseModel):
    current_path: str
    suggested_path: str
    reason: str = ""


class CategorySuggestionModel(BaseModel):
    category: str = Field(min_length=1)
    subcategory: Optional[str] = None
    affected_files: list[str] = Field(default_factory=list)
    reason: str = ""

    def __str__(self) -> str:
        name = f"{self.category}/{self.subcategory}" if self.subcategory else self.category
        text = name
        if self.affected_files:
            text += f" ({', '.join(self.affected_files)})"
        if self.reason:
            text += f": {self.reason}"
        return text


class ReorganizationResponse(BaseModel):
    directives: list[DirectiveModel] = Field(default_factory=list)
    file_moves: list[FileMoveModel] = Field(default_factory=list)
    new_categories: list[CategorySuggestionModel] = Field(default_factory=list)


@dataclass(frozen=True)
class Move:
    source: str
    dest: str
    reason: str = ""

    @property
    def sources(self) -> tuple[str, ...]:
        return (self.source,)

    def __str__(self) -> str:
        return f"move {self.source} -> {self.dest}"


@dataclass(frozen=True)
class Merge:
    sources: tuple[str, ...]
    dest: str
    reason: str = ""

    def __str__(self) -> str:
        return f"merge {', '.join(self.sources)} -> {self.dest}"


Directive = Union[Move, Merge]


@dataclass
class ReorganizationReport:
    applied: list[Directive] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)  # (directive, reason)
    suggestions: list[str] = field(default_factory=list)  # new categories, reported only
    failed_batches: int = 0


@dataclass(frozen=True)
class FileSummary:
    path: str
    hint: str


def summarize_tree(store: MaterializationStore, chars: int) -> list[FileSummary]:
    """Path and opening text of every output file."""
    summaries = []
    for path in store.list_files():
        try:
            text = store.read(path)
        except FileNotFoundError:
            continue
        summaries.append(FileSummary(path, text[:chars].strip()))
    return summaries


def listing_entry(summary: FileSummary) -> str:
    return f"=== {summary.path} ===\n{summary.hint}"


def render_listing(batch: list[FileSummary]) -> str:
    return "\n\n".join(listing_entry(s) for s in batch)


def batch_listing(
    summaries: list[FileSummary],
    max_files: int,
    max_chars: int = LISTING_CHAR_BUDGET,
) -> list[list[FileSummary]]:
    """
    Group summaries into listing batches.

    A batch holds at most max_files entries and its rendered listing
    stays within max_chars. An entry longer than max_chars on its own
    gets a batch to itself.
    """
    batches: list[list[FileSummary]] = []
    current: list[FileSummary] = []
    size = 0
    for summary in summaries:
        entry = len(listing_entry(summary))
        added = entry + 2 if current else entry
        if current and (len(current) >= max_files or size + added > max_chars):
            batches.append(current)
            current, size, added = [], 0, entry
        current.append(summary)
        size += added
    if current:
        batches.append(current)
    return batches


def build_request(batch: list[FileSummary]) -> OracleRequest:
    return OracleRequest(
        system=REORGANIZATION_SYSTEM_PROMPT,
        user=f"Current file structure:\n\n{render_listing(batch)}",
        response_model=ReorganizationResponse,
    )


def to_directives(response: ReorganizationResponse, fmt: OutputFormat) -> list[tuple[Optional[Directive], str]]:
    """
    Convert an oracle answer to directives.

    Returns (directive, raw description) pairs; directive is None when
    the entry is unusable.
    """
    result: list[tuple[Optional[Directive], str]] = []
    raw_items = [
        (d.action, [d.source] if d.source else list(d.sources), d.dest, d.reason)
        for d in response.directives
    ]
    raw_items += [("move", [m.current_path], m.suggested_path, m.reason) for m in response.file_moves]

    for action, sources, dest, reason in raw_items:
        raw = f"{action} {', '.join(sources)} -> {dest}"
        try:
            norm_sources = tuple(normalize_destination(s, fmt) for s in sources)
            norm_dest = normalize_destination(dest, fmt)
        except ValueError:
            result.append((None, raw))
            continue
        if not norm_sources or len(set(norm_sources)) != len(norm_sources):
            result.append((None, raw))
        elif action == "move":
            result.append((Move(norm_sources[0], norm_dest, reason), raw))
        else:
            result.append((Merge(norm_sources, norm_dest, reason), raw))
    return result


def apply_directive(directive: Directive, store: MaterializationStore) -> None:
    """
    Apply one directive.

    Raises:
        ConflictingWriteError: destination exists and is not a source
        FileNotFoundError: a source is missing
    """
    if directive.dest not in directive.sources and store.exists(directive.dest):
        raise ConflictingWriteError(f"{directive.dest} already exists")
    if isinstance(directive, Move):
        store.move(directive.source, directive.dest)
    else:
        store.merge(list(directive.sources), directive.dest)


def reorganize(
    store: MaterializationStore,
    oracle: OracleClient,
    executor: BoundedExecutor,
    *,
    summary_chars: int = 500,
    batch_size: int = 200,
) -> ReorganizationReport:
    """Run the reorganization pass against the store."""
    report = ReorganizationReport()
    summaries = summarize_tree(store, summary_chars)
    if not summaries:
        return report

    batches = batch_listing(summaries, batch_size)
    logger.debug("Reorganizing %d files in %d requests", len(summaries), len(batches))
    tasks = [
        Task(key=i, call=lambda b=batch: oracle.invoke(build_request(b)))
        for i, batch in enumerate(batches)
    ]
    outcomes = executor.run_all(tasks, label="reorganize")

    for i in range(len(batches)):
        outcome = outcomes[i]
        if not outcome.ok:
            report.failed_batches += 1
            logger.warning("Reorganization batch %d failed, leaving its files in place: %s", i, outcome.error)
            continue
        report.suggestions.extend(str(s) for s in outcome.result.new_categories)
        for directive, raw in to_directives(outcome.result, store.format):
            if directive is None:
                report.skipped.append((raw, "invalid directive"))
                logger.warning("Skipping invalid directive: %s", raw)
                continue
            try:
                apply_directive(directive, store)
            except ConflictingWriteError as e:
                report.skipped.append((str(directive), f"conflict: {e}"))
                logger.warning("Skipping %s: %s", directive, e)
            except FileNotFoundError as e:
                report.skipped.append((str(directive), f"missing source: {e}"))
                logger.warning("Skipping %s: source %s not found", directive, e)
            else:
                report.applied.append(directive)
                logger.info("Applied %s", directive)

    for suggestion in report.suggestions:
        logger.info("Suggested category: %s", suggestion)
    if not report.applied and not report.skipped:
        logger.info("No reorganization needed")
    return report
