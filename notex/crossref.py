"""
Cross-reference pass: link related output files.

Builds an index of every final output file (path + opening text), asks
the oracle which files relate, and appends a "See also" block to each
file that has links. Strictly additive: files are only appended to.
Cross-filed copies are independent documents by now, so each copy gets
only its own links.
"""

import logging
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from .executor import BoundedExecutor, Task
from .formatting import render_links
from .oracle import OracleClient, OracleRequest
from .reorganizer import FileSummary, batch_listing, render_listing, summarize_tree
from .store import MaterializationStore
from .types import OutputFormat, normalize_destination

logger = logging.getLogger(__name__)


CROSSREF_SYSTEM_PROMPT = """You are a knowledge linking expert. Given a set of notes with their content summaries, identify meaningful connections between them.

Look for:
1. Notes that reference concepts explained in other notes
2. Notes that build upon knowledge from other notes
3. Related topics that would benefit from cross-linking

Return JSON:
{
  "references": [
    {"from_file": "machine_learning/backprop.md", "to_file": "mathematics/calculus/chain_rule.md", "context": "Backpropagation uses the chain rule"}
  ]
}

Only use paths that appear in the listing."""


class ReferenceModel(BaseModel):
    from_file: str
    to_file: str
    context: str = ""


class CrossRefResponse(BaseModel):
    references: list[ReferenceModel] = Field(default_factory=list)


@dataclass
class CrossReferenceReport:
    links: dict[str, list[tuple[str, str]]] = field(default_factory=dict)  # file -> [(target, context)]
    dropped: int = 0
    failed_batches: int = 0

    @property
    def link_count(self) -> int:
        return sum(len(v) for v in self.links.values())


def build_request(batch: list[FileSummary]) -> OracleRequest:
    return OracleRequest(
        system=CROSSREF_SYSTEM_PROMPT,
        user=f"Notes to analyze:\n\n{render_listing(batch)}",
        response_model=CrossRefResponse,
    )


def _normalize(raw: str, fmt: OutputFormat):
    try:
        return normalize_destination(raw, fmt)
    except ValueError:
        return None


def collect_links(
    responses: list[CrossRefResponse],
    known: set[str],
    fmt: OutputFormat = OutputFormat.MARKDOWN,
) -> tuple[dict[str, list[tuple[str, str]]], int]:
    """
    Group references by source file.

    Paths are normalized the way output paths are, so case or a missing
    suffix does not hide a file. Drops self-links, unknown files, and
    repeated pairs (first context wins).

    Returns:
        (links per file, number of dropped references)
    """
    links: dict[str, list[tuple[str, str]]] = {}
    seen: set[tuple[str, str]] = set()
    dropped = 0
    for response in responses:
        for ref in response.references:
            src, dst = _normalize(ref.from_file, fmt), _normalize(ref.to_file, fmt)
            unusable = src is None or dst is None or src == dst
            if unusable or src not in known or dst not in known or (src, dst) in seen:
                dropped += 1
                continue
            seen.add((src, dst))
            links.setdefault(src, []).append((dst, ref.context.strip()))
    return links, dropped


def cross_reference(
    store: MaterializationStore,
    oracle: OracleClient,
    executor: BoundedExecutor,
    *,
    summary_chars: int = 500,
    batch_size: int = 200,
) -> CrossReferenceReport:
    """Run the cross-reference pass against the store."""
    report = CrossReferenceReport()
    summaries = summarize_tree(store, summary_chars)
    if len(summaries) < 2:
        return report

    batches = batch_listing(summaries, batch_size)
    logger.debug("Cross-referencing %d files in %d requests", len(summaries), len(batches))
    tasks = [
        Task(key=i, call=lambda b=batch: oracle.invoke(build_request(b)))
        for i, batch in enumerate(batches)
    ]
    outcomes = executor.run_all(tasks, label="cross-reference")

    responses = []
    for i in range(len(batches)):
        outcome = outcomes[i]
        if outcome.ok:
            responses.append(outcome.result)
        else:
            report.failed_batches += 1
            logger.warning("Cross-reference batch %d failed: %s", i, outcome.error)

    links, report.dropped = collect_links(responses, {s.path for s in summaries}, store.format)
    for path, targets in links.items():
        store.append_annotation(path, render_links(path, targets, store.format))
        logger.debug("Linked %s -> %s", path, ", ".join(t for t, _ in targets))
    report.links = links

    if links:
        logger.info("Added %d cross-references to %d files", report.link_count, len(links))
    else:
        logger.info("No cross-references found")
    return report
