"""
Categorization pass: decide where each segment goes.

The oracle names a category (from an advisory taxonomy, or a new one),
an optional subcategory or explicit path, and optional extra paths for
cross-filing. Syntactically valid custom categories are accepted as-is.
Segments whose request fails, or whose answer is not a usable path, are
placed under the default category; that is recorded but never fatal.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .executor import BoundedExecutor, Task, TaskOutcome
from .oracle import OracleClient, OracleRequest
from .types import (
    CATEGORIES,
    OutputFormat,
    PlacementPlan,
    Segment,
    destination_for,
    normalize_component,
    normalize_destination,
)

logger = logging.getLogger(__name__)


CATEGORIZATION_SYSTEM_PROMPT = f"""You are a note categorization assistant. Given one segment of a note, decide where it should be filed.

Known categories (prefer these exact values):
{", ".join(CATEGORIES)}

You may propose a new category if none fits. Use lowercase words joined by underscores.

Return JSON in this exact format:
{{
  "category": "mathematics",
  "subcategory": "topology",
  "path": "mathematics/topology.md",
  "cross_file_to": []
}}

Rules:
- "subcategory" is optional and narrows the category (e.g. "topology" for mathematics)
- "path" is optional; it must start with the category
- "cross_file_to" lists extra paths when the content clearly fits more than one subject
- Preserve any "?" markers in mind: they indicate questions the user had"""


class CategorizationResponse(BaseModel):
    """Expected oracle answer for one segment."""
    category: str = Field(min_length=1)
    subcategory: Optional[str] = None
    path: Optional[str] = None
    paths: list[str] = Field(default_factory=list)
    cross_file_to: list[str] = Field(default_factory=list)


@dataclass
class CategorizationResult:
    """
    Output of the categorization pass.

    Attributes:
        plan: Destinations per segment, in discovery order
        fallbacks: Segment id -> reason it went to the default category
        failed: Segment ids whose oracle task failed outright
        custom_categories: Categories outside the known taxonomy
    """
    plan: PlacementPlan
    fallbacks: dict[str, str] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    custom_categories: set[str] = field(default_factory=set)

    @property
    def succeeded(self) -> int:
        return len(self.plan) - len(self.fallbacks)


def build_request(segment: Segment) -> OracleRequest:
    user = (
        f"Original file path: {segment.note_id}\n\n"
        f"Note segment:\n{segment.raw_text}"
    )
    return OracleRequest(
        system=CATEGORIZATION_SYSTEM_PROMPT,
        user=user,
        response_model=CategorizationResponse,
        max_tokens=512,
        # Placement only needs the opening of a very long segment
        truncate=True,
    )


def fallback_destination(segment: Segment, default_category: str, fmt: OutputFormat) -> str:
    """Default placement: ``<default category>/<source note stem>``."""
    return destination_for(default_category, segment.source_stem, fmt)


def resolve_destinations(response: CategorizationResponse, fmt: OutputFormat) -> list[str]:
    """
    Turn an oracle answer into an ordered, duplicate-free list of paths.

    A valid category with an unusable subcategory or path lands in
    ``<category>/general``.

    Raises:
        ValueError: if the category itself is not a valid path component
    """
    category = normalize_component(response.category)
    explicit = response.path or (response.paths[0] if response.paths else None)
    try:
        if explicit:
            primary = normalize_destination(explicit, fmt)
            if primary.split("/", 1)[0] != category:
                # Path must be rooted in the category the oracle named
                primary = normalize_destination(f"{category}/{explicit}", fmt)
        else:
            primary = destination_for(category, response.subcategory, fmt)
    except ValueError as e:
        primary = destination_for(category, None, fmt)
        logger.warning("Using %s instead of the suggested location: %s", primary, e)

    destinations = [primary]
    extras = list(response.paths[1:]) + list(response.cross_file_to)
    for raw in extras:
        try:
            path = normalize_destination(raw, fmt)
        except ValueError as e:
            logger.debug("Dropping cross-file destination %r: %s", raw, e)
            continue
        if path not in destinations:
            destinations.append(path)
    return destinations


def categorize(
    segments: list[Segment],
    oracle: OracleClient,
    executor: BoundedExecutor,
    *,
    fmt: OutputFormat = OutputFormat.MARKDOWN,
    default_category: str = "uncategorized",
    on_done: Optional[Callable[[TaskOutcome], None]] = None,
) -> CategorizationResult:
    """
    Run the categorization pass.

    Sets ``segment.destinations`` on every segment and returns the plan.
    on_done is called as each segment's request finishes.
    """
    tasks = [
        Task(key=s.id, call=lambda s=s: oracle.invoke(build_request(s)))
        for s in segments
    ]
    outcomes = executor.run_all(tasks, label="categorize", on_done=on_done)

    result = CategorizationResult(plan=PlacementPlan())
    for segment in segments:
        outcome = outcomes[segment.id]
        destinations: list[str] = []
        if outcome.ok:
            response: CategorizationResponse = outcome.result
            try:
                destinations = resolve_destinations(response, fmt)
            except ValueError as e:
                result.fallbacks[segment.id] = f"invalid destination: {e}"
                logger.warning("Segment %s: %s; using %s", segment.id, e, default_category)
            else:
                category = destinations[0].split("/", 1)[0]
                if category not in CATEGORIES:
                    result.custom_categories.add(category)
        else:
            result.failed.append(segment.id)
            result.fallbacks[segment.id] = f"oracle failure: {outcome.error}"

        if not destinations:
            destinations = [fallback_destination(segment, default_category, fmt)]

        result.plan.add(segment.id, destinations)
        segment.destinations = destinations
        logger.debug("%s -> %s", segment.id, ", ".join(destinations))

    if result.custom_categories:
        logger.info("New categories: %s", ", ".join(sorted(result.custom_categories)))
    logger.info(
        "Categorized %d segments (%d fell back to %s)",
        len(segments), len(result.fallbacks), default_category,
    )
    return result
