"""
Enhancement pass: fix, complete and answer each segment.

Answered questions always appear as ``[Q: <original question>] <answer>``.
When the oracle leaves the wrapper out, it is added here by prefixing
the oracle's text with the recorded question. A segment whose request
fails keeps its raw text unchanged.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .executor import BoundedExecutor, Task, TaskOutcome
from .oracle import OracleClient, OracleRequest
from .types import OutputFormat, Segment

logger = logging.getLogger(__name__)


_FORMAT_INSTRUCTIONS = {
    OutputFormat.MARKDOWN: """Format: Markdown
- Use proper markdown headers (##, ###) for sections
- Use LaTeX for equations: inline $equation$ or block $$equation$$
- Use bullet points and numbered lists appropriately
- Use code blocks with language hints when showing code
- Use **bold** and *italic* for emphasis""",
    OutputFormat.PLAIN: """Format: Plain text
- Use simple text headers with underlines or caps
- Use ASCII for equations (e.g., x^2 + y^2 = r^2)
- Use simple - or * for bullet points
- Keep formatting minimal but readable""",
}


def enhancement_system_prompt(fmt: OutputFormat) -> str:
    return f"""You are a note enhancement assistant. Your job is to improve and enrich notes while preserving their meaning.

{_FORMAT_INSTRUCTIONS[fmt]}

Enhancement tasks:
1. Fix typos, spelling errors, and grammatical issues
2. Complete equations that are missing or only sketched
3. For any "?" markers (questions the user had):
   - Answer the question or give helpful direction
   - Keep the original question using exactly: "[Q: original question] your answer"
4. Restructure for clarity while preserving all original information

Rules:
- Do NOT add unrelated information
- Do NOT remove important details
- Preserve all links and references from the original
- Output ONLY the enhanced note content, no meta-commentary"""


def question_wrapper(question: str) -> str:
    return f"[Q: {question}]"


def ensure_question_wrappers(text: str, questions: tuple[str, ...]) -> str:
    """
    Make sure every question appears in ``[Q: ...]`` form.

    Missing wrappers are prefixed in question order, so for a single
    question the result starts with ``[Q: <question>] ``.
    """
    missing = [q for q in questions if question_wrapper(q) not in text]
    if not missing:
        return text
    prefix = " ".join(question_wrapper(q) for q in missing)
    return f"{prefix} {text.lstrip()}"


@dataclass
class EnhancementResult:
    """Enhanced text per segment, plus which segments kept their raw text."""
    texts: dict[str, str] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    wrapped: list[str] = field(default_factory=list)  # wrapper added here, not by the oracle

    @property
    def succeeded(self) -> int:
        return len(self.texts) - len(self.failed)


def build_request(segment: Segment, fmt: OutputFormat) -> OracleRequest:
    category = segment.destinations[0].rsplit(".", 1)[0] if segment.destinations else "general"
    user = f"Category: {category}\n\n"
    if segment.questions:
        listed = "\n".join(f"- {q}" for q in segment.questions)
        user += f"Questions to answer:\n{listed}\n\n"
    user += f"Original note segment:\n{segment.raw_text}"
    return OracleRequest(system=enhancement_system_prompt(fmt), user=user)


def enhance(
    segments: list[Segment],
    oracle: OracleClient,
    executor: BoundedExecutor,
    *,
    fmt: OutputFormat = OutputFormat.MARKDOWN,
    on_done: Optional[Callable[[TaskOutcome], None]] = None,
) -> EnhancementResult:
    """
    Run the enhancement pass.

    Sets ``segment.enhanced_text`` on every segment. A segment too long
    for one request fails without being sent and keeps its raw text.
    """
    tasks = [
        Task(key=s.id, call=lambda s=s: oracle.invoke(build_request(s, fmt)))
        for s in segments
    ]
    outcomes = executor.run_all(tasks, label="enhance", on_done=on_done)

    result = EnhancementResult()
    for segment in segments:
        outcome = outcomes[segment.id]
        if outcome.ok:
            text = ensure_question_wrappers(outcome.result, segment.questions)
            if text != outcome.result:
                result.wrapped.append(segment.id)
        else:
            # Never drop content
            text = segment.raw_text
            result.failed.append(segment.id)
        segment.enhanced_text = text
        result.texts[segment.id] = text

    logger.info(
        "Enhanced %d segments (%d kept original text)",
        len(segments) - len(result.failed), len(result.failed),
    )
    return result
