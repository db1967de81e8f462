"""
Pipeline orchestration.

Each pass takes the previous pass's typed output and runs to completion
before the next starts:

    segment -> categorize -> enhance -> materialize
            -> [reorganize] -> [cross-reference]

All oracle-bound work goes through one BoundedExecutor, so the
concurrency limit holds for the whole run. Cancellation stops new tasks
and ends the run before the next pass.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from .categorizer import CategorizationResult, categorize
from .config import RunConfig
from .crossref import CrossReferenceReport, cross_reference
from .enhancer import EnhancementResult, enhance
from .executor import BoundedExecutor
from .oracle import OracleClient
from .reorganizer import ReorganizationReport, reorganize
from .segmenter import segment_all
from .store import MaterializationReport, MaterializationStore, materialize
from .types import Note

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Counts shown to the user at the end of a run."""
    dry_run: bool = False
    notes: int = 0
    segments: int = 0
    categorized: int = 0
    fell_back: int = 0
    categorize_failed: int = 0
    custom_categories: list[str] = field(default_factory=list)
    enhanced: int = 0
    enhance_failed: int = 0
    questions_wrapped: int = 0
    files: list[str] = field(default_factory=list)
    write_errors: dict[str, str] = field(default_factory=dict)
    moves_applied: list[str] = field(default_factory=list)
    moves_skipped: list[tuple[str, str]] = field(default_factory=list)
    category_suggestions: list[str] = field(default_factory=list)
    links_added: int = 0
    failed_batches: int = 0  # reorganization and cross-reference requests that gave up
    cancelled: bool = False
    # Segment id -> destinations, for the dry-run report
    plan: dict[str, list[str]] = field(default_factory=dict)


class Pipeline:
    """
    One run over a set of notes.

    Args:
        config: Run settings
        oracle: Client for the LLM endpoint
        store: Output tree handle
        show_progress: Draw a progress bar per oracle pass (terminals only)
    """

    def __init__(
        self,
        config: RunConfig,
        oracle: OracleClient,
        store: MaterializationStore,
        *,
        show_progress: bool = False,
    ):
        self.config = config
        self.oracle = oracle
        self.store = store
        self.show_progress = show_progress
        self._cancel = threading.Event()
        self.executor = BoundedExecutor(
            config.concurrency,
            config.max_retries,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
            cancel_event=self._cancel,
        )
        self.summary = RunSummary(dry_run=config.dry_run)

    @classmethod
    def create(
        cls,
        config: RunConfig,
        oracle: OracleClient,
        output_dir: Path,
        *,
        show_progress: bool = False,
    ) -> "Pipeline":
        store = MaterializationStore(output_dir, config.format, dry_run=config.dry_run)
        return cls(config, oracle, store, show_progress=show_progress)

    def cancel(self) -> None:
        """Stop scheduling new tasks; in-flight tasks finish."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _stop_requested(self, next_pass: str) -> bool:
        if self.cancelled:
            logger.warning("Run cancelled before %s", next_pass)
            self.summary.cancelled = True
            return True
        return False

    @contextmanager
    def _progress(self, desc: str, total: int):
        """Yield an on_done callback that advances a progress bar, or None."""
        if not self.show_progress or total == 0:
            yield None
            return
        # disable=None turns the bar off when stderr is not a terminal
        bar = tqdm(total=total, desc=desc, unit="seg", disable=None, leave=False)
        try:
            yield lambda outcome: bar.update(1)
        finally:
            bar.close()

    # -- passes ------------------------------------------------------------

    def _categorize(self, segments) -> CategorizationResult:
        with self._progress("Categorizing", len(segments)) as on_done:
            result = categorize(
                segments, self.oracle, self.executor,
                fmt=self.config.format,
                default_category=self.config.default_category,
                on_done=on_done,
            )
        self.summary.categorized = result.succeeded
        self.summary.fell_back = len(result.fallbacks)
        self.summary.categorize_failed = len(result.failed)
        self.summary.custom_categories = sorted(result.custom_categories)
        self.summary.plan = {sid: list(paths) for sid, paths in result.plan.items()}
        return result

    def _enhance(self, segments) -> Optional[EnhancementResult]:
        if self.config.dry_run:
            logger.info("Dry run: skipping enhancement")
            return None
        with self._progress("Enhancing", len(segments)) as on_done:
            result = enhance(segments, self.oracle, self.executor, fmt=self.config.format, on_done=on_done)
        self.summary.enhanced = result.succeeded
        self.summary.enhance_failed = len(result.failed)
        self.summary.questions_wrapped = len(result.wrapped)
        return result

    def _materialize(self, plan, segments) -> MaterializationReport:
        report = materialize(plan, {s.id: s for s in segments}, self.store, self.executor)
        self.summary.write_errors = dict(report.errors)
        return report

    def _reorganize(self) -> ReorganizationReport:
        report = reorganize(
            self.store, self.oracle, self.executor,
            summary_chars=self.config.summary_chars,
            batch_size=self.config.listing_batch_size,
        )
        self.summary.moves_applied = [str(d) for d in report.applied]
        self.summary.moves_skipped = list(report.skipped)
        self.summary.category_suggestions = list(report.suggestions)
        self.summary.failed_batches += report.failed_batches
        return report

    def _cross_reference(self) -> CrossReferenceReport:
        report = cross_reference(
            self.store, self.oracle, self.executor,
            summary_chars=self.config.summary_chars,
            batch_size=self.config.listing_batch_size,
        )
        self.summary.links_added = report.link_count
        self.summary.failed_batches += report.failed_batches
        return report

    # -- run ---------------------------------------------------------------

    def run(self, notes: list[Note]) -> RunSummary:
        """
        Drive every pass over the given notes.

        Raises:
            KeyboardInterrupt: after in-flight tasks finish
        """
        summary = self.summary
        summary.notes = len(notes)
        segments = segment_all(notes)
        summary.segments = len(segments)
        logger.info("Processing %d segments from %d notes", len(segments), len(notes))
        if not segments:
            return summary

        categorized = self._categorize(segments)
        if self._stop_requested("enhancement"):
            return summary

        self._enhance(segments)
        if self._stop_requested("materialization"):
            return summary

        self._materialize(categorized.plan, segments)

        if self.config.reorganize:
            if self._stop_requested("reorganization"):
                return self._finish()
            self._reorganize()

        if self.config.cross_ref:
            if self._stop_requested("cross-referencing"):
                return self._finish()
            self._cross_reference()

        return self._finish()

    def _finish(self) -> RunSummary:
        self.summary.files = self.store.list_files()
        if self.cancelled:
            self.summary.cancelled = True
        return self.summary
