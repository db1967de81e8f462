"""
Output tree: the MaterializationStore and the Materializer.

The store is the only writer to the output directory. Appends to one
file are serialized by a per-file lock and written with a single
``write`` call, so segments bound for the same file never interleave;
different files are written concurrently. In dry-run mode the store
keeps file contents in memory and never touches the disk, which lets the
later passes plan against the same view.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConflictingWriteError
from .formatting import render_append, render_block, separator
from .types import OutputFile, OutputFormat, PlacementPlan, Segment

logger = logging.getLogger(__name__)


class MaterializationStore:
    """
    Handle on the output tree, passed to every pass that reads or writes it.

    Args:
        root: Output directory
        fmt: Serialization style for separators
        dry_run: Record writes in memory only
    """

    def __init__(self, root: Path, fmt: OutputFormat = OutputFormat.MARKDOWN, *, dry_run: bool = False):
        self.root = Path(root)
        self.format = fmt
        self.dry_run = dry_run
        self._files: dict[str, OutputFile] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # -- helpers -----------------------------------------------------------

    def _lock_for(self, path: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    def _disk_path(self, path: str) -> Path:
        full = (self.root / path).resolve()
        root = self.root.resolve()
        if root != full and root not in full.parents:
            raise ValueError(f"Path escapes output directory: {path}")
        return full

    def _record(self, path: str) -> OutputFile:
        with self._registry_lock:
            record = self._files.get(path)
            if record is None:
                record = self._files[path] = OutputFile(path=path)
            return record

    def _append_raw(self, path: str, chunk: str) -> None:
        full = self._disk_path(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        with open(full, "a", encoding="utf-8") as f:
            f.write(chunk)

    def _write_atomic(self, path: str, content: str) -> None:
        full = self._disk_path(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=full.parent, prefix=".notex-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, full)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _prune_empty_dirs(self, start: Path) -> None:
        root = self.root.resolve()
        current = start
        while current != root and root in current.parents:
            try:
                current.rmdir()
            except OSError:
                return
            current = current.parent

    # -- reads -------------------------------------------------------------

    def exists(self, path: str) -> bool:
        if path in self._files:
            return True
        return not self.dry_run and self._disk_path(path).is_file()

    def read(self, path: str) -> str:
        """Current content of an output file."""
        if self.dry_run:
            record = self._files.get(path)
            if record is None:
                raise FileNotFoundError(path)
            return record.content
        return self._disk_path(path).read_text(encoding="utf-8")

    def list_files(self) -> list[str]:
        """Paths of all files written this run, sorted."""
        with self._registry_lock:
            return sorted(self._files)

    # -- writes ------------------------------------------------------------

    def append_segment(self, path: str, segment_id: str, text: str) -> str:
        """
        Append one segment to a file, creating it and its parents if needed.

        Returns:
            The exact text appended
        """
        full = self._disk_path(path)
        lock = self._lock_for(path)
        with lock:
            record = self._record(path)
            if self.dry_run:
                first = record.is_empty
            else:
                # A file left by an earlier run is appended to, never replaced
                first = record.is_empty and (not full.exists() or full.stat().st_size == 0)
            chunk = render_append(text, self.format, first)
            if not self.dry_run:
                self._append_raw(path, chunk)
            record.content += chunk
            record.segment_ids.append(segment_id)
            return chunk

    def append_annotation(self, path: str, block: str) -> None:
        """Append an annotation block to an existing file."""
        lock = self._lock_for(path)
        with lock:
            if not self.exists(path):
                raise FileNotFoundError(path)
            record = self._record(path)
            if not self.dry_run:
                self._append_raw(path, block)
            record.content += block
            record.annotations.append(block)

    def move(self, source: str, dest: str) -> None:
        """
        Rename an output file.

        Raises:
            FileNotFoundError: source does not exist
            ConflictingWriteError: dest already exists
        """
        if source == dest:
            return
        first, second = sorted((source, dest))
        with self._lock_for(first), self._lock_for(second):
            if not self.exists(source):
                raise FileNotFoundError(source)
            if self.exists(dest):
                raise ConflictingWriteError(f"{dest} already exists")
            if not self.dry_run:
                src_full = self._disk_path(source)
                dst_full = self._disk_path(dest)
                dst_full.parent.mkdir(parents=True, exist_ok=True)
                os.replace(src_full, dst_full)
                self._prune_empty_dirs(src_full.parent)
            with self._registry_lock:
                record = self._files.pop(source, None) or OutputFile(path=source)
                record.path = dest
                self._files[dest] = record

    def merge(self, sources: list[str], dest: str) -> None:
        """
        Concatenate sources (in order) into dest and remove the other sources.

        dest may be one of the sources.

        Raises:
            ValueError: no sources, or duplicates
            FileNotFoundError: a source does not exist
            ConflictingWriteError: dest exists and is not a source
        """
        if not sources:
            raise ValueError("Merge needs at least one source")
        if len(set(sources)) != len(sources):
            raise ValueError("Merge sources contain duplicates")
        involved = sorted(set(sources) | {dest})
        locks = [self._lock_for(p) for p in involved]
        for lock in locks:
            lock.acquire()
        try:
            for src in sources:
                if not self.exists(src):
                    raise FileNotFoundError(src)
            if dest not in sources and self.exists(dest):
                raise ConflictingWriteError(f"{dest} already exists")

            contents = [self.read(src).strip() for src in sources]
            merged = separator(self.format).join(
                render_block(c) for c in contents if c
            )

            if not self.dry_run:
                self._write_atomic(dest, merged)
                for src in sources:
                    if src != dest:
                        src_full = self._disk_path(src)
                        src_full.unlink()
                        self._prune_empty_dirs(src_full.parent)

            with self._registry_lock:
                records = [self._files.pop(src, None) or OutputFile(path=src) for src in sources]
                combined = OutputFile(path=dest, content=merged)
                for record in records:
                    combined.segment_ids.extend(record.segment_ids)
                    combined.annotations.extend(record.annotations)
                self._files[dest] = combined
        finally:
            for lock in reversed(locks):
                lock.release()


# -----------------------------------------------------------------------------
# Materializer
# -----------------------------------------------------------------------------

@dataclass
class MaterializationReport:
    """What was (or, in dry-run, would have been) written."""
    dry_run: bool
    writes: list[tuple[str, str]] = field(default_factory=list)  # (path, segment id)
    files: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)  # path -> error


def materialize(
    plan: PlacementPlan,
    segments: dict[str, Segment],
    store: MaterializationStore,
    executor,
) -> MaterializationReport:
    """
    Apply a placement plan to the store.

    Every destination of a segment receives the same enhanced text. Files
    are filled concurrently through the executor; within a file,
    segments are appended in plan order.

    Args:
        plan: Segment id -> destination paths
        segments: Segment id -> Segment (enhanced_text is written)
        store: Output tree handle
        executor: BoundedExecutor used for file-level concurrency
    """
    from .executor import Task

    by_file: dict[str, list[str]] = {}
    for segment_id, paths in plan.items():
        for path in paths:
            by_file.setdefault(path, []).append(segment_id)

    report = MaterializationReport(dry_run=store.dry_run)

    def write_file(path: str, segment_ids: list[str]) -> list[tuple[str, str]]:
        written = []
        for segment_id in segment_ids:
            store.append_segment(path, segment_id, segments[segment_id].enhanced_text)
            written.append((path, segment_id))
        return written

    tasks = [
        Task(key=path, call=lambda p=path, ids=ids: write_file(p, ids))
        for path, ids in by_file.items()
    ]
    outcomes = executor.run_all(tasks, label="materialize")

    for path, outcome in outcomes.items():
        if outcome.ok:
            report.writes.extend(outcome.result)
            report.files.append(path)
        else:
            report.errors[path] = str(outcome.error)
            logger.error("Failed to write %s: %s", path, outcome.error)

    if store.dry_run:
        logger.info("Dry run: %d writes planned across %d files", len(report.writes), len(report.files))
    else:
        logger.info("Wrote %d segments to %d files", len(report.writes), len(report.files))
    return report
