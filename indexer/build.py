"""
Page Index Builder.

Streams CSV page records into a tantivy index with checkpointed commits:
1. Corpus discovery enumerates the CSV files under a root (or a single file)
2. Each row is mapped to a document using the configured column layout
3. Documents go to the writer; every ``batch_size`` documents are committed

Row-, file- and commit-level failures are logged and counted, never fatal.
Configuration failures (bad corpus root, schema mismatch, unwritable index)
abort the run.

Usage:
    python -m indexer.build --config config.yml
    python -m indexer.build --corpus data/ --output index --layout six_column_with_id
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from config_loader import ConfigError

from .config import IndexerConfig, load_config
from .discovery import DEFAULT_PATTERN, list_files
from .errors import CommitFailure, DocumentRejected, IndexerError
from .records import (
    DEFAULT_MAX_FIELD_SIZE,
    ColumnLayout,
    iter_raw_records,
    map_row,
    set_field_size_limit,
    validate_layout,
)
from .schema import IndexSchema
from .stats import PipelineStats
from .store import DEFAULT_BUFFER_BUDGET_BYTES, format_bytes, open_or_create_store, size_on_disk

logger = logging.getLogger(__name__)


def exception_rate(exceptions: int, processed: int) -> Optional[float]:
    """Percentage of failed rows; None when nothing was processed."""
    if processed == 0:
        return None
    return exceptions / processed * 100.0


def format_exception_rate(rate: Optional[float]) -> str:
    if rate is None:
        return "undefined (no records processed)"
    return f"{rate:.2f}%"


@dataclass
class FileStats:
    """Counters and timings for one source file."""
    path: Path
    processed: int = 0
    added: int = 0
    exceptions: int = 0
    malformed: int = 0
    rejected: int = 0
    commit_failures: int = 0
    lost: int = 0
    batch_seconds: List[float] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def exception_rate(self) -> Optional[float]:
        return exception_rate(self.exceptions, self.processed)

    def as_dict(self) -> Dict[str, object]:
        return {
            "path": str(self.path),
            "processed": self.processed,
            "added": self.added,
            "exceptions": self.exceptions,
            "exception_rate": self.exception_rate,
            "malformed": self.malformed,
            "rejected": self.rejected,
            "commit_failures": self.commit_failures,
            "lost": self.lost,
            "batches": len(self.batch_seconds),
            "slowest_batch_seconds": round(max(self.batch_seconds), 4) if self.batch_seconds else None,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class IngestSummary:
    files: List[FileStats] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    # Documents the writer reports as committed; None for writers that do not track it.
    committed: Optional[int] = None
    # Files indexed concurrently; per-file commit accounting is shared when > 1.
    workers: int = 1

    @property
    def processed(self) -> int:
        return sum(f.processed for f in self.files)

    @property
    def added(self) -> int:
        return sum(f.added for f in self.files)

    @property
    def exceptions(self) -> int:
        return sum(f.exceptions for f in self.files)

    @property
    def lost(self) -> int:
        return sum(f.lost for f in self.files)

    @property
    def files_skipped(self) -> int:
        return sum(1 for f in self.files if f.skipped)

    @property
    def exception_rate(self) -> Optional[float]:
        return exception_rate(self.exceptions, self.processed)

    def as_dict(self) -> Dict[str, object]:
        return {
            "files": len(self.files),
            "files_skipped": self.files_skipped,
            "processed": self.processed,
            "added": self.added,
            "committed": self.committed,
            "workers": self.workers,
            "lost": self.lost,
            "exceptions": self.exceptions,
            "exception_rate": self.exception_rate,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
        }


@dataclass
class _Checkpoint:
    """Per-file batching state: documents handed over since the last commit."""
    count: int = 0
    started: float = field(default_factory=time.perf_counter)

    def reset(self) -> None:
        self.count = 0
        self.started = time.perf_counter()


def _commit(writer, stats: FileStats, checkpoint: _Checkpoint) -> None:
    batch = checkpoint.count
    try:
        writer.commit()
    except CommitFailure as exc:
        stats.commit_failures += 1
        stats.exceptions += 1
        stats.lost += exc.lost
        logger.error("Commit failed for %s (batch of %d): %s", stats.path, batch, exc)
    else:
        elapsed = time.perf_counter() - checkpoint.started
        stats.batch_seconds.append(elapsed)
        rate = batch / elapsed if elapsed > 0 else float(batch)
        logger.info(
            "Committed %d documents from %s (total=%d) in %.2fs (%.1f docs/s)",
            batch, stats.path.name, stats.added, elapsed, rate,
        )
    checkpoint.reset()


def ingest_file(
    path: Path,
    writer,
    column_layout: ColumnLayout,
    batch_size: int,
    *,
    schema: Optional[IndexSchema] = None,
    delimiter: str = ",",
    has_header: bool = True,
    encoding: str = "utf-8",
) -> FileStats:
    """Stream one CSV file into ``writer``; never raises for row/commit failures."""
    schema = schema or IndexSchema.define()
    stats = FileStats(path=path)
    started = time.perf_counter()

    try:
        handle = path.open("r", encoding=encoding, errors="replace", newline="")
    except OSError as exc:
        stats.skipped = True
        stats.error = str(exc)
        stats.elapsed_seconds = time.perf_counter() - started
        logger.error("Skipping %s: %s", path, exc)
        return stats

    logger.info("Indexing %s", path)
    checkpoint = _Checkpoint()
    with handle:
        try:
            for raw in iter_raw_records(handle, delimiter=delimiter, has_header=has_header):
                stats.processed += 1
                if not raw.ok:
                    stats.malformed += 1
                    stats.exceptions += 1
                    logger.warning("Skipping malformed row %s:%d: %s", path, raw.line, raw.error)
                    continue

                document = map_row(raw.values, column_layout, schema)
                try:
                    writer.add(document)
                except DocumentRejected as exc:
                    stats.rejected += 1
                    stats.exceptions += 1
                    logger.warning("Document rejected at %s:%d: %s", path, raw.line, exc)
                    continue

                stats.added += 1
                checkpoint.count += 1
                if checkpoint.count >= batch_size:
                    _commit(writer, stats, checkpoint)
        except OSError as exc:
            stats.error = str(exc)
            logger.error("Read error in %s after %d rows: %s", path, stats.processed, exc)

    # Flush whatever is left, even a partial batch.
    _commit(writer, stats, checkpoint)

    stats.elapsed_seconds = time.perf_counter() - started
    logger.info(
        "Finished %s: processed=%d exceptions=%d (%s) elapsed=%.2fs",
        path.name,
        stats.processed,
        stats.exceptions,
        format_exception_rate(stats.exception_rate),
        stats.elapsed_seconds,
    )
    return stats


def ingest(
    root_path: Union[str, Path],
    schema: IndexSchema,
    writer,
    column_layout: ColumnLayout,
    batch_size: int = 1000,
    *,
    pattern: str = DEFAULT_PATTERN,
    delimiter: str = ",",
    has_header: bool = True,
    encoding: str = "utf-8",
    workers: int = 1,
) -> IngestSummary:
    """Ingest every file discovered under ``root_path`` into ``writer``.

    ``writer`` needs ``add(document)`` raising DocumentRejected and
    ``commit()`` raising CommitFailure. With ``workers > 1`` files are
    processed concurrently and the writer must serialize add/commit itself
    (StoreWriter does).
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise ValueError("batch_size must be a positive integer")
    if workers < 1:
        raise ValueError("workers must be >= 1")
    column_layout = ColumnLayout.parse(column_layout)
    validate_layout(column_layout, schema)
    files = list(list_files(root_path, pattern))

    logger.info(
        "Starting ingestion: root=%s files=%d layout=%s batch_size=%d workers=%d",
        root_path, len(files), column_layout.value, batch_size, workers,
    )

    def run(path: Path) -> FileStats:
        return ingest_file(
            path,
            writer,
            column_layout,
            batch_size,
            schema=schema,
            delimiter=delimiter,
            has_header=has_header,
            encoding=encoding,
        )

    started = time.perf_counter()
    if workers > len(files):
        workers = max(1, len(files))
    if workers == 1:
        results = [run(path) for path in files]
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
            results = list(pool.map(run, files))

    summary = IngestSummary(
        files=results, elapsed_seconds=time.perf_counter() - started, workers=workers
    )
    if workers > 1 and any(f.commit_failures for f in results):
        logger.warning(
            "Commit failures with %d parallel workers: per-file lost counts are approximate, run total lost=%d",
            workers, summary.lost,
        )
    logger.info(
        "Ingestion finished: files=%d skipped=%d processed=%d exceptions=%d (%s) elapsed=%.2fs",
        len(summary.files),
        summary.files_skipped,
        summary.processed,
        summary.exceptions,
        format_exception_rate(summary.exception_rate),
        summary.elapsed_seconds,
    )
    return summary


@dataclass
class BuildOptions:
    corpus_root: Path
    index_dir: Path
    pattern: str = DEFAULT_PATTERN
    layout: ColumnLayout = ColumnLayout.FOUR_COLUMN
    batch_size: int = 1000
    buffer_budget_bytes: int = DEFAULT_BUFFER_BUDGET_BYTES
    workers: int = 1
    delimiter: str = ","
    has_header: bool = True
    encoding: str = "utf-8"
    max_field_size: int = DEFAULT_MAX_FIELD_SIZE
    stats_dir: Optional[Path] = None


class IndexBuilder:
    """High-level coordinator: open (or create) the store and ingest the corpus."""

    def __init__(self, options: BuildOptions, schema: Optional[IndexSchema] = None) -> None:
        self.options = options
        self.schema = schema or IndexSchema.define()

    def build(self) -> IngestSummary:
        opts = self.options
        # Fail on a bad corpus root before an empty index gets created.
        list_files(opts.corpus_root, opts.pattern)
        set_field_size_limit(opts.max_field_size)

        pipeline_stats = PipelineStats("ingest", opts.stats_dir) if opts.stats_dir else None
        store = open_or_create_store(opts.index_dir, self.schema)

        with store.writer(opts.buffer_budget_bytes) as writer:
            summary = ingest(
                opts.corpus_root,
                self.schema,
                writer,
                opts.layout,
                opts.batch_size,
                pattern=opts.pattern,
                delimiter=opts.delimiter,
                has_header=opts.has_header,
                encoding=opts.encoding,
                workers=opts.workers,
            )
            summary.committed = writer.committed_total

        if pipeline_stats is not None:
            self._save_pipeline_stats(pipeline_stats, summary)
        return summary

    def _save_pipeline_stats(self, pipeline_stats: PipelineStats, summary: IngestSummary) -> None:
        opts = self.options
        pipeline_stats.set_config(
            corpus_root=str(opts.corpus_root),
            index_dir=str(opts.index_dir),
            pattern=opts.pattern,
            layout=opts.layout.value,
            batch_size=opts.batch_size,
            workers=opts.workers,
        )
        pipeline_stats.set_inputs(files=len(summary.files), total_items=summary.processed)
        pipeline_stats.set_outputs(**summary.as_dict())
        pipeline_stats.set_nested("outputs", "index_bytes", size_on_disk(opts.index_dir))
        for file_stats in summary.files:
            pipeline_stats.add_file(file_stats.as_dict())
            if file_stats.error:
                pipeline_stats.add_error(file_stats.error, context=str(file_stats.path))
        pipeline_stats.set_nested(
            "performance", "docs_per_second",
            round(summary.added / max(summary.elapsed_seconds, 0.01), 2),
        )
        pipeline_stats.finalize("completed")
        stats_path = pipeline_stats.save()
        logger.info("Stats saved to: %s", stats_path)


def build_index(
    corpus_root: Path,
    index_dir: Path,
    *,
    layout: Union[ColumnLayout, str] = ColumnLayout.FOUR_COLUMN,
    batch_size: int = 1000,
    pattern: str = DEFAULT_PATTERN,
    buffer_budget_bytes: int = DEFAULT_BUFFER_BUDGET_BYTES,
    workers: int = 1,
    delimiter: str = ",",
    has_header: bool = True,
    encoding: str = "utf-8",
    max_field_size: int = DEFAULT_MAX_FIELD_SIZE,
    stats_dir: Optional[Path] = None,
    schema: Optional[IndexSchema] = None,
) -> IngestSummary:
    options = BuildOptions(
        corpus_root=Path(corpus_root),
        index_dir=Path(index_dir),
        pattern=pattern,
        layout=ColumnLayout.parse(layout),
        batch_size=batch_size,
        buffer_budget_bytes=buffer_budget_bytes,
        workers=workers,
        delimiter=delimiter,
        has_header=has_header,
        encoding=encoding,
        max_field_size=max_field_size,
        stats_dir=Path(stats_dir) if stats_dir else None,
    )
    return IndexBuilder(options, schema).build()


def options_from_config(config: IndexerConfig) -> BuildOptions:
    build_cfg = config.build
    return BuildOptions(
        corpus_root=Path(build_cfg.corpus_root),
        index_dir=Path(build_cfg.index_dir),
        pattern=build_cfg.pattern,
        layout=build_cfg.layout,
        batch_size=build_cfg.batch_size,
        buffer_budget_bytes=build_cfg.buffer_budget_bytes,
        workers=build_cfg.workers,
        delimiter=build_cfg.delimiter,
        has_header=build_cfg.has_header,
        encoding=build_cfg.encoding,
        max_field_size=build_cfg.max_field_size,
        stats_dir=Path(build_cfg.stats_dir) if build_cfg.stats_dir else None,
    )


def print_summary(summary: IngestSummary, index_dir: Path) -> None:
    print("\n" + "=" * 60)
    print("INDEX BUILD COMPLETE")
    print("=" * 60)
    for file_stats in summary.files:
        status = "skipped" if file_stats.skipped else f"{file_stats.elapsed_seconds:.2f}s"
        print(
            f"{file_stats.path.name}: processed={file_stats.processed} "
            f"exceptions={file_stats.exceptions} "
            f"({format_exception_rate(file_stats.exception_rate)}) [{status}]"
        )
    if summary.workers > 1 and any(f.commit_failures for f in summary.files):
        print(
            f"Note: {summary.workers} workers share one writer. A failed commit discards every "
            "worker's pending documents but is charged to the file that issued it, so per-file "
            "lost counts and exception rates above are approximate. Totals below are exact."
        )
    print("-" * 60)
    print(f"Files: {len(summary.files)} (skipped: {summary.files_skipped})")
    print(f"Records processed: {summary.processed}")
    print(f"Documents committed: {summary.committed if summary.committed is not None else summary.added - summary.lost}")
    print(f"Documents lost to failed commits: {summary.lost}")
    print(f"Exceptions: {summary.exceptions} ({format_exception_rate(summary.exception_rate)})")
    print(f"Elapsed: {summary.elapsed_seconds:.2f}s")
    print(f"Output directory: {index_dir} ({format_bytes(size_on_disk(index_dir))})")
    print("=" * 60)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Build a tantivy page index from CSV files.")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration file (default: config.yml if present).",
    )
    parser.add_argument(
        "--corpus",
        dest="corpus_root",
        default=None,
        help="CSV file or directory of CSV files (overrides indexer.build.corpus_root).",
    )
    parser.add_argument(
        "--pattern",
        default=None,
        help="Glob pattern for CSV files below the corpus root (overrides config).",
    )
    parser.add_argument(
        "--output",
        dest="index_dir",
        default=None,
        help="Index directory (overrides indexer.build.index_dir).",
    )
    parser.add_argument(
        "--layout",
        choices=[layout.value for layout in ColumnLayout],
        default=None,
        help="Column layout of the CSV files (overrides config).",
    )
    parser.add_argument(
        "--batch-size",
        dest="batch_size",
        type=int,
        default=None,
        help="Documents per checkpoint commit (overrides config).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of files indexed in parallel (overrides config).",
    )
    parser.add_argument(
        "--buffer-mb",
        dest="buffer_mb",
        type=int,
        default=None,
        help="Writer memory budget in megabytes (overrides config).",
    )
    parser.add_argument(
        "--no-header",
        dest="no_header",
        action="store_true",
        help="Treat the first row of each file as data.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    options = options_from_config(config)
    if args.corpus_root:
        options.corpus_root = Path(args.corpus_root).resolve()
    if args.index_dir:
        options.index_dir = Path(args.index_dir).resolve()
    if args.pattern:
        options.pattern = args.pattern
    if args.layout:
        options.layout = ColumnLayout.parse(args.layout)
    if args.batch_size is not None:
        options.batch_size = args.batch_size
    if args.workers is not None:
        options.workers = args.workers
    if args.buffer_mb is not None:
        options.buffer_budget_bytes = args.buffer_mb * 1_000_000
    if args.no_header:
        options.has_header = False

    try:
        summary = IndexBuilder(options).build()
    except (IndexerError, ValueError, OSError) as exc:
        logger.error("Build failed: %s", exc)
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    print_summary(summary, options.index_dir)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
