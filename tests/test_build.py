import csv
import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

from indexer.build import (
    FileStats,
    IngestSummary,
    build_index,
    exception_rate,
    format_exception_rate,
    ingest,
    ingest_file,
    print_summary,
)
from indexer.errors import CommitFailure, DiscoveryError, DocumentRejected
from indexer.records import ColumnLayout
from indexer.schema import IndexSchema
from indexer.store import document_count, exists

HEADER = ["title", "url", "body", "state"]


def write_csv(path: Path, rows, header=HEADER) -> Path:
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        if header:
            writer.writerow(header)
        writer.writerows(rows)
    return path


def page_rows(count: int, prefix: str = "Page"):
    return [
        [f"{prefix} {i}", f"http://example.com/{prefix.lower()}/{i}", f"body text number {i}", "Ohio"]
        for i in range(count)
    ]


class RecordingWriter:
    """In-memory writer; ``fail_commits`` lists 1-based commit calls that fail."""

    def __init__(self, fail_commits=(), reject_titles=()) -> None:
        self.fail_commits = set(fail_commits)
        self.reject_titles = set(reject_titles)
        self.pending = []
        self.committed = []
        self.commit_calls = 0

    def add(self, document) -> None:
        if document["title"] in self.reject_titles:
            raise DocumentRejected("rejected by test")
        self.pending.append(document)

    def commit(self) -> int:
        self.commit_calls += 1
        batch, self.pending = self.pending, []
        if self.commit_calls in self.fail_commits:
            raise CommitFailure("simulated", lost=len(batch))
        self.committed.extend(batch)
        return len(batch)


class ExceptionRateTests(unittest.TestCase):
    def test_undefined_when_nothing_processed(self) -> None:
        self.assertIsNone(exception_rate(0, 0))
        self.assertIn("undefined", format_exception_rate(None))

    def test_percentage(self) -> None:
        self.assertAlmostEqual(25.0, exception_rate(1, 4))
        self.assertEqual("25.00%", format_exception_rate(25.0))


class IngestFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.schema = IndexSchema.define()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_commits_every_batch_and_flushes_remainder(self) -> None:
        path = write_csv(self.root / "pages.csv", page_rows(5))
        writer = RecordingWriter()

        stats = ingest_file(path, writer, ColumnLayout.FOUR_COLUMN, 2, schema=self.schema)

        self.assertEqual(5, stats.processed)
        self.assertEqual(5, stats.added)
        self.assertEqual(0, stats.exceptions)
        self.assertEqual(3, writer.commit_calls)
        self.assertEqual(5, len(writer.committed))
        self.assertEqual(3, len(stats.batch_seconds))

    def test_commit_failure_loses_batch_and_continues(self) -> None:
        path = write_csv(self.root / "pages.csv", page_rows(5))
        writer = RecordingWriter(fail_commits={2})

        stats = ingest_file(path, writer, ColumnLayout.FOUR_COLUMN, 2, schema=self.schema)

        self.assertEqual(5, stats.processed)
        self.assertEqual(1, stats.commit_failures)
        self.assertEqual(1, stats.exceptions)
        self.assertEqual(2, stats.lost)
        self.assertEqual(3, len(writer.committed))
        self.assertEqual(stats.added - stats.lost, len(writer.committed))
        self.assertEqual(["Page 0", "Page 1", "Page 4"], [d["title"] for d in writer.committed])

    def test_malformed_and_rejected_rows_are_counted(self) -> None:
        path = self.root / "pages.csv"
        path.write_text(
            'title,url,body,state\n'
            'Good,u,b,s\n'
            '"Broken"tail,u,b,s\n'
            'Refused,u,b,s\n'
            'Also good,u,b,s\n',
            encoding="utf-8",
        )
        writer = RecordingWriter(reject_titles={"Refused"})

        stats = ingest_file(path, writer, ColumnLayout.FOUR_COLUMN, 1000, schema=self.schema)

        self.assertEqual(4, stats.processed)
        self.assertEqual(2, stats.exceptions)
        self.assertEqual(1, stats.malformed)
        self.assertEqual(1, stats.rejected)
        self.assertAlmostEqual(50.0, stats.exception_rate)
        self.assertEqual(["Good", "Also good"], [d["title"] for d in writer.committed])

    def test_unclosed_quote_does_not_swallow_following_rows(self) -> None:
        path = self.root / "pages.csv"
        path.write_text(
            'title,url,body,state\nA,u,b,s\n"Broken,u,b,s\nC,u,b,s\nD,u,b,s\nE,u,b,s\n',
            encoding="utf-8",
        )
        writer = RecordingWriter()

        stats = ingest_file(path, writer, ColumnLayout.FOUR_COLUMN, 1000, schema=self.schema)

        self.assertEqual(5, stats.processed)
        self.assertEqual(1, stats.malformed)
        self.assertAlmostEqual(20.0, stats.exception_rate)
        self.assertEqual(["A", "C", "D", "E"], [d["title"] for d in writer.committed])

    def test_unopenable_file_is_skipped(self) -> None:
        writer = RecordingWriter()
        stats = ingest_file(self.root / "gone.csv", writer, ColumnLayout.FOUR_COLUMN, 10)
        self.assertTrue(stats.skipped)
        self.assertEqual(0, stats.processed)
        self.assertIsNone(stats.exception_rate)
        self.assertEqual(0, writer.commit_calls)

    def test_header_only_file(self) -> None:
        path = write_csv(self.root / "pages.csv", [])
        writer = RecordingWriter()
        stats = ingest_file(path, writer, ColumnLayout.FOUR_COLUMN, 10, schema=self.schema)
        self.assertEqual(0, stats.processed)
        self.assertIsNone(stats.exception_rate)


class IngestTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.schema = IndexSchema.define()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_empty_corpus(self) -> None:
        summary = ingest(self.root, self.schema, RecordingWriter(), ColumnLayout.FOUR_COLUMN)
        self.assertEqual([], summary.files)
        self.assertEqual(0, summary.processed)
        self.assertIsNone(summary.exception_rate)

    def test_rejects_invalid_batch_size(self) -> None:
        for bad in (0, -1, True, 2.5):
            with self.assertRaises(ValueError):
                ingest(self.root, self.schema, RecordingWriter(), ColumnLayout.FOUR_COLUMN, bad)

    def test_missing_root(self) -> None:
        with self.assertRaises(DiscoveryError):
            ingest(self.root / "missing", self.schema, RecordingWriter(), ColumnLayout.FOUR_COLUMN)

    def test_summary_aggregates_files(self) -> None:
        write_csv(self.root / "a.csv", page_rows(3, "A"))
        write_csv(self.root / "b.csv", page_rows(4, "B"))
        writer = RecordingWriter()

        summary = ingest(self.root, self.schema, writer, "four_column", batch_size=2)

        self.assertEqual(2, len(summary.files))
        self.assertEqual(7, summary.processed)
        self.assertEqual(7, len(writer.committed))
        self.assertEqual(0.0, summary.exception_rate)

    def test_six_column_layout(self) -> None:
        rows = [["0", "Acme", "http://acme.example", "widgets", "id-1", "Texas"]]
        write_csv(self.root / "pages.csv", rows, header=["", "title", "url", "body", "id", "state"])
        writer = RecordingWriter()

        ingest(self.root, self.schema, writer, ColumnLayout.SIX_COLUMN_WITH_ID)

        self.assertEqual(
            [{"title": "Acme", "url": "http://acme.example", "body": "widgets", "state": "Texas"}],
            writer.committed,
        )


class BuildIndexTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.corpus = self.root / "data"
        self.corpus.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_committed_count_matches_engine(self) -> None:
        write_csv(self.corpus / "a.csv", page_rows(7, "A"))
        (self.corpus / "b.csv").write_text(
            'title,url,body,state\nOk,u,b,s\n"Bad"x,u,b,s\nShort\n', encoding="utf-8"
        )

        summary = build_index(self.corpus, self.root / "index", batch_size=3)

        self.assertEqual(10, summary.processed)
        self.assertEqual(1, summary.exceptions)
        self.assertEqual(9, summary.committed)
        self.assertEqual(summary.added - summary.lost, document_count(self.root / "index"))

    def test_batch_size_does_not_change_result(self) -> None:
        write_csv(self.corpus / "pages.csv", page_rows(25))

        small = build_index(self.corpus, self.root / "small", batch_size=1)
        default = build_index(self.corpus, self.root / "default")

        self.assertEqual(25, document_count(self.root / "small"))
        self.assertEqual(document_count(self.root / "small"), document_count(self.root / "default"))
        self.assertEqual(small.committed, default.committed)

    def test_parallel_workers(self) -> None:
        for name in ("a", "b", "c"):
            write_csv(self.corpus / f"{name}.csv", page_rows(10, name.upper()))

        summary = build_index(self.corpus, self.root / "index", batch_size=4, workers=3)

        self.assertEqual(30, summary.committed)
        self.assertEqual(30, document_count(self.root / "index"))

    def test_missing_corpus_creates_no_index(self) -> None:
        with self.assertRaises(DiscoveryError):
            build_index(self.root / "missing", self.root / "index")
        self.assertFalse(exists(self.root / "index"))

    def test_second_run_appends(self) -> None:
        write_csv(self.corpus / "pages.csv", page_rows(4))
        build_index(self.corpus, self.root / "index")
        build_index(self.corpus, self.root / "index")
        self.assertEqual(8, document_count(self.root / "index"))

    def test_stats_saved(self) -> None:
        write_csv(self.corpus / "pages.csv", page_rows(3))
        stats_dir = self.root / "stats"

        build_index(self.corpus, self.root / "index", stats_dir=stats_dir)

        data = json.loads((stats_dir / "ingest.json").read_text(encoding="utf-8"))
        self.assertEqual("completed", data["status"])
        self.assertEqual(3, data["outputs"]["processed"])
        self.assertEqual(1, len(data["files"]))
        history = list((stats_dir / "history").glob("ingest_*.json"))
        self.assertEqual(1, len(history))


if __name__ == "__main__":
    unittest.main()


class PrintSummaryTests(unittest.TestCase):
    def _render(self, summary) -> str:
        with tempfile.TemporaryDirectory() as tmpdir:
            out = io.StringIO()
            with redirect_stdout(out):
                print_summary(summary, Path(tmpdir))
            return out.getvalue()

    def _failed_file(self) -> FileStats:
        return FileStats(path=Path("a.csv"), processed=4, added=4, exceptions=1, commit_failures=1, lost=3)

    def test_parallel_commit_failure_flags_per_file_counts(self) -> None:
        summary = IngestSummary(files=[self._failed_file(), FileStats(path=Path("b.csv"))], workers=2)
        output = self._render(summary)
        self.assertIn("approximate", output)
        self.assertIn("Documents lost to failed commits: 3", output)

    def test_sequential_run_has_no_caveat(self) -> None:
        output = self._render(IngestSummary(files=[self._failed_file()]))
        self.assertNotIn("approximate", output)

    def test_workers_clamped_to_file_count(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            write_csv(Path(tmpdir) / "pages.csv", page_rows(2))
            summary = ingest(tmpdir, IndexSchema.define(), RecordingWriter(), ColumnLayout.FOUR_COLUMN, workers=4)
        self.assertEqual(1, summary.workers)
