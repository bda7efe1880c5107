import csv
import io
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

import main
from indexer.store import document_count, exists


class MainTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        data = self.root / "data"
        data.mkdir()
        with (data / "pages.csv").open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["title", "url", "body", "state"])
            writer.writerow(["Acme Corp", "http://acme.example", "widgets for sale", "California"])
            writer.writerow(["Globex", "http://globex.example", "gadgets", "Oregon"])

        self.config_path = self.root / "config.yml"
        self.config_path.write_text(
            f"workspace: {self.root}\n"
            "indexer:\n"
            "  build:\n"
            "    corpus_root: data\n"
            "    index_dir: index\n"
            "logs:\n"
            "  log_file: null\n",
            encoding="utf-8",
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, *extra):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main.main(["--config", str(self.config_path), *extra])
        return code, out.getvalue()

    def test_builds_when_index_missing_then_reports_and_queries(self) -> None:
        code, output = self._run()
        self.assertEqual(0, code)
        self.assertIn("INDEX BUILD COMPLETE", output)
        self.assertTrue(exists(self.root / "index"))
        self.assertEqual(2, document_count(self.root / "index"))

        code, output = self._run("--query", "acme")
        self.assertEqual(0, code)
        self.assertIn("Documents: 2", output)
        self.assertIn("MB", output)
        self.assertIn("Acme Corp", output)
        self.assertNotIn("Globex", output)
        # Reporting never re-ingests.
        self.assertEqual(2, document_count(self.root / "index"))

    def test_missing_corpus_fails(self) -> None:
        (self.root / "data" / "pages.csv").unlink()
        (self.root / "data").rmdir()
        code, _ = self._run()
        self.assertEqual(1, code)

    def test_missing_config_fails(self) -> None:
        code = main.main(["--config", str(self.root / "nope.yml")])
        self.assertEqual(1, code)


if __name__ == "__main__":
    unittest.main()
