import tempfile
import unittest
from pathlib import Path

from indexer.discovery import list_files
from indexer.errors import DiscoveryError


class ListFilesTests(unittest.TestCase):
    def test_directory_yields_sorted_matches_only(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "b.csv").write_text("x\n", encoding="utf-8")
            (root / "a.csv").write_text("x\n", encoding="utf-8")
            (root / "notes.txt").write_text("x\n", encoding="utf-8")
            (root / "dir.csv").mkdir()

            files = list(list_files(root))

            self.assertEqual([root / "a.csv", root / "b.csv"], files)

    def test_single_file_is_whole_corpus(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "pages.csv"
            path.write_text("x\n", encoding="utf-8")
            self.assertEqual([path], list(list_files(path)))

    def test_empty_directory_yields_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            self.assertEqual([], list(list_files(tmpdir)))

    def test_custom_pattern_recurses(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            nested = root / "2024" / "q1"
            nested.mkdir(parents=True)
            (nested / "pages.csv").write_text("x\n", encoding="utf-8")
            self.assertEqual([nested / "pages.csv"], list(list_files(root, "**/*.csv")))

    def test_missing_root_fails_immediately(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(DiscoveryError):
                list_files(Path(tmpdir) / "missing")


if __name__ == "__main__":
    unittest.main()
