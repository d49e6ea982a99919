from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from sizetree.fs.filtering import IgnoreMatcher, relative_posix


class IgnoreMatcherTests(unittest.TestCase):
    def test_without_rules_nothing_is_ignored(self) -> None:
        matcher = IgnoreMatcher(None)
        self.assertTrue(matcher.empty)
        self.assertFalse(matcher.matches("node_modules", is_dir=True))
        self.assertFalse(matcher.matches("a/b.txt"))

    def test_directory_only_rule(self) -> None:
        matcher = IgnoreMatcher("node_modules/\n")
        self.assertTrue(matcher.matches("node_modules", is_dir=True))
        self.assertTrue(matcher.matches("packages/web/node_modules", is_dir=True))
        self.assertFalse(matcher.matches("node_modules", is_dir=False))

    def test_negation_and_later_rules_win(self) -> None:
        matcher = IgnoreMatcher("*.log\n!keep.log\nbuild/\n!build/\n")
        self.assertTrue(matcher.matches("debug.log"))
        self.assertFalse(matcher.matches("keep.log"))
        self.assertFalse(matcher.matches("build", is_dir=True))

    def test_double_star_spans_segments(self) -> None:
        matcher = IgnoreMatcher("docs/**/generated/\n")
        self.assertTrue(matcher.matches("docs/a/b/generated", is_dir=True))
        self.assertTrue(matcher.matches("docs/generated", is_dir=True))
        self.assertFalse(matcher.matches("src/generated", is_dir=True))

    def test_comments_and_blank_lines_are_skipped(self) -> None:
        matcher = IgnoreMatcher("# cache\n\n   \n.cache/\n")
        self.assertEqual(matcher.patterns, [".cache/"])

    def test_root_path_never_matches(self) -> None:
        matcher = IgnoreMatcher("*\n")
        self.assertFalse(matcher.matches("", is_dir=True))

    def test_from_root_reads_rule_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            self.assertTrue(IgnoreMatcher.from_root(root).empty)

            (root / ".gitignore").write_text("dist/\n", encoding="utf-8")
            matcher = IgnoreMatcher.from_root(root, extra_patterns=["*.tmp"])

        self.assertTrue(matcher.matches("dist", is_dir=True))
        self.assertTrue(matcher.matches("x.tmp"))

    def test_relative_posix(self) -> None:
        self.assertEqual(relative_posix("/r", "/r"), "")
        self.assertEqual(relative_posix("/r/a/b", "/r"), "a/b")


if __name__ == "__main__":
    unittest.main()
