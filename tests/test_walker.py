from __future__ import annotations

import os
import tempfile
import threading
import time
import unittest
from collections.abc import Iterable
from pathlib import Path

from sizetree.config.models import ScanRequest
from sizetree.errors import NotFoundError
from sizetree.fs.walker import TreeWalker
from sizetree.tree.models import DirectoryNode, ScanProgress, iter_nodes, size_mismatches, tree_depth


def _write(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


def _by_name(node: DirectoryNode) -> dict[str, DirectoryNode]:
    return {child.name: child for child in node.children}


class _BlockingWalker(TreeWalker):
    def __init__(self, *, blocked_stat: Iterable[str] = (), blocked_list: Iterable[str] = (), **kwargs) -> None:
        super().__init__(**kwargs)
        self.blocked_stat = set(blocked_stat)
        self.blocked_list = set(blocked_list)

    def _stat(self, path: str) -> os.stat_result:
        if path in self.blocked_stat:
            raise PermissionError(13, "Permission denied", path)
        return super()._stat(path)

    def _list(self, path: str) -> list[str]:
        if path in self.blocked_list:
            raise PermissionError(13, "Permission denied", path)
        return super()._list(path)


class _CountingWalker(TreeWalker):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._lock = threading.Lock()
        self.running = 0
        self.peak = 0

    def _stat(self, path: str) -> os.stat_result:
        with self._lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
        try:
            time.sleep(0.002)
            return super()._stat(path)
        finally:
            with self._lock:
                self.running -= 1


class TreeWalkerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "root"
        self.root.mkdir()
        _write(self.root / "a.txt", 100)
        _write(self.root / "b" / "c.txt", 200)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def request(self, **kwargs) -> ScanRequest:
        return ScanRequest(root_path=str(self.root), **kwargs)

    async def test_scans_small_tree(self) -> None:
        result = await TreeWalker().scan(self.request(max_depth=10))
        tree = result.root

        self.assertEqual(result.strategy, "portable")
        self.assertEqual(result.skipped, [])
        self.assertEqual(tree.name, "root")
        self.assertEqual(tree.path, str(self.root))
        self.assertTrue(tree.is_directory)
        self.assertEqual(tree.size, 300)

        children = _by_name(tree)
        self.assertEqual(set(children), {"a.txt", "b"})
        self.assertEqual(children["a.txt"].size, 100)
        self.assertFalse(children["a.txt"].is_directory)
        self.assertEqual(children["a.txt"].children, [])
        self.assertEqual(children["b"].size, 200)
        self.assertTrue(children["b"].is_directory)
        self.assertEqual([(c.name, c.size, c.is_directory) for c in children["b"].children], [("c.txt", 200, False)])
        self.assertEqual(children["b"].children[0].path, os.path.join(str(self.root), "b", "c.txt"))

    async def test_depth_limit_keeps_full_size(self) -> None:
        result = await TreeWalker().scan(self.request(max_depth=1))
        b = _by_name(result.root)["b"]

        self.assertTrue(b.is_directory)
        self.assertEqual(b.children, [])
        self.assertEqual(b.size, 200)
        self.assertEqual(result.root.size, 300)

    async def test_no_node_deeper_than_max_depth(self) -> None:
        _write(self.root / "d1" / "d2" / "d3" / "d4" / "deep.bin", 64)

        result = await TreeWalker().scan(self.request(max_depth=2))

        self.assertLessEqual(tree_depth(result.root), 2)
        self.assertEqual(result.root.size, 364)
        d2 = _by_name(_by_name(result.root)["d1"])["d2"]
        self.assertEqual(d2.children, [])
        self.assertEqual(d2.size, 64)

    async def test_ignored_directory_is_opaque_but_sized(self) -> None:
        rules = "node_modules/\n"
        (self.root / ".gitignore").write_text(rules, encoding="utf-8")
        _write(self.root / "node_modules" / "pkg" / "file.txt", 123)
        _write(self.root / "node_modules" / "pkg" / "lib" / "more.js", 77)

        result = await TreeWalker().scan(self.request())
        node_modules = _by_name(result.root)["node_modules"]

        self.assertTrue(node_modules.is_directory)
        self.assertEqual(node_modules.children, [])
        self.assertEqual(node_modules.size, 200)
        self.assertEqual(result.root.size, 300 + 200 + len(rules))

    async def test_ignored_files_still_count(self) -> None:
        (self.root / ".gitignore").write_text("*.txt\n", encoding="utf-8")

        result = await TreeWalker().scan(self.request())

        self.assertIn("a.txt", _by_name(result.root))
        self.assertEqual(result.root.size, 300 + len("*.txt\n"))

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks unavailable")
    async def test_symlink_is_zero_size_leaf(self) -> None:
        os.symlink(self.root / "b", self.root / "link")

        result = await TreeWalker().scan(self.request())
        link = _by_name(result.root)["link"]

        self.assertFalse(link.is_directory)
        self.assertEqual(link.size, 0)
        self.assertEqual(result.root.size, 300)

    async def test_unstattable_entry_is_skipped(self) -> None:
        blocked = os.path.join(str(self.root), "b", "c.txt")
        walker = _BlockingWalker(blocked_stat={blocked})

        result = await walker.scan(self.request())
        b = _by_name(result.root)["b"]

        self.assertEqual(b.children, [])
        self.assertEqual(b.size, 0)
        self.assertEqual(result.root.size, 100)
        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(result.skipped[0].path, blocked)
        self.assertEqual(result.skipped[0].operation, "stat")

    async def test_unreadable_directory_is_excluded(self) -> None:
        blocked = os.path.join(str(self.root), "b")
        walker = _BlockingWalker(blocked_list={blocked})

        result = await walker.scan(self.request())

        self.assertEqual(set(_by_name(result.root)), {"a.txt"})
        self.assertEqual(result.root.size, 100)
        self.assertEqual([(s.path, s.operation) for s in result.skipped], [(blocked, "readdir")])

    async def test_unreadable_directory_at_depth_limit_is_excluded(self) -> None:
        blocked = os.path.join(str(self.root), "b")
        walker = _BlockingWalker(blocked_list={blocked})

        result = await walker.scan(self.request(max_depth=1))

        self.assertEqual(set(_by_name(result.root)), {"a.txt"})
        self.assertEqual(result.root.size, 100)
        self.assertEqual([(s.path, s.operation) for s in result.skipped], [(blocked, "readdir")])

    async def test_unreadable_ignored_directory_is_excluded(self) -> None:
        (self.root / ".gitignore").write_text("b/\n", encoding="utf-8")
        blocked = os.path.join(str(self.root), "b")
        walker = _BlockingWalker(blocked_list={blocked})

        result = await walker.scan(self.request())

        self.assertNotIn("b", _by_name(result.root))
        self.assertEqual([(s.path, s.operation) for s in result.skipped], [(blocked, "readdir")])

    async def test_unreadable_descendant_of_truncated_directory_is_skipped(self) -> None:
        _write(self.root / "b" / "inner" / "x.bin", 40)
        blocked = os.path.join(str(self.root), "b", "inner")
        walker = _BlockingWalker(blocked_list={blocked})

        result = await walker.scan(self.request(max_depth=1))
        b = _by_name(result.root)["b"]

        self.assertTrue(b.is_directory)
        self.assertEqual(b.children, [])
        self.assertEqual(b.size, 200)
        self.assertEqual([(s.path, s.operation) for s in result.skipped], [(blocked, "readdir")])

    async def test_unreadable_root_yields_empty_node(self) -> None:
        walker = _BlockingWalker(blocked_list={str(self.root)})

        result = await walker.scan(self.request())

        self.assertTrue(result.root.is_directory)
        self.assertEqual(result.root.children, [])
        self.assertEqual(len(result.skipped), 1)

    async def test_missing_root_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            await TreeWalker().scan(ScanRequest(root_path=str(self.root / "missing")))

    async def test_file_root_is_a_leaf(self) -> None:
        result = await TreeWalker().scan(ScanRequest(root_path=str(self.root / "a.txt")))

        self.assertFalse(result.root.is_directory)
        self.assertEqual(result.root.size, 100)

    async def test_repeat_scans_match(self) -> None:
        _write(self.root / "x" / "y" / "z.bin", 4096)
        walker = TreeWalker()

        first = await walker.scan(self.request())
        second = await walker.scan(self.request())

        first_sizes = {node.path: node.size for node in iter_nodes(first.root)}
        second_sizes = {node.path: node.size for node in iter_nodes(second.root)}
        self.assertEqual(first_sizes, second_sizes)

    async def test_directory_sizes_equal_children_sum(self) -> None:
        for index in range(5):
            _write(self.root / f"dir{index}" / "nested" / f"f{index}.bin", 10 * (index + 1))

        result = await TreeWalker().scan(self.request())

        self.assertEqual(size_mismatches(result.root), [])

    async def test_syscalls_respect_concurrency_bound(self) -> None:
        for index in range(30):
            _write(self.root / "many" / f"f{index}.bin", index)
        walker = _CountingWalker(concurrency=4)

        result = await walker.scan(self.request())

        self.assertLessEqual(walker.peak, 4)
        self.assertEqual(len(_by_name(result.root)["many"].children), 30)

    async def test_progress_callback_reports_completion(self) -> None:
        updates: list[ScanProgress] = []

        result = await TreeWalker(progress_interval=1).scan(self.request(), on_progress=updates.append)

        self.assertEqual(result.entries, 4)
        self.assertTrue(updates[-1].done)
        self.assertEqual(updates[-1].entries, 4)
        self.assertEqual(updates[-1].bytes, 300)


if __name__ == "__main__":
    unittest.main()
