"""Portable in-process scanner.

Every ``lstat``/``listdir`` goes through one shared ``ConcurrencyLimiter`` and
runs on a worker thread. Directories fan out concurrently; entries that cannot
be read are dropped from the tree and recorded on the result.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import stat
import time
from collections.abc import Iterable
from typing import Any, Callable

from sizetree.config.models import ScanRequest
from sizetree.errors import EntryAccessError, NotFoundError, RootAccessError
from sizetree.fs.filtering import IgnoreMatcher, relative_posix
from sizetree.fs.limiter import DEFAULT_LIMIT, ConcurrencyLimiter
from sizetree.runtime_logging import get_runtime_logger
from sizetree.tree.models import (
    DirectoryNode,
    ProgressCallback,
    ScanProgress,
    ScanResult,
    SkippedEntry,
)


def _base_name(path: str) -> str:
    return os.path.basename(path.rstrip(os.sep)) or path


class TreeWalker:
    def __init__(
        self,
        *,
        concurrency: int = DEFAULT_LIMIT,
        ignore_file: str = ".gitignore",
        extra_ignore_patterns: Iterable[str] = (),
        matcher: IgnoreMatcher | None = None,
        progress_interval: int = 1000,
    ) -> None:
        self.concurrency = concurrency
        self.ignore_file = ignore_file
        self.extra_ignore_patterns = list(extra_ignore_patterns)
        self.matcher = matcher
        self.progress_interval = max(1, progress_interval)
        self.logger = get_runtime_logger()

    async def scan(
        self,
        request: ScanRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ScanResult:
        """Scan ``request.root_path`` into a tree no deeper than ``request.max_depth``.

        ``min_size_bytes`` is not applied here; it only filters the fast path.
        """

        started = time.monotonic()
        root_path = request.root_path
        matcher = self.matcher or IgnoreMatcher.from_root(
            root_path, self.ignore_file, self.extra_ignore_patterns
        )
        self.logger.info(
            "walker.scan.start",
            root=root_path,
            max_depth=request.max_depth,
            concurrency=self.concurrency,
            ignore_rules=len(matcher.patterns),
        )

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="sizetree-walk",
        ) as pool:
            run = _WalkRun(
                root_path=root_path,
                max_depth=request.max_depth,
                matcher=matcher,
                limiter=ConcurrencyLimiter(self.concurrency),
                pool=pool,
                stat_fn=self._stat,
                list_fn=self._list,
                on_progress=on_progress,
                progress_interval=self.progress_interval,
            )
            root = await run.scan_root()

        elapsed = time.monotonic() - started
        run.report(done=True)
        self.logger.info(
            "walker.scan.finish",
            root=root_path,
            entries=run.entries,
            skipped=len(run.skipped),
            size=root.size,
            elapsed_s=round(elapsed, 3),
        )
        return ScanResult(
            root=root,
            strategy="portable",
            skipped=run.skipped,
            entries=run.entries,
            elapsed_s=elapsed,
        )

    # Blocking syscalls, run on pool threads.

    def _stat(self, path: str) -> os.stat_result:
        return os.lstat(path)

    def _list(self, path: str) -> list[str]:
        return os.listdir(path)


class _WalkRun:
    """State for one ``TreeWalker.scan`` call."""

    def __init__(
        self,
        *,
        root_path: str,
        max_depth: int,
        matcher: IgnoreMatcher,
        limiter: ConcurrencyLimiter,
        pool: concurrent.futures.Executor,
        stat_fn: Callable[[str], os.stat_result],
        list_fn: Callable[[str], list[str]],
        on_progress: ProgressCallback | None,
        progress_interval: int,
    ) -> None:
        self.root_path = root_path
        self.max_depth = max_depth
        self.matcher = matcher
        self.limiter = limiter
        self.pool = pool
        self.stat_fn = stat_fn
        self.list_fn = list_fn
        self.on_progress = on_progress
        self.progress_interval = progress_interval
        self.skipped: list[SkippedEntry] = []
        self.entries = 0
        self.bytes = 0
        self.logger = get_runtime_logger()

    async def _syscall(self, fn: Callable[[str], Any], path: str) -> Any:
        loop = asyncio.get_running_loop()
        return await self.limiter.run(lambda: loop.run_in_executor(self.pool, fn, path))

    async def _stat(self, path: str) -> os.stat_result:
        try:
            return await self._syscall(self.stat_fn, path)
        except OSError as exc:
            raise EntryAccessError(path, "stat", exc) from exc

    async def _list(self, path: str) -> list[str]:
        try:
            return await self._syscall(self.list_fn, path)
        except OSError as exc:
            raise EntryAccessError(path, "readdir", exc) from exc

    def _skip(self, exc: EntryAccessError) -> None:
        self.skipped.append(
            SkippedEntry(path=exc.path, operation=exc.operation, error=str(exc.error))  # type: ignore[arg-type]
        )
        self.logger.warning(
            "walker.entry.skipped",
            path=exc.path,
            operation=exc.operation,
            error=str(exc.error),
        )

    def _count(self, size: int) -> None:
        self.entries += 1
        self.bytes += size
        if self.on_progress is not None and self.entries % self.progress_interval == 0:
            self.report()

    def report(self, done: bool = False) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            ScanProgress(entries=self.entries, bytes=self.bytes, skipped=len(self.skipped), done=done)
        )

    async def scan_root(self) -> DirectoryNode:
        try:
            st = await self._stat(self.root_path)
        except EntryAccessError as exc:
            if isinstance(exc.error, (FileNotFoundError, NotADirectoryError)):
                raise NotFoundError(self.root_path) from exc
            raise RootAccessError(self.root_path, exc.error) from exc
        if stat.S_ISLNK(st.st_mode):
            # A symlinked root is scanned through its target.
            try:
                st = await self._syscall(os.stat, self.root_path)
            except OSError as exc:
                raise NotFoundError(self.root_path) from exc
        return await self._node_from_stat(self.root_path, _base_name(self.root_path), st, 0)

    async def _visit(self, path: str, name: str, depth: int) -> DirectoryNode | None:
        try:
            st = await self._stat(path)
            return await self._node_from_stat(path, name, st, depth)
        except EntryAccessError as exc:
            self._skip(exc)
            return None

    async def _node_from_stat(
        self,
        path: str,
        name: str,
        st: os.stat_result,
        depth: int,
    ) -> DirectoryNode:
        if stat.S_ISLNK(st.st_mode):
            self._count(0)
            return DirectoryNode(name=name, path=path, size=0, is_directory=False)
        if not stat.S_ISDIR(st.st_mode):
            self._count(st.st_size)
            return DirectoryNode(name=name, path=path, size=st.st_size, is_directory=False)

        self._count(0)
        try:
            names = await self._list(path)
        except EntryAccessError as exc:
            if depth > 0:
                raise
            # The root itself always yields a node, even when unreadable.
            self._skip(exc)
            return DirectoryNode(name=name, path=path, size=0, is_directory=True)

        ignored = depth > 0 and self.matcher.matches(relative_posix(path, self.root_path), is_dir=True)
        if ignored or depth >= self.max_depth:
            # Opaque leaf: descendants that fail are skipped, this node stays.
            size = await self._sum_entries(path, names)
            if ignored:
                self.logger.debug("walker.dir.ignored", path=path, size=size)
            return DirectoryNode(name=name, path=path, size=size, is_directory=True)

        visited = await asyncio.gather(
            *(self._visit(os.path.join(path, child), child, depth + 1) for child in names)
        )
        children = [child for child in visited if child is not None]
        return DirectoryNode(
            name=name,
            path=path,
            size=sum(child.size for child in children),
            children=children,
            is_directory=True,
        )

    async def _measure(self, path: str) -> int:
        """Full-depth size of ``path`` without building nodes."""

        try:
            st = await self._stat(path)
            if stat.S_ISLNK(st.st_mode):
                return 0
            if not stat.S_ISDIR(st.st_mode):
                self.bytes += st.st_size
                return st.st_size
            return await self._measure_children(path)
        except EntryAccessError as exc:
            self._skip(exc)
            return 0

    async def _measure_children(self, path: str) -> int:
        try:
            names = await self._list(path)
        except EntryAccessError as exc:
            self._skip(exc)
            return 0
        return await self._sum_entries(path, names)

    async def _sum_entries(self, path: str, names: list[str]) -> int:
        sizes = await asyncio.gather(*(self._measure(os.path.join(path, child)) for child in names))
        return sum(sizes)
