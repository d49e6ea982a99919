"""External-tool scanner: ``find`` for structure, ``du`` for directory totals."""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import sys
import time
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Callable

from sizetree.config.models import ScanRequest
from sizetree.errors import EnumerationFailure, UnsupportedPlatformError
from sizetree.fast.records import (
    FlatPathRecord,
    ProcessRecordSource,
    RecordSource,
    SourceFactory,
    parse_entry_line,
    parse_total_line,
)
from sizetree.fs.filtering import IgnoreMatcher
from sizetree.runtime_logging import get_runtime_logger
from sizetree.tree.builder import TreeBuilder, collect_records
from sizetree.tree.models import ProgressCallback, ScanProgress, ScanResult, iter_nodes

ENTRY_FORMAT = "%y\\t%s\\t%p\\0"


@dataclass(slots=True, frozen=True)
class ToolPaths:
    find: str
    du: str


def resolve_tools(find_program: str | None = None, du_program: str | None = None) -> ToolPaths:
    """Locate the enumeration and size tools or raise ``UnsupportedPlatformError``."""

    if os.name != "posix":
        raise UnsupportedPlatformError(f"Fast scan requires a POSIX host, not {sys.platform}")

    find_names = [find_program] if find_program else ["find"]
    du_names = [du_program] if du_program else ["du"]
    if sys.platform == "darwin":
        # BSD find lacks -printf; Homebrew installs the GNU tools with a g- prefix.
        find_names = [find_program] if find_program else ["gfind", "find"]
        du_names = [du_program] if du_program else ["gdu", "du"]

    find = _which_first(find_names)
    du = _which_first(du_names)
    if find is None or du is None:
        missing = [name for name, found in (("find", find), ("du", du)) if found is None]
        raise UnsupportedPlatformError(f"Fast scan tools not found: {', '.join(missing)}")
    return ToolPaths(find=find, du=du)


def _which_first(names: Iterable[str]) -> str | None:
    for name in names:
        found = shutil.which(name)
        if found:
            return found
    return None


def entry_command(tools: ToolPaths, request: ScanRequest) -> list[str]:
    argv = [tools.find, "-H", request.root_path, "-maxdepth", str(request.max_depth)]
    if request.min_size_bytes > 0:
        # Directories always pass so the hierarchy stays connected.
        argv += ["(", "-type", "d", "-o", "-size", f"+{request.min_size_bytes - 1}c", ")"]
    argv += ["-printf", ENTRY_FORMAT]
    return argv


def totals_command(tools: ToolPaths, request: ScanRequest) -> list[str]:
    return [tools.du, "-H", "-k", "-0", "-d", str(request.max_depth), request.root_path]


_DONE = object()


class StreamingEnumerator:
    """Run the enumeration and totals tools side by side and merge their records.

    Both outputs are parsed as they stream in and pass through one bounded
    queue, so a slow consumer pauses the readers instead of growing memory.
    """

    def __init__(
        self,
        *,
        tools: ToolPaths | None = None,
        find_program: str | None = None,
        du_program: str | None = None,
        source_factory: SourceFactory = ProcessRecordSource,
        queue_size: int = 1024,
        ignore_file: str = ".gitignore",
        extra_ignore_patterns: Iterable[str] = (),
        progress_interval: int = 1000,
    ) -> None:
        self.tools = tools
        self.find_program = find_program
        self.du_program = du_program
        self.source_factory = source_factory
        self.queue_size = queue_size
        self.ignore_file = ignore_file
        self.extra_ignore_patterns = list(extra_ignore_patterns)
        self.progress_interval = max(1, progress_interval)
        self.logger = get_runtime_logger()

    def _tools(self) -> ToolPaths:
        if self.tools is None:
            self.tools = resolve_tools(self.find_program, self.du_program)
        return self.tools

    async def enumerate(
        self,
        request: ScanRequest,
        on_progress: ProgressCallback | None = None,
    ) -> AsyncIterator[FlatPathRecord]:
        tools = self._tools()
        entry_source = self.source_factory(entry_command(tools, request))
        total_source = self.source_factory(totals_command(tools, request))
        self.logger.info(
            "enumerator.start",
            root=request.root_path,
            max_depth=request.max_depth,
            min_size=request.min_size_bytes,
        )

        queue: asyncio.Queue[FlatPathRecord | object] = asyncio.Queue(maxsize=self.queue_size)
        counts = {"entries": 0, "totals": 0, "malformed": 0}
        pumps = [
            asyncio.create_task(self._pump(entry_source, parse_entry_line, "entries", queue, counts)),
            asyncio.create_task(self._pump(total_source, parse_total_line, "totals", queue, counts)),
        ]
        finished = 0
        seen = 0
        size_seen = 0
        try:
            while finished < len(pumps):
                item = await queue.get()
                if item is _DONE:
                    finished += 1
                    continue
                assert isinstance(item, FlatPathRecord)
                if not item.authoritative:
                    seen += 1
                    size_seen += item.size
                    if on_progress is not None and seen % self.progress_interval == 0:
                        on_progress(ScanProgress(entries=seen, bytes=size_seen, skipped=counts["malformed"]))
                yield item
            # Surface reader failures once both streams are drained.
            await asyncio.gather(*pumps)
        finally:
            for pump in pumps:
                if not pump.done():
                    pump.cancel()
            for pump in pumps:
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
            await entry_source.close()
            await total_source.close()

        self._check_outcome(entry_source, total_source, counts)
        if on_progress is not None:
            on_progress(ScanProgress(entries=seen, bytes=size_seen, skipped=counts["malformed"], done=True))

    async def _pump(
        self,
        source: RecordSource,
        parse: Callable[[bytes], FlatPathRecord | None],
        counter: str,
        queue: asyncio.Queue[FlatPathRecord | object],
        counts: dict[str, int],
    ) -> None:
        error: Exception | None = None
        try:
            async for raw in source.records():
                if not raw:
                    continue
                record = parse(raw)
                if record is None:
                    counts["malformed"] += 1
                    self.logger.debug("enumerator.record.malformed", source=source.name)
                    continue
                counts[counter] += 1
                await queue.put(record)
        except OSError as exc:
            # A tool that cannot be launched counts as a stream with no output.
            self.logger.warning("enumerator.source.failed", source=source.name, error=str(exc))
        except Exception as exc:
            error = exc
        # The consumer drains until both end markers arrive.
        await queue.put(_DONE)
        if error is not None:
            raise error

    def _check_outcome(self, entry_source: RecordSource, total_source: RecordSource, counts: dict[str, int]) -> None:
        stderr = "\n".join(text for text in (entry_source.stderr_text(), total_source.stderr_text()) if text)
        if counts["entries"] == 0 and counts["totals"] == 0:
            self.logger.error(
                "enumerator.failed",
                entry_exit=entry_source.exit_code,
                totals_exit=total_source.exit_code,
                stderr=stderr[-2000:],
            )
            raise EnumerationFailure("Fast scan tools produced no output", stderr=stderr)

        for source in (entry_source, total_source):
            if source.exit_code not in (0, None):
                self.logger.warning(
                    "enumerator.partial_output",
                    source=source.name,
                    exit_code=source.exit_code,
                    stderr=source.stderr_text()[-2000:],
                )
        if counts["malformed"]:
            self.logger.warning("enumerator.malformed_records", count=counts["malformed"])
        self.logger.info("enumerator.finish", entries=counts["entries"], totals=counts["totals"])

    async def scan(
        self,
        request: ScanRequest,
        on_progress: ProgressCallback | None = None,
        matcher: IgnoreMatcher | None = None,
    ) -> ScanResult:
        started = time.monotonic()
        if matcher is None:
            matcher = IgnoreMatcher.from_root(request.root_path, self.ignore_file, self.extra_ignore_patterns)
        records = self.enumerate(request, on_progress)
        try:
            flat_nodes, directory_sizes = await collect_records(records, request.root_path, matcher)
        finally:
            await records.aclose()  # type: ignore[attr-defined]
        root = TreeBuilder().build(flat_nodes, directory_sizes, request.root_path)
        # Orphaned records never reach the tree.
        entries = sum(1 for _ in iter_nodes(root))
        elapsed = time.monotonic() - started
        self.logger.info(
            "enumerator.scan.finish",
            root=request.root_path,
            entries=entries,
            size=root.size,
            elapsed_s=round(elapsed, 3),
        )
        return ScanResult(root=root, strategy="fast", entries=entries, elapsed_s=elapsed)
