"""Pick a scanner for a request and fall back from the fast path when it cannot run."""

from __future__ import annotations

import asyncio
import os

from sizetree.config.models import ScanRequest, ScanSettings, ScanStrategy
from sizetree.errors import (
    EnumerationFailure,
    MissingRootError,
    NotFoundError,
    ScanError,
    UnsupportedPlatformError,
)
from sizetree.fast.enumerator import StreamingEnumerator
from sizetree.fs.filtering import IgnoreMatcher
from sizetree.fs.walker import TreeWalker
from sizetree.runtime_logging import get_runtime_logger
from sizetree.tree.models import ProgressCallback, ScanResult

FALLBACK_ERRORS: tuple[type[ScanError], ...] = (
    UnsupportedPlatformError,
    EnumerationFailure,
    MissingRootError,
)


def build_walker(settings: ScanSettings, matcher: IgnoreMatcher | None = None) -> TreeWalker:
    return TreeWalker(
        concurrency=settings.concurrency,
        ignore_file=settings.ignore_file,
        extra_ignore_patterns=settings.extra_ignore_patterns,
        matcher=matcher,
        progress_interval=settings.progress_interval,
    )


def build_enumerator(settings: ScanSettings) -> StreamingEnumerator:
    return StreamingEnumerator(
        find_program=settings.fast_path.find_program,
        du_program=settings.fast_path.du_program,
        queue_size=settings.fast_path.queue_size,
        ignore_file=settings.ignore_file,
        extra_ignore_patterns=settings.extra_ignore_patterns,
        progress_interval=settings.progress_interval,
    )


async def scan_directory(
    request: ScanRequest,
    settings: ScanSettings | None = None,
    *,
    strategy: ScanStrategy | None = None,
    on_progress: ProgressCallback | None = None,
    timeout_s: float | None = None,
    walker: TreeWalker | None = None,
    enumerator: StreamingEnumerator | None = None,
) -> ScanResult:
    """Scan ``request.root_path``.

    ``fast`` runs only the external-tool scanner and lets its errors through.
    ``auto`` tries it first and uses the portable walker when the fast path is
    unavailable or produced nothing usable. ``timeout_s`` cancels the scan,
    including any running tool processes, and raises ``TimeoutError``.
    """

    settings = settings or ScanSettings()
    chosen = strategy or settings.strategy
    logger = get_runtime_logger()

    if not os.path.lexists(request.root_path):
        raise NotFoundError(request.root_path)

    matcher = IgnoreMatcher.from_root(
        request.root_path, settings.ignore_file, settings.extra_ignore_patterns
    )
    walker = walker or build_walker(settings, matcher)

    async def run() -> ScanResult:
        if chosen == "portable":
            return await walker.scan(request, on_progress)

        fast = enumerator or build_enumerator(settings)
        if chosen == "fast":
            return await fast.scan(request, on_progress, matcher)

        try:
            return await fast.scan(request, on_progress, matcher)
        except FALLBACK_ERRORS as exc:
            logger.warning(
                "scan.fallback",
                root=request.root_path,
                reason=type(exc).__name__,
                error=str(exc),
            )
            return await walker.scan(request, on_progress)

    if timeout_s is None:
        return await run()
    return await asyncio.wait_for(run(), timeout=timeout_s)


def scan_directory_sync(
    request: ScanRequest,
    settings: ScanSettings | None = None,
    **kwargs: object,
) -> ScanResult:
    """Blocking wrapper for callers without an event loop."""

    return asyncio.run(scan_directory(request, settings, **kwargs))  # type: ignore[arg-type]
