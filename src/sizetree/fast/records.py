"""Record sources for the external-tool scanner.

A ``RecordSource`` yields raw NUL-terminated records. ``ProcessRecordSource``
reads them from a subprocess's stdout as they arrive; ``BytesRecordSource``
replays a canned buffer.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from collections import deque
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Callable, Protocol

from sizetree.runtime_logging import get_runtime_logger

RECORD_SEPARATOR = b"\0"
STDERR_TAIL_LINES = 20
STREAM_LIMIT = 1024 * 1024


@dataclass(slots=True)
class FlatPathRecord:
    path: str
    size: int
    is_directory: bool
    authoritative: bool = False


def parse_entry_line(raw: bytes) -> FlatPathRecord | None:
    """Parse ``type<TAB>size<TAB>path`` from the enumeration tool."""

    parts = raw.split(b"\t", 2)
    if len(parts) != 3 or not parts[2]:
        return None
    type_tag, size_text, path_bytes = parts
    try:
        size = int(size_text)
    except ValueError:
        return None
    kind = type_tag.strip()
    path = os.fsdecode(path_bytes)
    if kind == b"d":
        # Directory sizes come from totals or from children, never from the inode.
        return FlatPathRecord(path=path, size=0, is_directory=True)
    if kind == b"l":
        return FlatPathRecord(path=path, size=0, is_directory=False)
    return FlatPathRecord(path=path, size=max(size, 0), is_directory=False)


def parse_total_line(raw: bytes, unit: int = 1024) -> FlatPathRecord | None:
    """Parse ``blocks<TAB>path`` from the size-totals tool."""

    parts = raw.split(b"\t", 1)
    if len(parts) != 2 or not parts[1]:
        return None
    try:
        blocks = int(parts[0].strip())
    except ValueError:
        return None
    return FlatPathRecord(
        path=os.fsdecode(parts[1]),
        size=blocks * unit,
        is_directory=True,
        authoritative=True,
    )


class RecordSource(Protocol):
    name: str

    def records(self) -> AsyncIterator[bytes]: ...

    @property
    def exit_code(self) -> int | None: ...

    def stderr_text(self) -> str: ...

    async def close(self) -> None: ...


SourceFactory = Callable[[Sequence[str]], RecordSource]


class ProcessRecordSource:
    """Stream records from a child process's stdout."""

    def __init__(self, argv: Sequence[str], *, separator: bytes = RECORD_SEPARATOR) -> None:
        self.argv = list(argv)
        self.name = os.path.basename(self.argv[0])
        self.separator = separator
        self.process: asyncio.subprocess.Process | None = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_task: asyncio.Task[None] | None = None
        self.logger = get_runtime_logger()

    @property
    def exit_code(self) -> int | None:
        if self.process is None:
            return None
        return self.process.returncode

    def stderr_text(self) -> str:
        return "".join(self._stderr_tail)

    async def records(self) -> AsyncIterator[bytes]:
        self.logger.debug("source.start", argv=self.argv)
        self.process = await asyncio.create_subprocess_exec(
            *self.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
        self._stderr_task = asyncio.create_task(self._read_stderr_loop())
        assert self.process.stdout is not None
        stdout = self.process.stdout
        discarding = False
        try:
            while True:
                try:
                    raw = await stdout.readuntil(self.separator)
                except asyncio.IncompleteReadError as exc:
                    if exc.partial and not discarding:
                        yield exc.partial
                    break
                except asyncio.LimitOverrunError as exc:
                    # Drop an oversized record and resync on the next separator.
                    await stdout.readexactly(exc.consumed)
                    if not discarding:
                        self.logger.warning("source.record.oversized", source=self.name)
                    discarding = True
                    continue
                if discarding:
                    discarding = False
                    continue
                yield raw[: -len(self.separator)]
            await self.process.wait()
            if self._stderr_task is not None:
                await self._stderr_task
            self.logger.debug("source.exit", source=self.name, exit_code=self.process.returncode)
        finally:
            await self.close()

    async def close(self) -> None:
        if self.process is not None and self.process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=2)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    self.process.kill()
                await self.process.wait()
            self.logger.debug("source.terminated", source=self.name)
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
        self._stderr_task = None

    async def _read_stderr_loop(self) -> None:
        assert self.process is not None
        assert self.process.stderr is not None
        while True:
            line = await self.process.stderr.readline()
            if not line:
                break
            self._stderr_tail.append(line.decode("utf-8", errors="replace"))


class BytesRecordSource:
    """Replay a fixed byte buffer as if it were a finished process."""

    def __init__(
        self,
        data: bytes,
        *,
        name: str = "canned",
        exit_code: int = 0,
        stderr: str = "",
        separator: bytes = RECORD_SEPARATOR,
    ) -> None:
        self.data = data
        self.name = name
        self.separator = separator
        self._exit_code = exit_code
        self._stderr = stderr
        self._finished = False
        self.closed = False

    @property
    def exit_code(self) -> int | None:
        return self._exit_code if self._finished else None

    def stderr_text(self) -> str:
        return self._stderr

    async def records(self) -> AsyncIterator[bytes]:
        try:
            chunks = self.data.split(self.separator)
            if chunks and chunks[-1] == b"":
                chunks.pop()
            for chunk in chunks:
                yield chunk
                await asyncio.sleep(0)
            self._finished = True
        finally:
            await self.close()

    async def close(self) -> None:
        self.closed = True
