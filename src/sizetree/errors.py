"""Scan failure taxonomy.

Only root, platform, reconstruction and total-enumeration failures reach the
caller. ``EntryAccessError`` stays inside the scanners and is turned into a
``SkippedEntry`` on the scan result.
"""

from __future__ import annotations


class ScanError(Exception):
    """Base class for failures surfaced to the scan caller."""


class NotFoundError(ScanError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Scan root does not exist: {path}")
        self.path = path


class RootAccessError(ScanError):
    def __init__(self, path: str, error: OSError) -> None:
        super().__init__(f"Cannot stat scan root {path}: {error}")
        self.path = path
        self.error = error


class UnsupportedPlatformError(ScanError):
    """The external enumeration tools are not available on this host."""


class MissingRootError(ScanError):
    def __init__(self, root_path: str) -> None:
        super().__init__(f"Enumeration output did not include the scan root: {root_path}")
        self.root_path = root_path


class EnumerationFailure(ScanError):
    def __init__(self, message: str, *, stderr: str = "") -> None:
        detail = f"{message}: {stderr.strip()}" if stderr.strip() else message
        super().__init__(detail)
        self.stderr = stderr


class EntryAccessError(OSError):
    """A single entry could not be statted or listed."""

    def __init__(self, path: str, operation: str, error: OSError) -> None:
        super().__init__(error.errno, f"{operation} failed for {path}: {error.strerror or error}")
        self.path = path
        self.operation = operation
        self.error = error
