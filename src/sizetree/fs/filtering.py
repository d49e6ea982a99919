"""Gitignore-style path matching against the scan root's rule file."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

import pathspec

from sizetree.runtime_logging import get_runtime_logger


class IgnoreMatcher:
    """Root-relative gitignore matcher.

    Later rules override earlier ones, ``!`` negates, a trailing ``/`` limits a
    rule to directories and ``**`` spans segments. Nested rule files are not
    merged; only the root's file is read.
    """

    def __init__(self, text: str | None = None, extra_patterns: Iterable[str] = ()) -> None:
        patterns: list[str] = list(extra_patterns)
        for line in (text or "").splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            patterns.append(stripped)
        self.patterns = patterns
        self._spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    @classmethod
    def from_root(
        cls,
        root: str | Path,
        filename: str = ".gitignore",
        extra_patterns: Iterable[str] = (),
    ) -> "IgnoreMatcher":
        rule_file = Path(root) / filename
        try:
            text = rule_file.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            text = None
        except OSError as exc:
            get_runtime_logger().warning("ignore.read_failed", path=str(rule_file), error=str(exc))
            text = None
        return cls(text, extra_patterns)

    @property
    def empty(self) -> bool:
        return not self.patterns

    def matches(self, relative_path: str, is_dir: bool = False) -> bool:
        if not self.patterns:
            return False
        rel_text = relative_path.replace(os.sep, "/").strip("/")
        if not rel_text:
            return False
        if is_dir:
            # Directory-only rules match the trailing-slash form.
            rel_text += "/"
        return self._spec.match_file(rel_text)


def relative_posix(path: str, root: str) -> str:
    """Root-relative, forward-slash path for ``path`` under ``root``."""

    if path == root:
        return ""
    rel = os.path.relpath(path, root)
    return rel.replace(os.sep, "/")
