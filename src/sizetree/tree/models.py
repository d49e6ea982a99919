"""Directory tree nodes and scan results."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

SkipOperation = Literal["stat", "readdir"]


@dataclass(slots=True)
class DirectoryNode:
    """One filesystem entry observed during a scan.

    ``size`` is the entry's own size for files and the aggregate of included
    descendants for directories. ``authoritative`` marks a directory total
    taken verbatim from an external size tool; such a node's size need not
    equal the sum of its children.
    """

    name: str
    path: str
    size: int = 0
    children: list["DirectoryNode"] = field(default_factory=list)
    is_directory: bool = False
    authoritative: bool = False

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "isDirectory": self.is_directory,
            "children": [child.to_dict() for child in self.children],
        }
        if self.authoritative:
            payload["authoritative"] = True
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "DirectoryNode":
        return cls(
            name=str(payload["name"]),
            path=str(payload["path"]),
            size=int(payload.get("size", 0)),
            children=[cls.from_dict(child) for child in payload.get("children", [])],
            is_directory=bool(payload.get("isDirectory", False)),
            authoritative=bool(payload.get("authoritative", False)),
        )


@dataclass(slots=True)
class SkippedEntry:
    path: str
    operation: SkipOperation
    error: str


@dataclass(slots=True)
class ScanProgress:
    entries: int
    bytes: int
    skipped: int
    done: bool = False


ProgressCallback = Callable[[ScanProgress], None]


@dataclass(slots=True)
class ScanResult:
    root: DirectoryNode
    strategy: Literal["portable", "fast"]
    skipped: list[SkippedEntry] = field(default_factory=list)
    entries: int = 0
    elapsed_s: float = 0.0


def iter_nodes(root: DirectoryNode) -> Iterator[DirectoryNode]:
    """Yield ``root`` and every descendant, pre-order."""

    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def find_node(root: DirectoryNode, path: str) -> DirectoryNode | None:
    for node in iter_nodes(root):
        if node.path == path:
            return node
    return None


def tree_depth(root: DirectoryNode) -> int:
    """Depth of the deepest node below ``root`` (root is depth 0)."""

    deepest = 0
    stack = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in node.children)
    return deepest


def size_mismatches(root: DirectoryNode) -> list[str]:
    """Paths of expanded, non-authoritative nodes whose size differs from their children's sum."""

    return [
        node.path
        for node in iter_nodes(root)
        if node.children
        and not node.authoritative
        and node.size != sum(child.size for child in node.children)
    ]
