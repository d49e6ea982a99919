"""Drop deleted paths from a scanned tree without rescanning."""

from __future__ import annotations

import os
from collections.abc import Iterable

from sizetree.runtime_logging import get_runtime_logger
from sizetree.tree.models import DirectoryNode


def _normalize(path: str) -> str:
    return os.path.normpath(path) if path else path


def prune(root: DirectoryNode, deleted_paths: Iterable[str]) -> DirectoryNode | None:
    """Remove every node whose path is in ``deleted_paths``, in place.

    Directories on the path from the root to a removed node get their size
    re-summed from the children they keep, which also drops any external
    total they carried. Untouched subtrees keep their sizes. Returns ``None``
    when the root itself was deleted.
    """

    deleted = {_normalize(path) for path in deleted_paths}
    if not deleted:
        return root
    if root.path in deleted:
        get_runtime_logger().info("surgery.root_deleted", root=root.path)
        return None

    removed = _prune_children(root, deleted)
    get_runtime_logger().info("surgery.pruned", root=root.path, removed=removed, size=root.size)
    return root


def _prune_children(node: DirectoryNode, deleted: set[str]) -> int:
    """Prune below ``node``; returns how many nodes were dropped."""

    if not node.children:
        return 0

    removed = 0
    kept: list[DirectoryNode] = []
    for child in node.children:
        if child.path in deleted:
            removed += 1
            continue
        removed += _prune_children(child, deleted)
        kept.append(child)

    if removed:
        node.children = kept
        node.size = sum(child.size for child in kept)
        node.authoritative = False
    return removed
