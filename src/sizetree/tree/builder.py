"""Rebuild a hierarchy from flat path records."""

from __future__ import annotations

from collections.abc import AsyncIterable

from sizetree.errors import MissingRootError
from sizetree.fast.records import FlatPathRecord
from sizetree.fs.filtering import IgnoreMatcher, relative_posix
from sizetree.runtime_logging import get_runtime_logger
from sizetree.tree.models import DirectoryNode

PROGRESS_LOG_EVERY = 10000


def parent_path(path: str, sep: str = "/") -> str | None:
    """Truncate ``path`` at its last separator; ``None`` when there is none."""

    index = path.rfind(sep)
    if index == -1 or path == sep:
        return None
    if index == 0:
        return sep
    return path[:index]


def _base_name(path: str, sep: str = "/") -> str:
    return path.rsplit(sep, 1)[-1] or path


class TreeBuilder:
    def __init__(self, sep: str = "/") -> None:
        self.sep = sep
        self.logger = get_runtime_logger()

    def build(
        self,
        flat_nodes: dict[str, DirectoryNode],
        directory_sizes: dict[str, int],
        root_path: str,
    ) -> DirectoryNode:
        """Link ``flat_nodes`` under ``root_path`` and resolve sizes bottom-up.

        A node whose parent path is absent from the map is left unattached.
        Any node that gains a child becomes a directory, even if its record
        said otherwise. A root recorded as a file stays a leaf with its own
        size; external totals only apply to directories.
        """

        root: DirectoryNode | None = None
        total = len(flat_nodes)
        for processed, (path, node) in enumerate(flat_nodes.items(), start=1):
            if processed % PROGRESS_LOG_EVERY == 0:
                self.logger.debug("builder.progress", processed=processed, total=total)
            if path == root_path:
                root = node
                continue
            parent_key = parent_path(path, self.sep)
            if parent_key is None:
                continue
            parent = flat_nodes.get(parent_key)
            if parent is not None:
                parent.children.append(node)
                parent.is_directory = True

        if root is None:
            raise MissingRootError(root_path)

        self._resolve_sizes(root, directory_sizes)
        self.logger.debug("builder.done", nodes=total, root=root_path, size=root.size)
        return root

    def _resolve_sizes(self, root: DirectoryNode, directory_sizes: dict[str, int]) -> None:
        # Iterative post-order: children are resolved before their parent.
        stack: list[tuple[DirectoryNode, bool]] = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if not node.is_directory:
                continue
            if not expanded:
                stack.append((node, True))
                stack.extend((child, False) for child in node.children)
                continue
            authoritative = directory_sizes.get(node.path)
            if authoritative is not None:
                node.size = authoritative
                node.authoritative = True
            else:
                node.size = sum(child.size for child in node.children)
                node.authoritative = False


async def collect_records(
    records: AsyncIterable[FlatPathRecord],
    root_path: str,
    matcher: IgnoreMatcher | None = None,
    sep: str = "/",
) -> tuple[dict[str, DirectoryNode], dict[str, int]]:
    """Drain ``records`` into a path->node map and a path->total map.

    Records beneath a directory the matcher ignores are dropped; the ignored
    directory itself is kept as an opaque leaf sized by its total.
    """

    flat_nodes: dict[str, DirectoryNode] = {}
    directory_sizes: dict[str, int] = {}
    ignored_dirs: set[str] = set()
    use_matcher = matcher is not None and not matcher.empty

    async for record in records:
        path = record.path
        if len(path) > 1 and path.endswith(sep):
            path = path.rstrip(sep)
        if record.authoritative:
            directory_sizes[path] = record.size
            continue
        if use_matcher and path != root_path:
            if _under_ignored(path, root_path, ignored_dirs, sep):
                continue
            assert matcher is not None
            if record.is_directory and matcher.matches(relative_posix(path, root_path), is_dir=True):
                ignored_dirs.add(path)
        flat_nodes[path] = DirectoryNode(
            name=_base_name(path, sep),
            path=path,
            size=record.size,
            is_directory=record.is_directory,
        )

    if ignored_dirs:
        # Records may arrive before their ignored ancestor; prune them now.
        for path in list(flat_nodes):
            if path not in ignored_dirs and _under_ignored(path, root_path, ignored_dirs, sep):
                del flat_nodes[path]
    return flat_nodes, directory_sizes


def _under_ignored(path: str, root_path: str, ignored_dirs: set[str], sep: str) -> bool:
    if not ignored_dirs:
        return False
    current = parent_path(path, sep)
    while current is not None and len(current) >= len(root_path):
        if current in ignored_dirs:
            return True
        if current == root_path:
            break
        current = parent_path(current, sep)
    return False
