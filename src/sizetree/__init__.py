"""Disk-usage trees with bounded parallel scanning and in-place pruning."""

from sizetree.version import __version__

__all__ = ["__version__"]
