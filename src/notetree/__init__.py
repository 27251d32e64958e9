"""
Notetree - lifecycle core for a hierarchical, optionally encrypted note store.

Notes live in a tree of placements (one note may appear under several parents),
keep time-windowed history snapshots, can be protected (encrypted at rest)
together with their whole subtree, and are soft-deleted with reference-counted
cascading.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notetree")
except PackageNotFoundError:
    __version__ = "0.3.0"
