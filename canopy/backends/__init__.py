"""Backends for canopy."""

from .base import Backend, IndexDescriptor
from .tree import TreeBackend
from .memory import MemoryBackend
from .sqlite import SQLiteBackend

__all__ = [
    "Backend",
    "IndexDescriptor",
    "TreeBackend",
    "MemoryBackend",
    "SQLiteBackend",
]
