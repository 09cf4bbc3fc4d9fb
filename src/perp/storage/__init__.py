"""Keyed storage layer -- abstract interface and in-memory reference host."""

from perp.storage.base import SINGLETON, Storage, Table
from perp.storage.memory import InMemoryStorage

__all__ = ["InMemoryStorage", "SINGLETON", "Storage", "Table"]
