"""Entity store implementations."""

from workitems.store.base import EntityStore, Result
from workitems.store.memory import MemoryStore
from workitems.store.sqlite import SQLiteStore

__all__ = ["EntityStore", "MemoryStore", "Result", "SQLiteStore"]
