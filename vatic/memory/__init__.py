"""Persistent run memory and session windows."""

from vatic.memory.sqlite_store import MemoryEntry, MemoryStore, SessionTurn

__all__ = ["MemoryEntry", "MemoryStore", "SessionTurn"]
