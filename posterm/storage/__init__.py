"""
Storage Substrate

Key-value backends injected into the cache store and the outbox.
"""

from .kv_store import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore

__all__ = ["KeyValueStore", "MemoryKeyValueStore", "SqliteKeyValueStore"]
