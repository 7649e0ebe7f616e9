"""Durable local key/value storage.

Learn: The session cache and the embedded (local) database each live
under one key. Values are JSON documents; anything that fails to parse
reads back as absent, never as a crash.
"""

from cvbank.storage.kv import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore

__all__ = ["FileKeyValueStore", "KeyValueStore", "MemoryKeyValueStore"]
