"""Event stores and storage areas."""

from timeledger.store.area import DirectoryStorageArea
from timeledger.store.base import EventStore, Record, StorageArea
from timeledger.store.json_file import JsonEventStore
from timeledger.store.memory import MemoryEventStore
from timeledger.store.sqlite import SqliteEventStore

__all__ = [
    "EventStore",
    "StorageArea",
    "Record",
    "DirectoryStorageArea",
    "JsonEventStore",
    "MemoryEventStore",
    "SqliteEventStore",
]
