"""JSON file persistence for events.

This module handles loading and saving event records to a JSON file,
with file locking for concurrent access safety.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from filelock import FileLock
from pydantic import BaseModel, Field

from timeledger.codec import EventQuery
from timeledger.errors import StorageError
from timeledger.store.base import EventStore, Record

logger = logging.getLogger(__name__)

# Storage format version for future migrations
STORAGE_VERSION = 1


class StoredEvent(BaseModel):
    """A serialized event as written to disk."""

    id: str
    type: str
    time: str
    payload: str = "{}"


class EventStorageData(BaseModel):
    """Root structure of the events file.

    Attributes:
        version: Storage format version.
        events: Stored events in insertion order.
    """

    version: int = Field(default=STORAGE_VERSION, description="Storage format version")
    events: list[StoredEvent] = Field(default_factory=list, description="Stored events")


class JsonEventStore(EventStore):
    """JSON file-based event store.

    Every operation takes a file lock, reads the whole file, and (for
    writes) rewrites it. Blocking file I/O runs in a worker thread.

    Example:
        store = JsonEventStore("/path/to/events.json")
        await store.save({"id": "a", "type": "start", "time": "...", "payload": "{}"})
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the event storage.

        Args:
            path: Path to the JSON storage file.
        """
        self._path = Path(path)
        self._lock = FileLock(str(self._path.with_suffix(".lock")))

    @property
    def path(self) -> Path:
        """Get the storage file path."""
        return self._path

    def _read_data(self) -> EventStorageData:
        if not self._path.exists():
            return EventStorageData()

        content = self._path.read_text(encoding="utf-8")
        if not content.strip():
            return EventStorageData()

        data = json.loads(content)

        version = data.get("version", 1)
        if version != STORAGE_VERSION:
            data = self._migrate_data(data, version)

        return EventStorageData.model_validate(data)

    def _write_data(self, data: EventStorageData) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data.model_dump(mode="json"), indent=2)
        self._path.write_text(content, encoding="utf-8")

    def _migrate_data(self, data: dict[str, Any], from_version: int) -> dict[str, Any]:
        # Currently no migrations needed
        logger.info(f"Migrating event storage from version {from_version} to {STORAGE_VERSION}")
        data["version"] = STORAGE_VERSION
        return data

    def _locked(self, operation, *args, create: bool = False):
        """Run operation under the file lock.

        Without create, a missing file reads as an empty store and nothing
        is created on disk.
        """
        try:
            if create:
                # The lock file lives next to the data file
                self._path.parent.mkdir(parents=True, exist_ok=True)
            elif not self._path.exists():
                return None
            with self._lock:
                return operation(*args)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(e) from e

    def _save(self, record: Record) -> None:
        data = self._read_data()
        data.events.append(StoredEvent.model_validate(record))
        self._write_data(data)

    def _search(self, query: EventQuery | None) -> list[Record]:
        records = [event.model_dump() for event in self._read_data().events]
        if query is None or query.is_empty:
            return records
        return [r for r in records if query.matches(r)]

    def _delete(self, query: EventQuery) -> int:
        data = self._read_data()
        original_count = len(data.events)
        data.events = [e for e in data.events if not query.matches(e.model_dump())]
        removed = original_count - len(data.events)
        if removed:
            self._write_data(data)
        return removed

    def _delete_all(self) -> int:
        data = self._read_data()
        count = len(data.events)
        self._write_data(EventStorageData())
        return count

    async def save(self, record: Record) -> None:
        await asyncio.to_thread(self._locked, self._save, record, create=True)
        logger.debug(f"Saved {record.get('type')} event for {record.get('id')} to {self._path}")

    async def search(self, query: EventQuery | None = None) -> list[Record]:
        return await asyncio.to_thread(self._locked, self._search, query) or []

    async def delete(self, query: EventQuery | None = None) -> None:
        if query is None or query.is_empty:
            return
        removed = await asyncio.to_thread(self._locked, self._delete, query) or 0
        logger.info(f"Removed {removed} events from {self._path}")

    async def delete_all(self) -> None:
        count = await asyncio.to_thread(self._locked, self._delete_all) or 0
        logger.info(f"Cleared {count} events")
