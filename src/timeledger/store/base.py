"""Interfaces for the collaborators the tracker depends on."""

from abc import ABC, abstractmethod
from typing import Any

from timeledger.codec import EventQuery

# A stored event: {"id": str, "type": str, "time": str, "payload": str}
Record = dict[str, Any]


class EventStore(ABC):
    """Abstract durable storage for event records.

    Implementations must:
    - Return records in stable insertion order
    - Treat a None query as "all records" for search
    - Treat a None query as a no-op for delete
    - Raise StorageError on any I/O or validation failure
    """

    @abstractmethod
    async def save(self, record: Record) -> None:
        """Persist one event record."""
        ...

    @abstractmethod
    async def search(self, query: EventQuery | None = None) -> list[Record]:
        """Return the records matching query, or every record."""
        ...

    @abstractmethod
    async def delete(self, query: EventQuery | None = None) -> None:
        """Delete the records matching query."""
        ...

    @abstractmethod
    async def delete_all(self) -> None:
        """Delete every record."""
        ...


class StorageArea(ABC):
    """Abstract container (e.g. a directory) holding a store's data."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True if the area exists."""
        ...

    @abstractmethod
    async def create(self) -> None:
        """Create the area."""
        ...

    @abstractmethod
    async def remove(self) -> None:
        """Remove the area and everything in it; no-op if it doesn't exist."""
        ...
