"""In-process event store.

Keeps records in a list; useful for embedding, previews and tests.
"""

import logging

from timeledger.codec import EventQuery
from timeledger.store.base import EventStore, Record

logger = logging.getLogger(__name__)


class MemoryEventStore(EventStore):
    """EventStore backed by a Python list."""

    def __init__(self, records: list[Record] | None = None) -> None:
        self._records: list[Record] = [dict(r) for r in records or []]

    def __len__(self) -> int:
        return len(self._records)

    async def save(self, record: Record) -> None:
        self._records.append(dict(record))

    async def search(self, query: EventQuery | None = None) -> list[Record]:
        if query is None or query.is_empty:
            return [dict(r) for r in self._records]
        return [dict(r) for r in self._records if query.matches(r)]

    async def delete(self, query: EventQuery | None = None) -> None:
        if query is None or query.is_empty:
            return
        before = len(self._records)
        self._records = [r for r in self._records if not query.matches(r)]
        logger.debug(f"Deleted {before - len(self._records)} records")

    async def delete_all(self) -> None:
        self._records.clear()
