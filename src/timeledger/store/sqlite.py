"""SQLite storage for events.

Typed queries are translated to SQL WHERE clauses here; LIKE[c] wildcards
(``*`` and ``?``) map to SQLite's ``%`` and ``_``.
"""

import asyncio
import logging
import sqlite3
from enum import Enum
from pathlib import Path
from typing import Any

from timeledger.codec import EventQuery, Operator
from timeledger.errors import StorageError
from timeledger.store.base import EventStore, Record

logger = logging.getLogger(__name__)


def to_sql(query: EventQuery) -> tuple[str, list[Any]]:
    """Render a query as a SQL WHERE clause and its parameters."""
    clauses = []
    params: list[Any] = []
    for condition in query.conditions:
        value = condition.value.value if isinstance(condition.value, Enum) else condition.value
        if condition.operator is Operator.EQ:
            clauses.append(f"{condition.field} = ?")
            params.append(value)
        else:
            escaped = str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            clauses.append(f"{condition.field} LIKE ? ESCAPE '\\'")
            params.append(escaped.replace("*", "%").replace("?", "_"))
    return " AND ".join(clauses) or "1", params


class SqliteEventStore(EventStore):
    """SQLite storage for event records."""

    def __init__(self, db_path: Path | str):
        """Initialize the event database.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                type TEXT NOT NULL,
                time TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}'
            );
            CREATE INDEX IF NOT EXISTS idx_events_id ON events(id);
        """)
        return conn

    def _run(
        self,
        sql: str,
        params: list[Any] | tuple[Any, ...] = (),
        create: bool = False,
    ) -> list[Record]:
        """Execute a statement and return its rows.

        Only writes that create records (create=True) make the database
        file; against a missing file every other statement returns no rows.
        """
        try:
            if create:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            elif not self.db_path.exists():
                return []
            conn = self._connect()
            try:
                with conn:
                    cursor = conn.execute(sql, params)
                    rows = cursor.fetchall()
                return [{k: row[k] for k in ("id", "type", "time", "payload")} for row in rows]
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(e) from e

    async def save(self, record: Record) -> None:
        await asyncio.to_thread(
            self._run,
            "INSERT INTO events (id, type, time, payload) VALUES (?, ?, ?, ?)",
            (record["id"], record["type"], record["time"], record.get("payload", "{}")),
            True,
        )

    async def search(self, query: EventQuery | None = None) -> list[Record]:
        where, params = to_sql(query or EventQuery())
        return await asyncio.to_thread(
            self._run,
            f"SELECT id, type, time, payload FROM events WHERE {where} ORDER BY seq",
            params,
        )

    async def delete(self, query: EventQuery | None = None) -> None:
        if query is None or query.is_empty:
            return
        where, params = to_sql(query)
        await asyncio.to_thread(self._run, f"DELETE FROM events WHERE {where}", params)
        logger.info(f"Deleted events matching {query.to_expression()[0]}")

    async def delete_all(self) -> None:
        await asyncio.to_thread(self._run, "DELETE FROM events")
        logger.info(f"Cleared all events in {self.db_path}")
