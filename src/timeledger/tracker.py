"""Event tracker: the public face of the ledger.

This module provides the EventTracker class that validates, records and
queries lifecycle events, and derives durations from them.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, TypeVar

from timeledger import codec, timing
from timeledger.codec import EventQuery
from timeledger.config import Settings, settings as default_settings
from timeledger.errors import EventTrackerError, InvalidArgument, InvalidId, OutOfOrder, StorageError
from timeledger.lifecycle import BackgroundTransitionDetector, LifecycleSignalSource
from timeledger.sequence import normalize_event_type, validate_sequence
from timeledger.store.base import EventStore, StorageArea
from timeledger.sweeper import BackgroundSweeper
from timeledger.types import (
    AddEventResult,
    BulkAddResult,
    BulkError,
    Event,
    EventType,
    StorageAreaState,
    TimeRange,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def validate_id(event_id: Any) -> str:
    """Return event_id if it is a non-empty string.

    Raises:
        InvalidId: Otherwise.
    """
    if not isinstance(event_id, str) or not event_id:
        raise InvalidId()
    return event_id


def _time_key(event: Event) -> datetime:
    try:
        return timing.parse_iso(event.time)
    except ValueError:
        return _EPOCH


class EventTracker:
    """Records lifecycle events per subject and derives durations.

    The tracker keeps each subject's last event in memory. It is loaded
    from the store on first use (events sorted by time, ties kept in
    insertion order) and updated on every successful write, under a
    per-subject lock. A new event may not be timed before that last event,
    so the time-ordered history stays a legal walk.

    Example:
        tracker = await EventTracker.open(JsonEventStore(path), DirectoryStorageArea(folder))
        await tracker.add_event("task-1", "start")
        await tracker.add_event("task-1", "pause")
        print(await tracker.get_stopped_time("task-1"))
    """

    def __init__(
        self,
        store: EventStore,
        area: StorageArea | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Event store holding the records.
            area: Storage area the store lives in, if any.
            settings: Settings for lifecycle patterns (defaults to global).
        """
        self._store = store
        self._area = area
        self._settings = settings or default_settings

        self._area_state = StorageAreaState.UNKNOWN
        self._last_events: dict[str, Event | None] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._sweeps: set[asyncio.Task] = set()

    @classmethod
    async def open(
        cls,
        store: EventStore,
        area: StorageArea | None = None,
        settings: Settings | None = None,
    ) -> "EventTracker":
        """Create a tracker and load the storage area state."""
        tracker = cls(store, area, settings)
        await tracker.refresh_storage_area()
        return tracker

    @property
    def store(self) -> EventStore:
        return self._store

    @property
    def storage_area_state(self) -> StorageAreaState:
        """Cached state of the storage area."""
        return self._area_state

    @property
    def has_storage_area(self) -> bool:
        return self._area_state is StorageAreaState.PRESENT

    async def _call(self, operation: Awaitable[T]) -> T:
        """Await a collaborator call, wrapping foreign failures in StorageError."""
        try:
            return await operation
        except EventTrackerError:
            raise
        except Exception as e:
            raise StorageError(e) from e

    # =========================================================================
    # Storage area
    # =========================================================================

    async def refresh_storage_area(self) -> StorageAreaState:
        """Ask the storage area whether it exists; failures count as absent."""
        if self._area is None:
            self._area_state = StorageAreaState.PRESENT
            return self._area_state

        try:
            available = await self._area.is_available()
        except Exception as e:
            logger.warning(f"Could not check storage area: {e}")
            available = False

        self._area_state = StorageAreaState.PRESENT if available else StorageAreaState.ABSENT
        return self._area_state

    async def ensure_storage_area(self) -> StorageAreaState:
        """Make sure the storage area exists before a write.

        Raises:
            StorageError: If the area can't be created.
        """
        if self._area_state is StorageAreaState.UNKNOWN:
            await self.refresh_storage_area()

        if self._area_state is StorageAreaState.ABSENT and self._area is not None:
            await self._call(self._area.create())
            self._area_state = StorageAreaState.PRESENT

        return self._area_state

    async def remove_events_folder(self) -> None:
        """Remove the storage area and everything in it."""
        if self._area is not None:
            await self._call(self._area.remove())
        self._area_state = StorageAreaState.ABSENT
        self._last_events.clear()
        self._prune_locks()
        logger.info("Removed events folder")

    async def wipe_database(self) -> None:
        """Delete every event and remove the storage area."""
        if self._area_state is not StorageAreaState.ABSENT:
            await self.delete_all_events()
        await self.remove_events_folder()

    # =========================================================================
    # Writing events
    # =========================================================================

    async def _last_event(self, event_id: str) -> Event | None:
        if event_id not in self._last_events:
            self._last_events[event_id] = await self.get_last_event_by_id(event_id)
        return self._last_events[event_id]

    def _forget(self, event_id: str) -> None:
        self._last_events.pop(event_id, None)
        lock = self._locks.get(event_id)
        if lock is not None and not lock.locked():
            del self._locks[event_id]

    def _prune_locks(self) -> None:
        # Locks held by a write in progress stay until a later prune
        self._locks = {k: v for k, v in self._locks.items() if v.locked()}

    async def add_event(
        self,
        event_id: str,
        event_type: EventType | str,
        time: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AddEventResult:
        """Record an event for a subject.

        Args:
            event_id: Tracking subject.
            event_type: start, pause, resume or finish (any case).
            time: ISO-8601 UTC timestamp; now if missing or malformed.
            payload: Caller data stored with the event.

        Returns:
            The subject id and the recorded time.

        Raises:
            InvalidId: Bad id.
            InvalidEventType: Unknown type.
            SequenceViolation: Type not allowed in the subject's state, or time
                earlier than the subject's last event (OutOfOrder).
            StorageError: The store failed.
        """
        validate_id(event_id)
        new_type = normalize_event_type(event_type)

        await self.ensure_storage_area()

        lock = self._locks.setdefault(event_id, asyncio.Lock())
        async with lock:
            last = await self._last_event(event_id)
            validate_sequence(new_type, last.type if last is not None else None)

            event = codec.create_event(event_id, new_type, time, payload)
            if last is not None and _time_key(event) < _time_key(last):
                raise OutOfOrder()

            await self._call(self._store.save(codec.to_record(event)))
            self._last_events[event_id] = event

        logger.info(f"Recorded {new_type.value} event for {event_id!r} at {event.time}")
        return AddEventResult(id=event.id, time=event.time)

    async def add_many_events(self, event_ids: Any, event_type: EventType | str) -> BulkAddResult:
        """Record the same event type for several subjects.

        Subjects are processed in order; a failure for one is recorded and
        does not stop the others.

        Raises:
            InvalidArgument: If event_ids is not a list.
        """
        if not isinstance(event_ids, (list, tuple)):
            raise InvalidArgument()

        result = BulkAddResult()
        for event_id in event_ids:
            try:
                created = await self.add_event(event_id, event_type)
            except EventTrackerError as e:
                result.errors.append(BulkError(id=event_id, error=str(e)))
                continue
            result.created_events.append(created)

        if result.errors:
            logger.info(f"Bulk {event_type}: {len(result.created_events)} created, {len(result.errors)} failed")
        return result

    # =========================================================================
    # Reading events
    # =========================================================================

    async def search_event_by_query(self, query: EventQuery | str | None = None, *values: Any) -> list[Event]:
        """Return events matching a query, in store order.

        Args:
            query: An EventQuery, a filter expression such as
                ``"id == $0 && type == $1"``, or None for every event.
            *values: Values bound to the expression placeholders.
        """
        if isinstance(query, str):
            query = EventQuery.parse(query, *values)
        records = await self._call(self._store.search(query))
        return [codec.from_record(r) for r in records]

    async def get_events_by_id(self, event_id: str) -> list[Event]:
        """Return a subject's events ordered by time."""
        validate_id(event_id)
        events = await self.search_event_by_query(EventQuery.for_subject(event_id))
        return sorted(events, key=_time_key)

    async def get_last_event_by_id(self, event_id: str) -> Event | None:
        """Return a subject's most recent event, or None if it has none."""
        events = await self.get_events_by_id(event_id)
        return events[-1] if events else None

    async def get_last_event_type_by_id(self, event_id: str) -> EventType | None:
        last = await self.get_last_event_by_id(event_id)
        return last.type if last is not None else None

    async def get_id_time_by_type(self, event_id: str, event_type: EventType | str) -> str | None:
        """Return the time of a subject's first event of a type, or None."""
        validate_id(event_id)
        wanted = normalize_event_type(event_type)
        events = await self.get_events_by_id(event_id)
        found = next((e for e in events if e.type is wanted), None)
        return found.time if found is not None and found.time else None

    async def get_all_ids(self) -> list[str]:
        """Return every tracked subject id once, in first-seen order."""
        records = await self._call(self._store.search(None))
        return list(dict.fromkeys(r["id"] for r in records))

    async def is_event_started(self, event_id: str) -> bool:
        """Return True if the subject has a start event."""
        return await self.get_id_time_by_type(event_id, EventType.START) is not None

    # =========================================================================
    # Durations
    # =========================================================================

    async def get_elapsed_time_by_id(self, event_id: str, formatted: bool = True) -> timing.Duration:
        """Time from the subject's start to its last finish (or now).

        Raises:
            NotTracked: If the subject has no start event.
        """
        return timing.elapsed(await self.get_events_by_id(event_id), formatted)

    async def get_stopped_time(self, event_id: str, formatted: bool = True) -> timing.Duration:
        """Total time the subject spent paused."""
        return timing.stopped(await self.get_events_by_id(event_id), formatted)

    async def get_net_tracking_time(self, event_id: str, formatted: bool = True) -> timing.Duration:
        """Elapsed time minus stopped time, never negative.

        Raises:
            NotTracked: If the subject has no start event.
        """
        return timing.net(await self.get_events_by_id(event_id), formatted)

    def get_elapsed_time(
        self,
        start: str | None = None,
        finish: str | None = None,
        formatted: bool = True,
    ) -> timing.Duration:
        """Time between two timestamps; zero when start is missing."""
        return timing.elapsed_between(start, finish, formatted)

    async def get_time_range_by_id(self, event_id: str) -> TimeRange:
        """Return the subject's start time and last finish time.

        Each boundary is looked up on its own and is None when absent or
        when its lookup fails.
        """
        validate_id(event_id)
        time_range = TimeRange()

        try:
            time_range.start_time = await self.get_id_time_by_type(event_id, EventType.START)
        except EventTrackerError as e:
            logger.warning(f"Could not read start time of {event_id!r}: {e}")

        try:
            events = await self.get_events_by_id(event_id)
            finishes = [e for e in events if e.type is EventType.FINISH]
            time_range.finish_time = finishes[-1].time if finishes else None
        except EventTrackerError as e:
            logger.warning(f"Could not read finish time of {event_id!r}: {e}")

        return time_range

    # =========================================================================
    # Deleting events
    # =========================================================================

    async def delete_events_by_id(self, event_id: str) -> None:
        """Delete every event of a subject."""
        validate_id(event_id)
        await self._call(self._store.delete(EventQuery.for_subject(event_id)))
        self._forget(event_id)
        logger.info(f"Deleted events for {event_id!r}")

    async def delete_all_events(self) -> None:
        """Delete every event in the store."""
        await self._call(self._store.delete_all())
        self._last_events.clear()
        self._prune_locks()
        logger.info("Deleted all events")

    async def remove_finish_by_id(self, event_id: str) -> None:
        """Delete a subject's finish events, reopening it."""
        validate_id(event_id)
        await self._call(self._store.delete(EventQuery.for_subject(event_id, EventType.FINISH)))
        self._forget(event_id)
        logger.info(f"Reopened {event_id!r}")

    # =========================================================================
    # Background handling
    # =========================================================================

    async def stop_events_in_background(self) -> list[AddEventResult]:
        """Pause every subject that is currently running."""
        return await BackgroundSweeper(self).sweep()

    @property
    def pending_sweeps(self) -> tuple[asyncio.Task, ...]:
        """Sweeps scheduled by lifecycle changes that haven't finished."""
        return tuple(self._sweeps)

    def _on_sweep_done(self, task: asyncio.Task) -> None:
        self._sweeps.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background sweep failed: {error}")

    def schedule_sweep(self) -> asyncio.Task:
        """Start a background sweep without waiting for it."""
        task = asyncio.get_running_loop().create_task(self.stop_events_in_background())
        self._sweeps.add(task)
        task.add_done_callback(self._on_sweep_done)
        return task

    @asynccontextmanager
    async def subscribe(self, source: LifecycleSignalSource) -> AsyncIterator["EventTracker"]:
        """Listen to host lifecycle changes for the duration of the block.

        Moving from an active state to the background schedules a sweep.
        The listener is always removed on exit.
        """
        detector = BackgroundTransitionDetector(
            initial=getattr(source, "state", None),
            active_pattern=self._settings.active_state_pattern,
            background_pattern=self._settings.background_state_pattern,
        )

        def on_change(state: str) -> None:
            if detector.observe(state):
                self.schedule_sweep()

        source.add_listener(on_change)
        try:
            yield self
        finally:
            source.remove_listener(on_change)

    async def close(self) -> None:
        """Cancel and wait for any sweep still running."""
        pending = list(self._sweeps)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._sweeps.clear()
