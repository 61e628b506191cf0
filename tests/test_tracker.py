"""Tests for the EventTracker orchestrator."""

from unittest.mock import AsyncMock

import pytest

from timeledger.errors import (
    AlreadyFinished,
    AlreadyPaused,
    InvalidArgument,
    InvalidEventType,
    InvalidId,
    NotTracked,
    OutOfOrder,
    SequenceViolation,
    StorageError,
)
from timeledger.store import DirectoryStorageArea, JsonEventStore, MemoryEventStore, SqliteEventStore
from timeledger.tracker import EventTracker
from timeledger.types import AddEventResult, BulkError, DurationBreakdown, EventType, StorageAreaState, TimeRange


def record(event_id: str, event_type: str, time: str, payload: str = "{}") -> dict:
    return {"id": event_id, "type": event_type, "time": time, "payload": payload}


@pytest.fixture
def store():
    return MemoryEventStore()


@pytest.fixture
def tracker(store):
    return EventTracker(store)


async def add_scenario(tracker: EventTracker, event_id: str = "X") -> None:
    await tracker.add_event(event_id, "start", "2023-01-01T00:00:00.000Z")
    await tracker.add_event(event_id, "pause", "2023-01-01T00:00:10.000Z")
    await tracker.add_event(event_id, "resume", "2023-01-01T00:00:30.000Z")
    await tracker.add_event(event_id, "finish", "2023-01-01T00:00:40.000Z")


class TestAddEvent:
    """Tests for add_event()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_id", [None, "", 12345])
    async def test_invalid_id(self, tracker, store, event_id):
        with pytest.raises(InvalidId, match="ID is invalid or null"):
            await tracker.add_event(event_id, "start")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_invalid_type(self, tracker, store):
        with pytest.raises(InvalidEventType, match="Event type is invalid"):
            await tracker.add_event("123", "fakeStart")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_records_event(self, tracker, store):
        result = await tracker.add_event("345", "START", "2023-01-01T00:00:00.000Z", {"user": "u1"})

        assert result == AddEventResult(id="345", time="2023-01-01T00:00:00.000Z")
        assert await store.search() == [record("345", "start", "2023-01-01T00:00:00.000Z", '{"user": "u1"}')]

    @pytest.mark.asyncio
    async def test_time_defaults_to_now(self, tracker):
        result = await tracker.add_event("345", "start")
        assert result.time.endswith("Z")

    @pytest.mark.asyncio
    async def test_full_sequence(self, tracker):
        await add_scenario(tracker)
        events = await tracker.get_events_by_id("X")
        assert [e.type for e in events] == [EventType.START, EventType.PAUSE, EventType.RESUME, EventType.FINISH]

    @pytest.mark.asyncio
    async def test_idempotent_finish(self, tracker):
        await tracker.add_event("X", "start")
        await tracker.add_event("X", "finish")
        await tracker.add_event("X", "finish")

        for event_type in ("start", "pause", "resume"):
            with pytest.raises(AlreadyFinished):
                await tracker.add_event("X", event_type)

    @pytest.mark.asyncio
    async def test_state_loaded_from_store(self, store):
        """A new tracker derives the current state from stored events."""
        await store.save(record("X", "start", "2023-01-01T00:00:00.000Z"))
        await store.save(record("X", "pause", "2023-01-01T00:00:10.000Z"))
        tracker = EventTracker(store)

        with pytest.raises(AlreadyPaused):
            await tracker.add_event("X", "pause")
        await tracker.add_event("X", "resume")

    @pytest.mark.asyncio
    async def test_state_uses_time_order(self, store):
        """The latest event by time decides the state, not the store order."""
        await store.save(record("X", "pause", "2023-01-01T00:00:10.000Z"))
        await store.save(record("X", "start", "2023-01-01T00:00:00.000Z"))
        tracker = EventTracker(store)

        await tracker.add_event("X", "resume")

    @pytest.mark.asyncio
    async def test_backdated_event_rejected(self, tracker, store):
        await tracker.add_event("X", "start", "2023-01-01T00:00:10.000Z")

        with pytest.raises(OutOfOrder, match="Forbidden event: time precedes last record"):
            await tracker.add_event("X", "pause", "2023-01-01T00:00:00.000Z")

        assert len(store) == 1
        # Equal times are allowed
        await tracker.add_event("X", "pause", "2023-01-01T00:00:10.000Z")

    @pytest.mark.asyncio
    async def test_future_dated_event_blocks_earlier_writes(self, tracker, store):
        """A fresh tracker on the same store agrees on the subject's state."""
        await tracker.add_event("X", "start", "2030-01-01T00:00:00.000Z")

        with pytest.raises(SequenceViolation):
            await tracker.add_event("X", "pause")

        fresh = EventTracker(store)
        assert await fresh.get_last_event_type_by_id("X") is EventType.START
        with pytest.raises(OutOfOrder):
            await fresh.add_event("X", "pause")
        await fresh.add_event("X", "pause", "2030-01-01T00:00:05.000Z")

        with pytest.raises(AlreadyPaused):
            await EventTracker(store).add_event("X", "pause", "2030-01-01T00:00:06.000Z")

        types = [e.type.value for e in await tracker.get_events_by_id("X")]
        assert types == ["start", "pause"]

    @pytest.mark.asyncio
    async def test_store_failure(self, tracker, store):
        store.save = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(StorageError, match="disk full"):
            await tracker.add_event("X", "start")

        # The failed write did not change the subject's state
        store.save = AsyncMock()
        await tracker.add_event("X", "start")


class TestAddManyEvents:
    """Tests for add_many_events()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ids", [{}, "A", None, 3])
    async def test_requires_list(self, tracker, ids):
        with pytest.raises(InvalidArgument, match="an array of ids was expected"):
            await tracker.add_many_events(ids, "start")

    @pytest.mark.asyncio
    async def test_partial_failure(self, tracker):
        await tracker.add_event("A", "start")

        result = await tracker.add_many_events(["A", "B"], "start")

        assert len(result.created_events) == 1
        assert result.created_events[0].id == "B"
        assert len(result.errors) == 1
        assert result.errors[0].id == "A"
        assert result.errors[0].error.startswith("Forbidden event: ")

    @pytest.mark.asyncio
    async def test_invalid_ids_are_reported(self, tracker):
        result = await tracker.add_many_events(["A", "", None], "start")

        assert [e.id for e in result.created_events] == ["A"]
        assert result.errors == [
            BulkError(id="", error="ID is invalid or null"),
            BulkError(id=None, error="ID is invalid or null"),
        ]

    @pytest.mark.asyncio
    async def test_store_failure_per_item(self, tracker, store):
        original_save = store.save
        calls = []

        async def flaky_save(rec):
            calls.append(rec["id"])
            if rec["id"] == "B":
                raise RuntimeError("locked")
            await original_save(rec)

        store.save = flaky_save
        result = await tracker.add_many_events(["A", "B", "C"], "start")

        assert calls == ["A", "B", "C"]
        assert [e.id for e in result.created_events] == ["A", "C"]
        assert result.errors == [BulkError(id="B", error="locked")]


class TestQueries:
    """Tests for reading events back."""

    @pytest.mark.asyncio
    async def test_get_events_by_id(self, store, tracker):
        await store.save(record("345", "start", "2023-01-01T00:00:00.000Z"))
        await store.save(record("345", "pause", "2023-01-01T00:00:00.000Z"))
        await store.save(record("999", "start", "2023-01-01T00:00:00.000Z"))

        events = await tracker.get_events_by_id("345")

        assert [(e.id, e.type, e.payload) for e in events] == [
            ("345", EventType.START, {}),
            ("345", EventType.PAUSE, {}),
        ]

    @pytest.mark.asyncio
    async def test_get_events_sorted_by_time(self, store, tracker):
        await store.save(record("X", "pause", "2023-01-01T00:00:10.000Z"))
        await store.save(record("X", "start", "2023-01-01T00:00:00.000Z"))

        events = await tracker.get_events_by_id("X")
        assert [e.type for e in events] == [EventType.START, EventType.PAUSE]

    @pytest.mark.asyncio
    async def test_invalid_id(self, tracker):
        with pytest.raises(InvalidId):
            await tracker.get_events_by_id(12345)
        with pytest.raises(InvalidId):
            await tracker.get_last_event_by_id(None)

    @pytest.mark.asyncio
    async def test_get_last_event_by_id(self, store, tracker):
        await store.save(record("345", "start", "2023-01-01T00:00:00.000Z"))
        await store.save(record("345", "pause", "2023-01-01T00:00:00.000Z"))
        await store.save(record(
            "345", "resume", "2023-01-01T00:00:00.000Z", '{"userId":"123","warehouseId":"123-wh"}'
        ))

        last = await tracker.get_last_event_by_id("345")

        assert last.type is EventType.RESUME
        assert last.payload == {"userId": "123", "warehouseId": "123-wh"}
        assert await tracker.get_last_event_type_by_id("345") is EventType.RESUME

    @pytest.mark.asyncio
    async def test_get_last_event_missing(self, tracker):
        assert await tracker.get_last_event_by_id("nobody") is None
        assert await tracker.get_last_event_type_by_id("nobody") is None

    @pytest.mark.asyncio
    async def test_unparsable_payload_returned_verbatim(self, store, tracker):
        await store.save(record("X", "start", "2023-01-01T00:00:00.000Z", "not-json"))
        events = await tracker.get_events_by_id("X")
        assert events[0].payload == "not-json"

    @pytest.mark.asyncio
    async def test_payload_round_trip(self, tracker):
        await tracker.add_event("X", "start", payload={"a": 1})
        assert (await tracker.get_last_event_by_id("X")).payload == {"a": 1}

    @pytest.mark.asyncio
    async def test_get_id_time_by_type(self, store, tracker):
        await store.save(record("123", "start", "2023-01-02T00:00:00.000Z"))

        assert await tracker.get_id_time_by_type("123", "start") == "2023-01-02T00:00:00.000Z"
        assert await tracker.get_id_time_by_type("123", "finish") is None

        with pytest.raises(InvalidId):
            await tracker.get_id_time_by_type(None, "start")
        with pytest.raises(InvalidEventType):
            await tracker.get_id_time_by_type("123", "fakeStart")

    @pytest.mark.asyncio
    async def test_is_event_started(self, tracker):
        await tracker.add_event("123", "start")

        assert await tracker.is_event_started("123") is True
        assert await tracker.is_event_started("345") is False
        with pytest.raises(InvalidId):
            await tracker.is_event_started(None)

    @pytest.mark.asyncio
    async def test_get_all_ids(self, tracker):
        for event_id in ("b", "a"):
            await tracker.add_event(event_id, "start")
        await tracker.add_event("b", "pause")

        assert await tracker.get_all_ids() == ["b", "a"]

    @pytest.mark.asyncio
    async def test_search_event_by_query(self, tracker):
        await add_scenario(tracker, "X")
        await tracker.add_event("Y", "start")

        assert len(await tracker.search_event_by_query()) == 5

        found = await tracker.search_event_by_query("id == $0 && type == $1", "X", "pause")
        assert [(e.id, e.type) for e in found] == [("X", EventType.PAUSE)]

        found = await tracker.search_event_by_query("type LIKE[c] $0", "START")
        assert [e.id for e in found] == ["X", "Y"]

    @pytest.mark.asyncio
    async def test_search_type_ignores_case(self, tracker):
        await add_scenario(tracker, "X")
        await tracker.add_event("Y", "start")

        found = await tracker.search_event_by_query("type == $0", "START")
        assert [(e.id, e.type) for e in found] == [("X", EventType.START), ("Y", EventType.START)]

    @pytest.mark.asyncio
    async def test_search_bad_expression(self, tracker):
        with pytest.raises(InvalidArgument):
            await tracker.search_event_by_query("id == $3", "X")

    @pytest.mark.asyncio
    async def test_search_failure(self, tracker, store):
        store.search = AsyncMock(side_effect=OSError("io error"))
        with pytest.raises(StorageError, match="io error"):
            await tracker.search_event_by_query()


class TestDurations:
    """Tests for the duration wrappers."""

    @pytest.mark.asyncio
    async def test_scenario(self, tracker):
        await add_scenario(tracker)

        assert await tracker.get_elapsed_time_by_id("X", formatted=False) == 40000
        assert await tracker.get_stopped_time("X", formatted=False) == 20000
        assert await tracker.get_net_tracking_time("X", formatted=False) == 20000
        assert await tracker.get_net_tracking_time("X") == DurationBreakdown(seconds=20)

    @pytest.mark.asyncio
    async def test_elapsed_across_days(self, tracker):
        await tracker.add_event("X", "start", "2023-01-01T00:00:00.000Z")
        await tracker.add_event("X", "finish", "2023-01-02T00:00:00.000Z")

        assert await tracker.get_elapsed_time_by_id("X") == DurationBreakdown(days=1)

    @pytest.mark.asyncio
    async def test_not_tracked(self, tracker):
        with pytest.raises(NotTracked):
            await tracker.get_elapsed_time_by_id("nobody")
        with pytest.raises(NotTracked):
            await tracker.get_net_tracking_time("nobody")
        assert await tracker.get_stopped_time("nobody", formatted=False) == 0

    def test_get_elapsed_time(self, tracker):
        assert tracker.get_elapsed_time() == DurationBreakdown()
        assert tracker.get_elapsed_time(
            "2023-01-01T00:00:00.000Z", "2023-01-01T00:30:00.000Z"
        ) == DurationBreakdown(minutes=30)

    @pytest.mark.asyncio
    async def test_time_range(self, tracker):
        await add_scenario(tracker)
        await tracker.add_event("X", "finish", "2023-01-01T00:01:00.000Z")

        assert await tracker.get_time_range_by_id("X") == TimeRange(
            start_time="2023-01-01T00:00:00.000Z",
            finish_time="2023-01-01T00:01:00.000Z",
        )

    @pytest.mark.asyncio
    async def test_time_range_partial(self, tracker):
        await tracker.add_event("X", "start", "2023-01-01T00:00:00.000Z")

        assert await tracker.get_time_range_by_id("X") == TimeRange(start_time="2023-01-01T00:00:00.000Z")
        assert await tracker.get_time_range_by_id("nobody") == TimeRange()

    @pytest.mark.asyncio
    async def test_time_range_tolerates_lookup_failure(self, tracker, store):
        store.search = AsyncMock(side_effect=RuntimeError("database error"))

        assert await tracker.get_time_range_by_id("X") == TimeRange()

    @pytest.mark.asyncio
    async def test_time_range_invalid_id(self, tracker):
        with pytest.raises(InvalidId):
            await tracker.get_time_range_by_id("")


class TestDeletion:
    """Tests for delete operations."""

    @pytest.mark.asyncio
    async def test_delete_events_by_id(self, tracker):
        await tracker.add_event("A", "start")
        await tracker.add_event("B", "start")

        await tracker.delete_events_by_id("A")

        assert await tracker.get_all_ids() == ["B"]
        # A can be started again
        await tracker.add_event("A", "start")

    @pytest.mark.asyncio
    async def test_delete_events_invalid_id(self, tracker):
        with pytest.raises(InvalidId):
            await tracker.delete_events_by_id(None)

    @pytest.mark.asyncio
    async def test_delete_all_events(self, tracker, store):
        await tracker.add_event("A", "start")
        await tracker.delete_all_events()

        assert await store.search() == []
        await tracker.add_event("A", "start")

    @pytest.mark.asyncio
    async def test_delete_all_failure(self, tracker, store):
        store.delete_all = AsyncMock(side_effect=RuntimeError("error"))
        with pytest.raises(StorageError, match="error"):
            await tracker.delete_all_events()

    @pytest.mark.asyncio
    async def test_remove_finish_reopens(self, tracker):
        await tracker.add_event("X", "start")
        await tracker.add_event("X", "finish")
        await tracker.add_event("X", "finish")

        await tracker.remove_finish_by_id("X")

        assert [e.type for e in await tracker.get_events_by_id("X")] == [EventType.START]
        await tracker.add_event("X", "pause")

    @pytest.mark.asyncio
    async def test_deletes_release_subject_locks(self, tracker):
        for event_id in ("A", "B", "C"):
            await tracker.add_event(event_id, "start")
        assert set(tracker._locks) == {"A", "B", "C"}

        await tracker.delete_events_by_id("A")
        assert set(tracker._locks) == {"B", "C"}

        await tracker.remove_finish_by_id("B")
        assert set(tracker._locks) == {"C"}

        await tracker.delete_all_events()
        assert tracker._locks == {}

    @pytest.mark.asyncio
    async def test_remove_finish_failure(self, tracker, store):
        store.delete = AsyncMock(side_effect=RuntimeError("delete error"))
        with pytest.raises(StorageError, match="delete error"):
            await tracker.remove_finish_by_id("123")


class TestStorageArea:
    """Tests for the storage area state handling."""

    @pytest.mark.asyncio
    async def test_without_area(self, store):
        tracker = await EventTracker.open(store)
        assert tracker.storage_area_state is StorageAreaState.PRESENT

    @pytest.mark.asyncio
    async def test_open_reports_absent_then_creates(self, tmp_path):
        area = DirectoryStorageArea(tmp_path / "timetracker")
        tracker = await EventTracker.open(JsonEventStore(area.path / "events.json"), area)
        assert tracker.storage_area_state is StorageAreaState.ABSENT

        await tracker.add_event("X", "start")

        assert tracker.storage_area_state is StorageAreaState.PRESENT
        assert area.path.is_dir()

    @pytest.mark.asyncio
    async def test_unknown_until_first_write(self, store, tmp_path):
        area = DirectoryStorageArea(tmp_path / "timetracker")
        tracker = EventTracker(store, area)
        assert tracker.storage_area_state is StorageAreaState.UNKNOWN

        await tracker.add_event("X", "start")
        assert tracker.storage_area_state is StorageAreaState.PRESENT

    @pytest.mark.asyncio
    async def test_no_create_while_present(self, store):
        area = AsyncMock()
        area.is_available.return_value = True
        tracker = await EventTracker.open(store, area)

        await tracker.add_event("X", "start")

        area.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_availability_failure_counts_as_absent(self, store):
        area = AsyncMock()
        area.is_available.side_effect = OSError("permission denied")

        tracker = await EventTracker.open(store, area)

        assert tracker.storage_area_state is StorageAreaState.ABSENT

    @pytest.mark.asyncio
    async def test_create_failure(self, store):
        area = AsyncMock()
        area.is_available.return_value = False
        area.create.side_effect = OSError("read-only")
        tracker = await EventTracker.open(store, area)

        with pytest.raises(StorageError, match="read-only"):
            await tracker.add_event("X", "start")
        assert len(store) == 0
        assert tracker.storage_area_state is StorageAreaState.ABSENT

    @pytest.mark.asyncio
    async def test_remove_events_folder(self, tmp_path):
        area = DirectoryStorageArea(tmp_path / "timetracker")
        tracker = await EventTracker.open(JsonEventStore(area.path / "events.json"), area)
        await tracker.add_event("X", "start")

        await tracker.remove_events_folder()

        assert tracker.storage_area_state is StorageAreaState.ABSENT
        assert not area.path.exists()

    @pytest.mark.asyncio
    async def test_remove_events_folder_failure(self, store):
        area = AsyncMock()
        area.is_available.return_value = True
        area.remove.side_effect = OSError("delete error")
        tracker = await EventTracker.open(store, area)

        with pytest.raises(StorageError, match="delete error"):
            await tracker.remove_events_folder()
        assert tracker.storage_area_state is StorageAreaState.PRESENT

    @pytest.mark.asyncio
    async def test_wipe_database(self, tmp_path):
        area = DirectoryStorageArea(tmp_path / "timetracker")
        store = JsonEventStore(area.path / "events.json")
        tracker = await EventTracker.open(store, area)
        await tracker.add_event("X", "start")

        await tracker.wipe_database()

        assert tracker.storage_area_state is StorageAreaState.ABSENT
        assert not area.path.exists()

        # Writing again recreates the area and starts from a clean slate
        await tracker.add_event("X", "start")
        assert area.path.is_dir()
        assert len(await tracker.get_events_by_id("X")) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("store_class, filename", [(JsonEventStore, "events.json"), (SqliteEventStore, "events.db")])
    async def test_reads_after_wipe_keep_area_absent(self, tmp_path, store_class, filename):
        area = DirectoryStorageArea(tmp_path / "timetracker")
        tracker = await EventTracker.open(store_class(area.path / filename), area)
        await tracker.add_event("X", "start")

        await tracker.wipe_database()

        assert await tracker.get_all_ids() == []
        assert await tracker.get_events_by_id("X") == []
        await tracker.delete_events_by_id("X")
        await tracker.delete_all_events()
        assert tracker.storage_area_state is StorageAreaState.ABSENT
        assert not area.path.exists()


class TestSequenceLaw:
    """Recorded histories always follow the transition graph."""

    @pytest.mark.asyncio
    async def test_random_walk_is_legal(self, tracker):
        attempts = ["pause", "start", "resume", "start", "pause", "pause", "finish",
                    "resume", "start", "resume", "pause", "finish", "finish", "start"]
        for event_type in attempts:
            try:
                await tracker.add_event("X", event_type)
            except SequenceViolation:
                pass

        types = [e.type.value for e in await tracker.search_event_by_query("id == $0", "X")]
        assert types[0] == "start"
        for previous, current in zip(types, types[1:]):
            if current == "pause":
                assert previous in ("start", "resume")
            if current == "resume":
                assert previous == "pause"
            if previous == "finish":
                assert current == "finish"
