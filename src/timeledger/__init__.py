"""timeledger - An embeddable time-tracking ledger."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("timeledger")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from timeledger.codec import EventQuery
from timeledger.errors import (
    EventTrackerError,
    InvalidArgument,
    InvalidEventType,
    InvalidId,
    NotTracked,
    OutOfOrder,
    SequenceViolation,
    StorageError,
)
from timeledger.lifecycle import LifecycleSignalSource, LocalSignalSource
from timeledger.store import (
    DirectoryStorageArea,
    EventStore,
    JsonEventStore,
    MemoryEventStore,
    SqliteEventStore,
    StorageArea,
)
from timeledger.tracker import EventTracker
from timeledger.types import (
    AddEventResult,
    BulkAddResult,
    DurationBreakdown,
    Event,
    EventType,
    TimeRange,
)

__all__ = [
    # Tracker
    "EventTracker",
    # Types
    "Event",
    "EventType",
    "EventQuery",
    "AddEventResult",
    "BulkAddResult",
    "DurationBreakdown",
    "TimeRange",
    # Stores
    "EventStore",
    "StorageArea",
    "MemoryEventStore",
    "JsonEventStore",
    "SqliteEventStore",
    "DirectoryStorageArea",
    # Lifecycle
    "LifecycleSignalSource",
    "LocalSignalSource",
    # Errors
    "EventTrackerError",
    "InvalidId",
    "InvalidEventType",
    "SequenceViolation",
    "OutOfOrder",
    "NotTracked",
    "InvalidArgument",
    "StorageError",
]
