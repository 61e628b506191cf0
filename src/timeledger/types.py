"""Type definitions for the time-tracking ledger.

This module defines the Pydantic models used for events, derived
durations and bulk operation results.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Lifecycle event kinds.

    Attributes:
        START: Tracking begins for a subject.
        PAUSE: Tracking is suspended.
        RESUME: Tracking continues after a pause.
        FINISH: Tracking is complete.
    """

    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    FINISH = "finish"


class StorageAreaState(str, Enum):
    """Cached reflection of whether the storage area exists."""

    UNKNOWN = "unknown"
    ABSENT = "absent"
    PRESENT = "present"


class Event(BaseModel):
    """An immutable, timestamped lifecycle record for a subject.

    Attributes:
        id: Tracking subject. Shared by all events of the subject.
        type: Lifecycle event kind.
        time: ISO-8601 UTC timestamp.
        payload: Arbitrary caller data. Holds the raw stored string when it
            could not be deserialized.
    """

    model_config = {"frozen": True}

    id: str = Field(..., description="Tracking subject")
    type: EventType = Field(..., description="Lifecycle event kind")
    time: str = Field(..., description="ISO-8601 UTC timestamp")
    payload: dict[str, Any] | str = Field(
        default_factory=dict,
        description="Caller data, or the raw stored string if unparsable"
    )


class DurationBreakdown(BaseModel):
    """A duration split into calendar-aware components."""

    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0


class TimeRange(BaseModel):
    """Start and finish timestamps of a subject.

    Either boundary is None when it is absent or could not be looked up.
    """

    start_time: str | None = None
    finish_time: str | None = None


class AddEventResult(BaseModel):
    """Identity of a newly recorded event."""

    id: str
    time: str


class BulkError(BaseModel):
    """A per-id failure of a bulk operation."""

    id: Any
    error: str


class BulkAddResult(BaseModel):
    """Outcome of adding the same event type to many ids.

    Attributes:
        created_events: Events recorded successfully.
        errors: Ids that failed, with the error message.
    """

    created_events: list[AddEventResult] = Field(default_factory=list)
    errors: list[BulkError] = Field(default_factory=list)
