"""Legal event ordering for a tracked subject.

A subject's history must walk this graph:

    (none) --start--> START --pause--> PAUSE --resume--> RESUME
    START/RESUME/PAUSE --finish--> FINISH --finish--> FINISH

RESUME behaves like START for transitions but is reported distinctly.
"""

from typing import Any

from timeledger.errors import (
    AlreadyFinished,
    AlreadyPaused,
    AlreadyResumed,
    AlreadyTracked,
    CannotPause,
    DuplicateStart,
    InvalidEventType,
    NotPaused,
    NotStarted,
    SequenceViolation,
)
from timeledger.types import EventType

ACTIVE_STATES = frozenset({EventType.START, EventType.RESUME})


def normalize_event_type(value: Any) -> EventType:
    """Convert a case-insensitive event type name to an EventType.

    Raises:
        InvalidEventType: If the value is not a known event type.
    """
    if isinstance(value, EventType):
        return value
    if not isinstance(value, str):
        raise InvalidEventType()
    try:
        return EventType(value.strip().lower())
    except ValueError:
        raise InvalidEventType() from None


def validate_sequence(event_type: Any, previous: Any = None) -> EventType:
    """Check that event_type may follow previous.

    Args:
        event_type: The type of the event about to be appended.
        previous: The subject's current state, or None if it has no events.

    Returns:
        The normalized event type.

    Raises:
        InvalidEventType: Unknown event type.
        SequenceViolation: The transition is not allowed.
    """
    new = normalize_event_type(event_type)
    prev = normalize_event_type(previous) if previous else None

    if prev is EventType.FINISH and new is not EventType.FINISH:
        raise AlreadyFinished()

    if new is EventType.START:
        if prev is EventType.START:
            raise DuplicateStart()
        if prev is not None:
            raise AlreadyTracked()
    elif new is EventType.PAUSE:
        if prev is EventType.PAUSE:
            raise AlreadyPaused()
        if prev not in ACTIVE_STATES:
            raise CannotPause()
    elif new is EventType.RESUME:
        if prev is EventType.RESUME:
            raise AlreadyResumed()
        if prev is not EventType.PAUSE:
            raise NotPaused()
    elif new is EventType.FINISH:
        if prev is None:
            raise NotStarted()

    return new


def is_allowed(event_type: Any, previous: Any = None) -> bool:
    """Return True if event_type may follow previous."""
    try:
        validate_sequence(event_type, previous)
    except (InvalidEventType, SequenceViolation):
        return False
    return True
