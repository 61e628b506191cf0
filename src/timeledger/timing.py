"""Duration arithmetic over event timestamps.

All functions are pure. Timestamps are ISO-8601 UTC strings (a trailing
``Z`` or an explicit offset) or aware datetimes. Calendar-day comparisons
use UTC date components.

Formatted durations of a single start/end pair follow a same-day rule:
when both instants fall on the same UTC date, ``days`` is 0 and ``hours``
keeps only the hours within the day, even if the raw span is longer.
Aggregated durations (stopped, net) are not anchored to one pair of
instants and use plain ``days = hours // 24``.
"""

import re
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from timeledger.errors import NotTracked
from timeledger.types import DurationBreakdown, Event, EventType

ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d{3}|\.\d{6})?(?:Z|[+-]\d{2}:\d{2})$")

_MS = timedelta(milliseconds=1)

Instant = str | datetime
Duration = int | DurationBreakdown


def parse_iso(value: Instant) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the value is not a valid timestamp.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        if not isinstance(value, str) or not ISO_PATTERN.match(value):
            raise ValueError(f"Invalid ISO-8601 timestamp: {value!r}")
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def is_valid_iso(value: Any) -> bool:
    """Return True if value is a parsable ISO-8601 timestamp string."""
    if not isinstance(value, str):
        return False
    try:
        parse_iso(value)
    except ValueError:
        return False
    return True


def now_iso() -> str:
    """Current UTC time with millisecond precision."""
    return format_iso(datetime.now(timezone.utc))


def breakdown(milliseconds: int, same_day: bool = False) -> DurationBreakdown:
    """Split a millisecond count into days, hours, minutes and seconds.

    Args:
        milliseconds: Duration in milliseconds.
        same_day: Force days to 0 (the hours within the day are kept).
    """
    seconds = milliseconds // 1000
    hours = seconds // 3600
    return DurationBreakdown(
        days=0 if same_day else hours // 24,
        hours=hours % 24,
        minutes=(seconds % 3600) // 60,
        seconds=seconds % 60,
    )


def to_milliseconds(value: Duration) -> int:
    """Convert a breakdown (or a raw millisecond count) back to milliseconds."""
    if isinstance(value, DurationBreakdown):
        return (((value.days * 24 + value.hours) * 60 + value.minutes) * 60 + value.seconds) * 1000
    return int(value)


def duration(start: Instant, end: Instant, formatted: bool = True) -> Duration:
    """Compute ``end - start``.

    A negative result is returned as-is; it signals a caller logic error.

    Args:
        start: Start instant.
        end: End instant.
        formatted: Return a DurationBreakdown instead of milliseconds.
    """
    start_dt = parse_iso(start)
    end_dt = parse_iso(end)
    milliseconds = (end_dt - start_dt) // _MS
    if not formatted:
        return milliseconds
    return breakdown(milliseconds, same_day=start_dt.date() == end_dt.date())


def _now(now: Instant | None) -> datetime:
    return parse_iso(now) if now is not None else datetime.now(timezone.utc)


def _first(events: Sequence[Event], event_type: EventType) -> Event | None:
    return next((e for e in events if e.type == event_type), None)


def _last(events: Sequence[Event], event_type: EventType) -> Event | None:
    return next((e for e in reversed(events) if e.type == event_type), None)


def elapsed(
    events: Sequence[Event],
    formatted: bool = True,
    now: Instant | None = None,
) -> Duration:
    """Wall-clock span from the start event to the last finish event.

    Without a finish event the span runs until now.

    Raises:
        NotTracked: If there is no start event.
    """
    start = _first(events, EventType.START) if events else None
    if start is None:
        raise NotTracked()
    finish = _last(events, EventType.FINISH)
    end = finish.time if finish is not None else _now(now)
    return duration(start.time, end, formatted)


def elapsed_between(
    start: Instant | None = None,
    finish: Instant | None = None,
    formatted: bool = True,
    now: Instant | None = None,
) -> Duration:
    """Span between two timestamps; zero when start is missing."""
    if not start:
        return DurationBreakdown() if formatted else 0
    return duration(start, finish or _now(now), formatted)


def stopped(
    events: Sequence[Event],
    formatted: bool = True,
    now: Instant | None = None,
) -> Duration:
    """Total time spent paused.

    Walks events in the given order. Each pause that is not immediately
    followed by another pause ends at the next resume or finish event, or
    at now when it is still open.
    """
    if not isinstance(events, (list, tuple)):
        events = []

    total = 0
    current = _now(now)
    for index, event in enumerate(events):
        if event.type != EventType.PAUSE:
            continue
        following = events[index + 1] if index + 1 < len(events) else None
        if following is not None and following.type == EventType.PAUSE:
            continue
        if following is not None and following.type in (EventType.RESUME, EventType.FINISH):
            end: Instant = following.time
        else:
            end = current
        total += duration(event.time, end, formatted=False)

    return breakdown(total) if formatted else total


def net(
    events: Sequence[Event],
    formatted: bool = True,
    now: Instant | None = None,
) -> Duration:
    """Elapsed time minus stopped time, floored at zero.

    Raises:
        NotTracked: If there is no start event.
    """
    current = _now(now)
    active = elapsed(events, formatted=False, now=current) - stopped(events, formatted=False, now=current)
    active = max(0, active)
    return breakdown(active) if formatted else active
