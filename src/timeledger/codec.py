"""Event construction, store serialization and typed filter queries.

Events are stored as flat records ``{id, type, time, payload}`` where the
payload is a JSON string. Filters are kept as a small typed structure
(EventQuery) and only rendered to the ``field == $N`` expression syntax at
the boundary of stores that need it.
"""

import json
import re
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from timeledger.errors import InvalidArgument
from timeledger.sequence import normalize_event_type
from timeledger.timing import format_iso, is_valid_iso, now_iso, parse_iso
from timeledger.types import Event, EventType

EventField = Literal["id", "type", "time", "payload"]

_CLAUSE = re.compile(
    r"^\s*(?P<field>\w+)\s*(?P<op>==|=|LIKE\[c\])\s*\$(?P<index>\d+)\s*$",
    re.IGNORECASE,
)


def create_event(
    event_id: str,
    event_type: EventType | str,
    time: Any = None,
    payload: Any = None,
) -> Event:
    """Build a new event.

    A missing or malformed time is replaced by the current time, and a
    payload that is not a mapping is replaced by an empty one.
    """
    valid_time = format_iso(parse_iso(time)) if is_valid_iso(time) else now_iso()
    valid_payload = dict(payload) if isinstance(payload, dict) else {}
    return Event(
        id=event_id,
        type=normalize_event_type(event_type),
        time=valid_time,
        payload=valid_payload,
    )


def serialize_payload(payload: Any) -> str:
    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return json.dumps({})


def deserialize_payload(raw: Any) -> dict[str, Any] | str:
    """Parse a stored payload, returning the raw value if it can't be parsed."""
    if isinstance(raw, dict):
        return raw
    if raw is None:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return raw if isinstance(raw, str) else str(raw)
    return parsed if isinstance(parsed, dict) else raw


def to_record(event: Event) -> dict[str, str]:
    """Convert an event to the store's flat representation."""
    return {
        "id": event.id,
        "type": event.type.value,
        "time": event.time,
        "payload": serialize_payload(event.payload),
    }


def from_record(record: dict[str, Any]) -> Event:
    """Convert a stored record back to an event."""
    time = record.get("time")
    if not isinstance(time, str):
        time = format_iso(time) if time is not None else ""
    return Event(
        id=record["id"],
        type=normalize_event_type(record["type"]),
        time=time,
        payload=deserialize_payload(record.get("payload")),
    )


def to_wire(event: Event) -> dict[str, Any]:
    """JSON-ready representation ``{id, type, time, payload}``."""
    return event.model_dump(mode="json")


class Operator(str, Enum):
    """Filter comparison operators."""

    EQ = "=="
    ILIKE = "LIKE[c]"


class Condition(BaseModel):
    """A single ``field <op> value`` comparison."""

    model_config = {"frozen": True}

    field: EventField
    operator: Operator = Operator.EQ
    value: Any

    @field_validator("value")
    @classmethod
    def normalize_type_value(cls, value: Any, info: ValidationInfo) -> Any:
        # Types are stored lowercase and accepted in any case
        if info.data.get("field") != "type":
            return value
        if isinstance(value, Enum):
            value = value.value
        return value.strip().lower() if isinstance(value, str) else value

    def matches(self, record: dict[str, Any]) -> bool:
        actual = record.get(self.field)
        if isinstance(actual, Enum):
            actual = actual.value
        expected = self.value.value if isinstance(self.value, Enum) else self.value
        if self.operator is Operator.EQ:
            return actual == expected
        if actual is None:
            return False
        return like_pattern(str(expected)).fullmatch(str(actual)) is not None


def like_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a case-insensitive LIKE pattern (``*`` and ``?`` wildcards)."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


class EventQuery(BaseModel):
    """A conjunction of conditions over event records.

    An empty query matches every record.
    """

    model_config = {"frozen": True}

    conditions: tuple[Condition, ...] = Field(default_factory=tuple)

    @classmethod
    def for_subject(cls, event_id: str | None = None, event_type: EventType | str | None = None) -> "EventQuery":
        """Build the query selecting a subject's events, optionally of one type."""
        conditions = []
        if isinstance(event_id, str) and event_id:
            conditions.append(Condition(field="id", value=event_id))
        if event_type:
            conditions.append(Condition(field="type", value=normalize_event_type(event_type).value))
        return cls(conditions=tuple(conditions))

    @classmethod
    def parse(cls, expression: str, *values: Any) -> "EventQuery":
        """Parse a filter expression such as ``id == $0 && type LIKE[c] $1``.

        Raises:
            InvalidArgument: On a malformed clause, an unknown field or a
                placeholder without a bound value.
        """
        if not expression or not expression.strip():
            return cls()

        conditions = []
        for clause in expression.split("&&"):
            match = _CLAUSE.match(clause)
            if match is None:
                raise InvalidArgument(f"Invalid filter clause: {clause.strip()!r}")
            field = match.group("field").lower()
            if field not in ("id", "type", "time", "payload"):
                raise InvalidArgument(f"Unknown filter field: {field!r}")
            index = int(match.group("index"))
            if index >= len(values):
                raise InvalidArgument(f"No value bound to ${index}")
            operator = Operator.ILIKE if match.group("op").upper() == "LIKE[C]" else Operator.EQ
            conditions.append(Condition(field=field, operator=operator, value=values[index]))
        return cls(conditions=tuple(conditions))

    @property
    def is_empty(self) -> bool:
        return not self.conditions

    def matches(self, record: dict[str, Any]) -> bool:
        return all(condition.matches(record) for condition in self.conditions)

    def to_expression(self) -> tuple[str, list[Any]]:
        """Render as ``(expression, values)`` with positional placeholders."""
        clauses = []
        values = []
        for index, condition in enumerate(self.conditions):
            clauses.append(f"{condition.field} {condition.operator.value} ${index}")
            values.append(condition.value)
        return " && ".join(clauses), values
