"""Error hierarchy for the time-tracking ledger.

Validation errors (InvalidId, InvalidEventType, SequenceViolation,
InvalidArgument) are raised before any store call. StorageError wraps
failures coming from an event store or a storage area.
"""


class EventTrackerError(Exception):
    """Base class for all ledger errors.

    Accepts either a message or another exception; in the latter case the
    underlying message is preserved.
    """

    def __init__(self, error: BaseException | str = "") -> None:
        message = str(error) if isinstance(error, BaseException) else error
        super().__init__(message)
        self.message = message


class InvalidId(EventTrackerError):
    """The tracking id is missing, empty or not a string."""

    def __init__(self, error: BaseException | str = "ID is invalid or null") -> None:
        super().__init__(error)


class InvalidEventType(EventTrackerError):
    """The event type is not one of start, pause, resume, finish."""

    def __init__(self, error: BaseException | str = "Event type is invalid") -> None:
        super().__init__(error)


class SequenceViolation(EventTrackerError):
    """The event type is not allowed after the subject's current state."""

    reason = "sequence violation"

    def __init__(self, error: BaseException | str | None = None) -> None:
        super().__init__(error if error is not None else f"Forbidden event: {self.reason}")


class DuplicateStart(SequenceViolation):
    reason = "only one start record is allowed"


class AlreadyTracked(SequenceViolation):
    reason = "there are already records stored"


class AlreadyPaused(SequenceViolation):
    reason = "record is already paused"


class CannotPause(SequenceViolation):
    reason = "record can't be paused"


class AlreadyResumed(SequenceViolation):
    reason = "the record is already being continued"


class NotPaused(SequenceViolation):
    reason = "record wasn't paused"


class NotStarted(SequenceViolation):
    reason = "record wasn't started"


class AlreadyFinished(SequenceViolation):
    reason = "record is already finished"


class OutOfOrder(SequenceViolation):
    """The event time is earlier than the subject's last recorded event."""

    reason = "time precedes last record"


class NotTracked(EventTrackerError):
    """No start event exists for an id that requires one."""

    def __init__(self, error: BaseException | str = "ID was not tracked") -> None:
        super().__init__(error)


class InvalidArgument(EventTrackerError):
    """A bulk operation received something other than a list of ids."""

    def __init__(self, error: BaseException | str = "an array of ids was expected") -> None:
        super().__init__(error)


class StorageError(EventTrackerError):
    """Failure reported by the event store or the storage area."""
