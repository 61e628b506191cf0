"""Pause every active subject when the host goes to the background."""

import logging
from typing import TYPE_CHECKING

from timeledger.errors import EventTrackerError
from timeledger.types import AddEventResult, EventType

if TYPE_CHECKING:
    from timeledger.tracker import EventTracker

logger = logging.getLogger(__name__)

# Subjects in these states are left alone
SETTLED_STATES = frozenset({EventType.PAUSE, EventType.FINISH})


class BackgroundSweeper:
    """Force a pause on every subject that is currently running.

    Subjects are processed one at a time. A failure for one subject is
    logged and skipped; only a failure to enumerate the subjects aborts the
    sweep.
    """

    def __init__(self, tracker: "EventTracker") -> None:
        self._tracker = tracker

    async def sweep(self) -> list[AddEventResult]:
        """Pause all active subjects.

        Returns:
            The pause events that were recorded.

        Raises:
            StorageError: If the subject ids can't be listed.
        """
        ids = await self._tracker.get_all_ids()
        paused: list[AddEventResult] = []

        for event_id in ids:
            try:
                last = await self._tracker.get_last_event_by_id(event_id)
            except EventTrackerError as e:
                logger.warning(f"Skipping {event_id!r}: could not read last event: {e}")
                continue

            if last is None or last.type in SETTLED_STATES:
                continue

            try:
                result = await self._tracker.add_event(event_id, EventType.PAUSE)
            except EventTrackerError as e:
                logger.warning(f"Skipping {event_id!r}: could not pause: {e}")
                continue

            paused.append(result)

        logger.info(f"Background sweep paused {len(paused)} of {len(ids)} subjects")
        return paused
