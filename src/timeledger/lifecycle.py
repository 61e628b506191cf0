"""Host lifecycle signals.

The tracker subscribes to a LifecycleSignalSource and pauses every active
subject when the host moves from an active state to the background.
"""

import logging
import re
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Called with the new state token
Listener = Callable[[str], None]


@runtime_checkable
class LifecycleSignalSource(Protocol):
    """Anything that reports host state changes to listeners."""

    def add_listener(self, listener: Listener) -> None: ...

    def remove_listener(self, listener: Listener) -> None: ...


class LocalSignalSource:
    """In-process lifecycle source; the host calls emit() on state changes."""

    def __init__(self, state: str = "active") -> None:
        self.state = state
        self._listeners: list[Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, state: str) -> None:
        """Record the new state and notify every listener."""
        self.state = state
        for listener in list(self._listeners):
            listener(state)


class BackgroundTransitionDetector:
    """Remembers the last state token and spots active-to-background moves.

    Example:
        detector = BackgroundTransitionDetector(initial="active")
        detector.observe("background")  # True
        detector.observe("background")  # False, was not active
    """

    def __init__(
        self,
        initial: str | None = None,
        active_pattern: str = r"active|foreground",
        background_pattern: str = r"background",
    ) -> None:
        self._previous = initial or ""
        self._active = re.compile(active_pattern)
        self._background = re.compile(background_pattern)

    @property
    def previous(self) -> str:
        return self._previous

    def observe(self, state: str) -> bool:
        """Record state; return True if it is an active-to-background move."""
        previous, self._previous = self._previous, state or ""
        moved = bool(self._active.search(previous)) and bool(self._background.search(self._previous))
        if moved:
            logger.debug(f"Lifecycle moved from {previous!r} to {state!r}")
        return moved
