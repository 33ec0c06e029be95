"""
Change notifications: a minimal event emitter.

``event(listener)`` returns a disposer, the same contract as a transport's
``add_event_handler``. Listener errors are logged and do not stop delivery to
the remaining listeners.
"""

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventEmitter(Generic[T]):
    def __init__(self, name: str = "event"):
        self._name = name
        self._listeners: list[Callable[[T], None]] = []

    def event(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Subscribe. Returns a cleanup function."""
        self._listeners.append(listener)

        def dispose() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return dispose

    __call__ = event

    def fire(self, payload: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s failed", self._name)

    def dispose(self) -> None:
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
