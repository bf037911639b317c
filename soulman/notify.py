"""Move notifications for Soulman.

The scan worker publishes ``(moved_count, destination_root)`` once per
cycle that moved something; the tray (or anything else) subscribes.
"""

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

MoveHandler = Callable[[int, str], None]


class MoveNotificationBroker:
    """Thread-safe observer list for move notifications."""

    def __init__(self) -> None:
        self._handlers: list[MoveHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: MoveHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def unsubscribe(self, handler: MoveHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, count: int, destination: str) -> None:
        """Call every subscriber; a failing subscriber does not stop the rest."""
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(count, destination)
            except Exception:
                logger.exception("Error in move notification handler")
