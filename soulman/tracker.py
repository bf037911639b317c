"""Stability tracking for Soulman.

Decides, scan by scan, whether a download is still being written or has
sat at the same size long enough to be moved.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

UNSTABLE = "unstable"
STABLE = "stable"


@dataclass(frozen=True)
class FileObservation:
    """Last size seen for a file and when that size first appeared."""
    size: int
    first_seen: float


def _key(path: str | os.PathLike[str]) -> str:
    return os.path.abspath(os.fspath(path)).casefold()


class StabilityTracker:
    """Tracks files until they have been stable (unchanged) for a given duration.

    A file is stable once it has been seen in two or more scans at the same
    size and that size is at least ``settle_seconds`` old.  Any size change
    restarts the clock.  Paths compare case-insensitively.
    """

    def __init__(self, settle_seconds: float, clock: Callable[[], float] = time.time):
        self._settle_seconds = settle_seconds
        self._clock = clock
        self._observed: dict[str, FileObservation] = {}
        self._lock = threading.Lock()

    @property
    def settle_seconds(self) -> float:
        return self._settle_seconds

    @settle_seconds.setter
    def settle_seconds(self, value: float) -> None:
        self._settle_seconds = max(0.0, float(value))

    def now(self) -> float:
        return self._clock()

    def reconcile(self, present: Iterable[str | os.PathLike[str]]) -> int:
        """Drop every tracked file missing from *present*.  Returns the count dropped."""
        keep = {_key(p) for p in present}
        with self._lock:
            gone = [k for k in self._observed if k not in keep]
            for k in gone:
                del self._observed[k]
        if gone:
            logger.debug("Stopped tracking %d vanished file(s)", len(gone))
        return len(gone)

    def observe(self, path: str | os.PathLike[str], size: int, now: float | None = None) -> str:
        """Record *size* for *path* and return ``STABLE`` or ``UNSTABLE``."""
        if now is None:
            now = self._clock()
        key = _key(path)
        with self._lock:
            previous = self._observed.get(key)
            if previous is None:
                self._observed[key] = FileObservation(size, now)
                logger.debug("Tracking %s (size=%d)", path, size)
                return UNSTABLE
            if previous.size != size:
                # still changing, restart the window
                self._observed[key] = FileObservation(size, now)
                logger.debug("Size changed for %s (%d -> %d)", path, previous.size, size)
                return UNSTABLE
            if now - previous.first_seen < self._settle_seconds:
                return UNSTABLE
        return STABLE

    def forget(self, path: str | os.PathLike[str]) -> None:
        """Stop tracking *path* (after it has been moved)."""
        with self._lock:
            self._observed.pop(_key(path), None)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        with self._lock:
            return _key(path) in self._observed

    def __len__(self) -> int:
        with self._lock:
            return len(self._observed)
