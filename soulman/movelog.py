"""
Move history for Soulman.

Every file the scanner files away produces an immutable
:class:`MoveRecord`.  :class:`MoveLog` keeps the recent ones in a JSON
file and drops anything older than the retention window.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MoveRecord:
    """Record of a single completed move."""
    timestamp: datetime
    source_path: str
    destination_path: str
    clone_destinations: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "source_path": self.source_path,
            "destination_path": self.destination_path,
            "clone_destinations": list(self.clone_destinations),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MoveRecord":
        stamp = datetime.fromisoformat(data["timestamp"])
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return cls(
            timestamp=stamp,
            source_path=str(data["source_path"]),
            destination_path=str(data["destination_path"]),
            clone_destinations=tuple(str(c) for c in data.get("clone_destinations") or ()),
        )


class MoveSink(Protocol):
    """Anything the scanner can hand finished moves to."""

    def add(self, record: MoveRecord) -> None:
        """Accept one completed move."""
        ...


class MoveLog:
    """
    JSON-backed move history with time-based retention.

    Parameters
    ----------
    path : Path
        JSON file holding the records.
    retention : timedelta
        Records older than this are dropped on every add and read.
    clock : callable, optional
        Returns the current aware datetime; used by tests.
    """

    def __init__(self, path: Path, retention: timedelta = DEFAULT_RETENTION, clock=_utcnow):
        self._path = Path(path)
        self._retention = retention
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: list[MoveRecord] = []
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def add(self, record: MoveRecord) -> None:
        """Append *record*, prune expired entries and save."""
        with self._lock:
            self._prune()
            self._entries.append(record)
            self._save()

    def recent(self) -> list[MoveRecord]:
        """Return the records still inside the retention window, oldest first."""
        with self._lock:
            self._prune()
            return list(self._entries)

    def ensure_file(self) -> Path:
        """Create the JSON file if it is missing and return its path."""
        with self._lock:
            if not self._path.exists():
                self._save()
            return self._path

    def _prune(self) -> None:
        cutoff = self._clock() - self._retention
        self._entries = [e for e in self._entries if e.timestamp >= cutoff]

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, encoding="utf-8") as fh:
                raw = json.load(fh)
            self._entries = [MoveRecord.from_dict(item) for item in raw]
            self._prune()
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Failed to load move log (%s); starting fresh", exc)
            self._entries = []

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump([e.to_dict() for e in self._entries], fh, indent=2)
        except OSError as exc:
            logger.warning("Failed to save move log to %s: %s", self._path, exc)
