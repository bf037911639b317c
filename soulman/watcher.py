"""File system watcher for Soulman.

Uses the watchdog library to notice audio files arriving in the download
folders and wakes the scan worker so the first sighting (which starts the
settle timer) happens promptly instead of at the next poll tick.  The
watcher never moves anything itself; stability is still decided by the
scanner.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from typing import Any

from watchdog.events import (
    FileCreatedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from soulman.platform_utils import folder_key

logger = logging.getLogger(__name__)


class NewFileHandler(FileSystemEventHandler):
    """Watchdog handler that calls *on_new_file* for allow-listed arrivals."""

    def __init__(self, on_new_file: Callable[[str], None], extensions: list[str] | None = None):
        super().__init__()
        self._on_new_file = on_new_file
        self._extensions = [e.lower() for e in extensions or []]

    def update_extensions(self, extensions: list[str]) -> None:
        self._extensions = [e.lower() for e in extensions]

    def _should_notify(self, path: str) -> bool:
        if not self._extensions:
            return False
        ext = os.path.splitext(path)[1].lower()
        return ext in self._extensions

    def _notify(self, path: str) -> None:
        if not self._should_notify(path):
            return
        try:
            self._on_new_file(path)
        except Exception:
            logger.exception("Error in new-file callback for %s", path)

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        """Handle a new file creation event."""
        if event.is_directory:
            return
        self._notify(os.fsdecode(event.src_path))

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """Handle a rename into the watched tree (e.g. ``.part`` -> ``.flac``)."""
        if event.is_directory:
            return
        self._notify(os.fsdecode(event.dest_path))


class SourceWatcher:
    """Keeps a watchdog observer scheduled on the current set of source folders.

    Usage:
        watcher = SourceWatcher(worker.nudge, extensions=[".mp3", ".flac"])
        watcher.sync(["/downloads"])
        ...
        watcher.stop()
    """

    def __init__(self, on_new_file: Callable[[str], None], extensions: list[str] | None = None):
        self._handler = NewFileHandler(on_new_file, extensions)
        self._observer: Any | None = None
        self._watches: dict[str, Any] = {}
        self._lock = threading.Lock()

    # ---- lifecycle ----

    def sync(self, sources: list[str], extensions: list[str] | None = None) -> None:
        """Watch exactly *sources* (recursively), adding and dropping as needed."""
        if extensions is not None:
            self._handler.update_extensions(extensions)
        with self._lock:
            if self._observer is None:
                observer = Observer()
                observer.daemon = True
                observer.start()
                self._observer = observer

            wanted = {folder_key(s): os.path.abspath(s) for s in sources}
            for key in list(self._watches):
                if key not in wanted:
                    self._observer.unschedule(self._watches.pop(key))
                    logger.info("Stopped watching %s", key)
            for key, path in wanted.items():
                if key in self._watches or not os.path.isdir(path):
                    continue
                try:
                    self._watches[key] = self._observer.schedule(
                        self._handler, path, recursive=True
                    )
                    logger.info("Watching '%s' for new files", path)
                except OSError as exc:
                    logger.warning("Could not watch %s: %s", path, exc)

    def stop(self) -> None:
        """Stop watching and release resources."""
        with self._lock:
            if self._observer:
                self._observer.stop()
                self._observer.join(timeout=5)
                self._observer = None
            self._watches.clear()
        logger.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently active."""
        return self._observer is not None and self._observer.is_alive()

    @property
    def watched_folders(self) -> list[str]:
        with self._lock:
            return list(self._watches)
