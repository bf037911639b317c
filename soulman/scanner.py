"""
Download scanner for Soulman.

One call to :meth:`DownloadScanner.scan` is one scan cycle: gather the
source folders, list their audio files, let the stability tracker decide
which downloads have finished, and move each finished file into the
library under ``Artist/Album/NN - Title.ext``.  Moved files are copied to
every clone folder and recorded in the move log.

Per-file problems are logged and skipped; nothing raised inside a cycle
reaches the caller.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from soulman.config import SourceSettings
from soulman.metadata import read_metadata
from soulman.movelog import MoveRecord, MoveSink
from soulman.paths import (
    build_destination_path,
    ensure_unique_path,
    is_sub_path,
    relative_clone_path,
)
from soulman.platform_utils import folder_key
from soulman.tracker import STABLE, StabilityTracker

logger = logging.getLogger(__name__)

# Failure classes for per-file move errors
ERROR_ACCESS_DENIED = "access-denied"
ERROR_IO = "io"
ERROR_UNEXPECTED = "unexpected"


def classify_error(exc: BaseException) -> str:
    """Map a per-file exception onto the failure class used for logging."""
    if isinstance(exc, PermissionError):
        return ERROR_ACCESS_DENIED
    if isinstance(exc, (OSError, shutil.Error)):
        return ERROR_IO
    return ERROR_UNEXPECTED


def replicate(
    final_path: str,
    destination_root: str,
    clone_roots: Iterable[str],
) -> list[str]:
    """
    Copy *final_path* into every clone root, mirroring its library path.

    Existing files in a clone are overwritten.  A clone that fails is
    logged and left out of the result; blank roots are ignored.

    Returns the clone paths that were written.
    """
    roots = [r for r in clone_roots if r and r.strip()]
    if not roots:
        return []

    relative = relative_clone_path(final_path, destination_root)
    written: list[str] = []
    for root in roots:
        try:
            clone_path = os.path.join(os.path.abspath(root.strip()), relative)
            os.makedirs(os.path.dirname(clone_path), exist_ok=True)
            shutil.copy2(final_path, clone_path)
            logger.info("Cloned %s -> %s", final_path, clone_path)
            written.append(clone_path)
        except (OSError, shutil.Error) as exc:
            logger.warning("Failed to clone %s to %s: %s", final_path, root, exc)
    return written


class DownloadScanner:
    """
    Runs scan cycles over the download folders.

    Parameters
    ----------
    move_log : MoveSink, optional
        Receives a :class:`MoveRecord` for every completed move.
    clock : callable
        Time source for the stability tracker (seconds).
    """

    def __init__(
        self,
        move_log: MoveSink | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._move_log = move_log
        self.tracker = StabilityTracker(settle_seconds=0, clock=clock)
        self._cycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Scan cycle
    # ------------------------------------------------------------------

    def scan(
        self,
        settings: SourceSettings,
        clone_destinations: Iterable[str] = (),
        cancel: threading.Event | None = None,
    ) -> int:
        """Run one scan cycle and return the number of files moved."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Scan already in progress; skipping overlapping cycle")
            return 0
        try:
            return self._scan(settings, list(clone_destinations), cancel)
        finally:
            self._cycle_lock.release()

    def _scan(
        self,
        settings: SourceSettings,
        clone_destinations: list[str],
        cancel: threading.Event | None,
    ) -> int:
        if not self._validate(settings):
            return 0

        destination = os.path.abspath(settings.destination_root)
        sources = self.gather_sources(settings)
        if not sources:
            logger.warning("No source folders to scan")
            return 0

        allowed = []
        for source in sources:
            if is_sub_path(destination, source):
                logger.warning(
                    "Destination %s sits under source %s; skipping to avoid loops",
                    destination, source,
                )
                continue
            allowed.append(source)
        if not allowed:
            logger.warning("No valid sources after filtering unsafe destinations")
            return 0

        files = self._enumerate(allowed, settings)

        self.tracker.settle_seconds = settings.settle_window
        self.tracker.reconcile(files)
        if not files:
            return 0

        moved = 0
        now = self.tracker.now()
        for path in files:
            if cancel is not None and cancel.is_set():
                logger.info("Scan cancelled")
                break

            try:
                size = os.stat(path).st_size
            except OSError as exc:
                logger.debug("Skipping %s this cycle: %s", path, exc)
                continue

            if self.tracker.observe(path, size, now) != STABLE:
                continue

            logger.info("File stable: %s", path)
            if self._process_stable_file(path, destination, clone_destinations):
                moved += 1
                self.tracker.forget(path)

        if len(self.tracker):
            logger.debug("%d file(s) still settling", len(self.tracker))
        return moved

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _validate(self, settings: SourceSettings) -> bool:
        if not settings.destination_root or not settings.destination_root.strip():
            logger.warning("Destination path is not configured.")
            return False
        if not any(s and s.strip() for s in settings.source_paths):
            logger.warning("No source folders configured.")
            return False
        try:
            os.makedirs(settings.destination_root, exist_ok=True)
        except OSError as exc:
            logger.error(
                "Cannot create destination %s: %s", settings.destination_root, exc
            )
            return False
        return True

    @staticmethod
    def gather_sources(settings: SourceSettings) -> list[str]:
        """Return existing source folders, absolute and de-duplicated, in order."""
        seen = set()
        sources = []
        for raw in settings.source_paths:
            if not raw or not raw.strip():
                continue
            full = os.path.abspath(raw.strip())
            if not os.path.isdir(full):
                logger.debug("Source folder missing: %s", full)
                continue
            key = folder_key(full)
            if key in seen:
                continue
            seen.add(key)
            sources.append(full)
        return sources

    @staticmethod
    def _enumerate(sources: list[str], settings: SourceSettings) -> list[str]:
        files = []
        for source in sources:
            try:
                for item in Path(source).rglob("*"):
                    if settings.is_supported_file(item.name) and item.is_file():
                        files.append(str(item))
            except OSError as exc:
                logger.warning("Failed to enumerate source %s: %s", source, exc)
        return files

    def _process_stable_file(
        self,
        path: str,
        destination_root: str,
        clone_destinations: list[str],
    ) -> bool:
        """Move one finished download into the library.  Returns True on success."""
        if not os.path.isfile(path):
            logger.debug("File vanished before move: %s", path)
            self.tracker.forget(path)
            return False

        try:
            metadata = read_metadata(path)
            target = build_destination_path(
                destination_root, metadata, os.path.splitext(path)[1]
            )
            os.makedirs(os.path.dirname(target), exist_ok=True)

            final_path = ensure_unique_path(target)
            shutil.move(path, final_path)
            logger.info("Moved %s -> %s", path, final_path)

            clones = replicate(final_path, destination_root, clone_destinations)
            if self._move_log is not None:
                self._move_log.add(MoveRecord(
                    timestamp=datetime.now(timezone.utc),
                    source_path=path,
                    destination_path=final_path,
                    clone_destinations=tuple(clones),
                ))
            return True
        except Exception as exc:
            kind = classify_error(exc)
            if kind == ERROR_ACCESS_DENIED:
                logger.warning("Access denied while moving %s: %s", path, exc)
            elif kind == ERROR_IO:
                logger.warning("IO failure while moving %s: %s", path, exc)
            else:
                logger.exception("Unexpected failure while moving %s", path)
            return False
