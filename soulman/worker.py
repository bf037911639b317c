"""
Background scan loop for Soulman.

Runs :meth:`DownloadScanner.scan` on a daemon thread every poll interval,
publishes a move notification after any cycle that moved files, and stops
promptly when asked.
"""

from __future__ import annotations

import logging
import threading
import time

from soulman.config import MIN_POLL_SECONDS, Config
from soulman.notify import MoveNotificationBroker
from soulman.scanner import DownloadScanner
from soulman.watcher import SourceWatcher

logger = logging.getLogger(__name__)


class ScanWorker:
    """
    Owns the scan-sleep loop.

    Parameters
    ----------
    config : Config
        Read afresh before every cycle.
    scanner : DownloadScanner
        Runs the cycles; owns the stability state.
    broker : MoveNotificationBroker
        Receives ``(moved, destination)`` after cycles that moved files.
    watch : bool
        If True, a watchdog observer wakes the loop early when new audio
        files appear (never more often than every ``MIN_POLL_SECONDS``).
    """

    def __init__(
        self,
        config: Config,
        scanner: DownloadScanner,
        broker: MoveNotificationBroker,
        watch: bool = True,
    ):
        self._config = config
        self._scanner = scanner
        self._broker = broker
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._watcher = SourceWatcher(self.nudge) if watch else None

    # ---- lifecycle ----

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="ScanWorker")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """
        Signal the loop to exit and wait for the current cycle to finish.

        The cycle checks the stop signal between files, so after *timeout*
        the only work left is the move already under way.  That move is
        always waited for, so a cross-volume copy is never cut short.
        """
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.info("Waiting for the move in progress to finish")
                self._thread.join()
            self._thread = None
        if self._watcher is not None:
            self._watcher.stop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def nudge(self, path: str | None = None) -> None:
        """Ask for a scan sooner than the next poll tick."""
        if path:
            logger.debug("New file noticed: %s", path)
        self._wake.set()

    # ---- loop ----

    def run_once(self) -> int:
        """Run a single cycle with the current settings and publish the result."""
        try:
            self._config.refresh()
            settings = self._config.snapshot()
            clones = self._config.clone_folders
        except Exception:
            logger.exception("Could not read settings; skipping this cycle")
            return 0

        if self._watcher is not None:
            try:
                self._watcher.sync(
                    self._scanner.gather_sources(settings),
                    list(settings.allowed_extensions),
                )
            except Exception:
                logger.exception("Could not update folder watches")

        moved = 0
        try:
            moved = self._scanner.scan(settings, clones, self._stop)
        except Exception:
            logger.exception("Scan failed")

        if moved > 0:
            logger.info("Moved %d file(s) into %s", moved, settings.destination_root)
            self._broker.publish(moved, settings.destination_root or "<unset>")
        return moved

    def _poll_interval(self) -> float:
        try:
            return self._config.snapshot().poll_interval
        except Exception:
            logger.exception("Could not read poll interval; using %ss", MIN_POLL_SECONDS)
            return MIN_POLL_SECONDS

    def _run(self) -> None:
        try:
            settings = self._config.snapshot()
            logger.info(
                "Watching %s -> %s; poll %ss, settle %ss",
                ", ".join(settings.source_paths) or "<unset>",
                settings.destination_root or "<unset>",
                settings.poll_interval,
                settings.settle_window,
            )
        except Exception:
            logger.exception("Could not read settings")
        while not self._stop.is_set():
            started = time.monotonic()
            self._wake.clear()
            self.run_once()

            self._wake.wait(timeout=self._poll_interval())
            if self._stop.is_set():
                break
            # Woken early by a new file: keep cycles at least the poll floor apart
            gap = MIN_POLL_SECONDS - (time.monotonic() - started)
            if gap > 0:
                self._stop.wait(timeout=gap)
        logger.info("Scan worker stopping")
