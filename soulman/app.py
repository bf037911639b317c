"""
Main application controller for Soulman.

Ties together configuration, the move log, the scan worker, LAN
discovery, and the system tray.  The same object drives the headless
runner in :mod:`soulman.service`, which simply never shows the tray.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import threading
from datetime import timedelta

from soulman import __app_name__, __version__
from soulman.config import Config, get_log_path
from soulman.discovery import InstanceDiscovery
from soulman.movelog import MoveLog
from soulman.notify import MoveNotificationBroker
from soulman.platform_utils import get_move_log_path, open_file_in_default_app
from soulman.scanner import DownloadScanner
from soulman.worker import ScanWorker

logger = logging.getLogger(__name__)


def setup_logging(config: Config) -> None:
    """Configure rotating file log and stderr handler."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    try:
        fh = logging.handlers.RotatingFileHandler(
            str(get_log_path()),
            maxBytes=config.max_log_size_mb * 1024 * 1024,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_logger.addHandler(fh)
    except OSError as exc:
        print(f"Could not open log file: {exc}", file=sys.stderr)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)


class App:
    """
    Central orchestrator.

    Implements the TrayCallbacks protocol expected by SysTray.
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self.move_log = MoveLog(
            get_move_log_path(),
            retention=timedelta(hours=self.config.move_log_retention_hours),
        )
        self.broker = MoveNotificationBroker()
        self.scanner = DownloadScanner(move_log=self.move_log)
        self.worker = ScanWorker(
            self.config,
            self.scanner,
            self.broker,
            watch=self.config.watch_for_new_files,
        )
        self.discovery = InstanceDiscovery()
        self._tray = None
        self._total_moved = 0
        self._lock = threading.Lock()
        self.broker.subscribe(self._on_files_moved)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_services(self) -> None:
        """Start the scan worker and, if enabled, the discovery listener."""
        logger.info("%s %s starting.", __app_name__, __version__)
        if not self.config.is_configured():
            logger.warning("Source or destination folder is not configured; "
                           "edit %s", self.config.path)
        if self.config.discovery_enabled:
            self.discovery.start()
        self.worker.start()

    def stop_services(self) -> None:
        """Stop the worker (finishing any move in progress) and the listener."""
        logger.info("Shutting down…")
        self.worker.stop()
        self.discovery.stop()

    def run(self) -> None:
        """Start the services, then block in the tray loop until Quit."""
        from soulman.tray import SysTray

        setup_logging(self.config)
        self._tray = SysTray(self)

        def _setup(icon) -> None:
            icon.visible = True
            self.start_services()

        try:
            self._tray.run(setup=_setup)
        finally:
            self.stop_services()

    # ------------------------------------------------------------------
    # TrayCallbacks implementation
    # ------------------------------------------------------------------

    def on_scan_now(self) -> None:
        self.worker.nudge()

    def on_find_instances(self) -> None:
        """Probe the LAN on a short-lived thread and report what answered."""
        def _do() -> None:
            found = self.discovery.discover(timeout=3.0)
            if found:
                names = ", ".join(f"{i.machine_name} ({i.version or '?'})" for i in found)
                msg = f"Found {len(found)} other instance{'s' if len(found) != 1 else ''}: {names}"
            else:
                msg = "No other instances found on the network."
            logger.info(msg)
            if self._tray is not None:
                self._tray.notify(msg)

        threading.Thread(target=_do, daemon=True, name="DiscoveryQuery").start()

    def on_open_move_log(self) -> None:
        open_file_in_default_app(self.move_log.ensure_file())

    def on_quit(self) -> None:
        if self._tray is not None:
            self._tray.stop()

    def get_status_summary(self) -> str:
        """Return a short human-readable status string for the tray menu."""
        if not self.config.is_configured():
            return "Not configured"
        with self._lock:
            total = self._total_moved
        return f"{total} moved this session"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_files_moved(self, count: int, destination: str) -> None:
        """Called (from the worker thread) after a cycle that moved files."""
        with self._lock:
            self._total_moved += count
        if self._tray is not None:
            self._tray.notify(f"Moved {count} file{'s' if count != 1 else ''} to {destination}")
            self._tray.update_tooltip(f"{__app_name__}: {self.get_status_summary()}")
            self._tray.refresh_menu()
