"""Configuration management for Soulman.

Stores and retrieves user settings from a JSON config file in the
platform-appropriate application data directory, and hands the scanner
an immutable :class:`SourceSettings` snapshot for each scan cycle.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from soulman.platform_utils import (
    default_destination_folder,
    default_source_folder,
    folder_key,
)
from soulman.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from soulman.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

MIN_POLL_SECONDS = 5
MIN_SETTLE_SECONDS = 5

DEFAULT_EXTENSIONS = [
    ".mp3", ".flac", ".wav", ".aac", ".m4a", ".ogg",
    ".aiff", ".alac", ".opus", ".wv", ".ape",
]

DEFAULT_CONFIG: dict[str, Any] = {
    "source_folder": "",  # filled from platform defaults on first load
    "additional_sources": [],
    "destination_folder": "",
    "allowed_extensions": list(DEFAULT_EXTENSIONS),
    "poll_interval_seconds": 30,
    "settled_seconds": 20,
    "clone_folders": [],
    "watch_for_new_files": True,  # wake the scanner on new-file events
    "discovery_enabled": True,
    "move_log_retention_hours": 24,
    "log_level": "INFO",
    # ---- log rotation ----
    "max_log_size_mb": 10,
    "log_backup_count": 3,
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


@dataclass(frozen=True)
class SourceSettings:
    """Immutable per-cycle view of the settings the scanner needs.

    ``poll_seconds`` and ``settle_seconds`` hold the raw configured values;
    read the floored values through :attr:`poll_interval` and
    :attr:`settle_window`.
    """

    source_paths: tuple[str, ...]
    destination_root: str
    allowed_extensions: tuple[str, ...] = tuple(DEFAULT_EXTENSIONS)
    poll_seconds: float = 30
    settle_seconds: float = 20

    @property
    def poll_interval(self) -> float:
        return max(float(self.poll_seconds), MIN_POLL_SECONDS)

    @property
    def settle_window(self) -> float:
        return max(float(self.settle_seconds), MIN_SETTLE_SECONDS)

    def is_supported_file(self, path: str | os.PathLike[str]) -> bool:
        """Return True when *path* carries an allow-listed extension."""
        if not path or not self.allowed_extensions:
            return False
        ext = os.path.splitext(os.fspath(path))[1].lower()
        if not ext:
            return False
        return any(_normalize_extension(a) == ext for a in self.allowed_extensions)


class Config:
    """Thread-safe configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._lock = threading.RLock()
        self._data: dict[str, Any] = self._defaults()
        self._stamp: tuple[int, int] | None = None
        self.load()

    @staticmethod
    def _defaults() -> dict[str, Any]:
        data = json.loads(json.dumps(DEFAULT_CONFIG))
        data["source_folder"] = default_source_folder()
        data["destination_folder"] = default_destination_folder()
        return data

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        with self._lock:
            if self._path.exists():
                try:
                    with open(self._path, encoding="utf-8") as fh:
                        stored = json.load(fh)
                    if not isinstance(stored, dict):
                        raise ValueError("top-level JSON value is not an object")
                    # Merge stored values over defaults so new keys get defaults
                    self._data = {**self._defaults(), **stored}
                    logger.info("Configuration loaded from %s", self._path)
                    self._stamp = self._file_stamp()
                except (json.JSONDecodeError, ValueError, OSError) as exc:
                    logger.warning("Could not read config (%s); using defaults.", exc)
                    self._data = self._defaults()
                    self._stamp = self._file_stamp()
            else:
                self._data = self._defaults()
                self.save()
                logger.info("Created default configuration at %s", self._path)

    def refresh(self) -> bool:
        """Reload if the file was changed by someone else.  Returns True if reloaded."""
        with self._lock:
            stamp = self._file_stamp()
            if stamp is None or stamp == self._stamp:
                return False
            logger.info("Configuration changed on disk; reloading")
            self.load()
            return True

    def _file_stamp(self) -> tuple[int, int] | None:
        try:
            st = self._path.stat()
        except OSError:
            return None
        return st.st_mtime_ns, st.st_size

    def save(self) -> None:
        """Persist the current configuration to disk."""
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._path, "w", encoding="utf-8") as fh:
                    json.dump(self._data, fh, indent=2)
                self._stamp = self._file_stamp()
                logger.info("Configuration saved.")
            except OSError as exc:
                logger.error("Failed to save configuration: %s", exc)

    # ---- typed reads ----

    def _int(self, key: str, minimum: int) -> int:
        """Read an integer setting, falling back to the default if it is bad."""
        raw = self._data.get(key)
        try:
            if isinstance(raw, bool):
                raise TypeError("boolean")
            value = int(raw)
        except (TypeError, ValueError):
            value = int(DEFAULT_CONFIG[key])
            logger.warning("Invalid value %r for %s; using default %s", raw, key, value)
        return max(minimum, value)

    def _str(self, key: str) -> str:
        raw = self._data.get(key)
        if raw is None:
            return ""
        if not isinstance(raw, str):
            logger.warning("Invalid value %r for %s; ignoring it", raw, key)
            return ""
        return raw.strip()

    def _str_list(self, key: str, fallback: tuple[str, ...] = ()) -> list[str]:
        raw = self._data.get(key)
        if raw is None:
            return list(fallback)
        if not isinstance(raw, list):
            logger.warning("Invalid value %r for %s; expected a list", raw, key)
            return list(fallback)
        items = [item for item in raw if isinstance(item, str)]
        if len(items) != len(raw):
            logger.warning("Ignoring non-text entries in %s", key)
        return [item.strip() for item in items if item.strip()]

    # ---- accessors ----

    @property
    def source_folder(self) -> str:
        """Return the primary download folder."""
        return self._str("source_folder")

    @source_folder.setter
    def source_folder(self, value: str) -> None:
        """Set the primary download folder."""
        self._data["source_folder"] = value.strip()

    @property
    def additional_sources(self) -> list[str]:
        """Return extra download folders scanned alongside the primary one."""
        return self._str_list("additional_sources")

    @additional_sources.setter
    def additional_sources(self, value: list[str]) -> None:
        """Set extra download folders."""
        self._data["additional_sources"] = [p.strip() for p in value if p.strip()]

    @property
    def destination_folder(self) -> str:
        """Return the library root files are moved into."""
        return self._str("destination_folder")

    @destination_folder.setter
    def destination_folder(self, value: str) -> None:
        """Set the library root."""
        self._data["destination_folder"] = value.strip()

    @property
    def allowed_extensions(self) -> list[str]:
        """Return the extension allow-list (lowercase, leading dot)."""
        return [
            _normalize_extension(e)
            for e in self._str_list("allowed_extensions", tuple(DEFAULT_EXTENSIONS))
        ]

    @allowed_extensions.setter
    def allowed_extensions(self, value: list[str]) -> None:
        """Set allowed file extensions, normalising to lowercase."""
        self._data["allowed_extensions"] = [
            _normalize_extension(ext) for ext in value if ext.strip()
        ]

    @property
    def poll_interval(self) -> int:
        """Return the poll interval in seconds (minimum 5 s)."""
        return self._int("poll_interval_seconds", MIN_POLL_SECONDS)

    @poll_interval.setter
    def poll_interval(self, value: int) -> None:
        """Set the poll interval (minimum 5 s)."""
        self._data["poll_interval_seconds"] = max(MIN_POLL_SECONDS, int(value))

    @property
    def settled_seconds(self) -> int:
        """Return the settle window in seconds (minimum 5 s)."""
        return self._int("settled_seconds", MIN_SETTLE_SECONDS)

    @settled_seconds.setter
    def settled_seconds(self, value: int) -> None:
        """Set the settle window (minimum 5 s)."""
        self._data["settled_seconds"] = max(MIN_SETTLE_SECONDS, int(value))

    @property
    def watch_for_new_files(self) -> bool:
        """Return whether filesystem events may trigger an early scan."""
        return bool(self._data.get("watch_for_new_files", True))

    @watch_for_new_files.setter
    def watch_for_new_files(self, value: bool) -> None:
        self._data["watch_for_new_files"] = bool(value)

    @property
    def discovery_enabled(self) -> bool:
        """Return whether the LAN discovery listener runs."""
        return bool(self._data.get("discovery_enabled", True))

    @discovery_enabled.setter
    def discovery_enabled(self, value: bool) -> None:
        self._data["discovery_enabled"] = bool(value)

    @property
    def move_log_retention_hours(self) -> int:
        """Return how long move records are kept."""
        return self._int("move_log_retention_hours", 1)

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._str("log_level") or "INFO"

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set the logging level name."""
        self._data["log_level"] = value

    # ---- log rotation ----

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return self._int("max_log_size_mb", 1)

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return self._int("log_backup_count", 0)

    # ---- clone folders ----

    @property
    def clone_folders(self) -> list[str]:
        """Return the clone destination roots."""
        with self._lock:
            return self._str_list("clone_folders")

    def add_clone_folder(self, folder: str) -> bool:
        """Add a clone destination. Returns False for blanks and duplicates."""
        if not folder or not folder.strip():
            return False
        full = os.path.abspath(folder.strip())
        with self._lock:
            folders = self.clone_folders
            if any(folder_key(f) == folder_key(full) for f in folders):
                return False
            self._data["clone_folders"] = [*folders, full]
            self.save()
        logger.info("Added clone folder %s", full)
        return True

    def remove_clone_folder(self, folder: str) -> bool:
        """Remove a clone destination. Returns True if one was removed."""
        full = os.path.abspath(folder.strip())
        with self._lock:
            folders = self.clone_folders
            kept = [f for f in folders if folder_key(f) != folder_key(full)]
            removed = len(kept) != len(folders)
            if removed:
                self._data["clone_folders"] = kept
                self.save()
        if removed:
            logger.info("Removed clone folder %s", full)
        return removed

    def clear_clone_folders(self) -> None:
        """Forget every clone destination."""
        with self._lock:
            self._data["clone_folders"] = []
            self.save()
        logger.info("Cleared clone folders")

    # ---- convenience ----

    def is_configured(self) -> bool:
        """Return True when a destination and at least one source are set."""
        has_source = bool(self.source_folder) or bool(self.additional_sources)
        return has_source and bool(self.destination_folder)

    def snapshot(self) -> SourceSettings:
        """Return the immutable settings view used by one scan cycle."""
        with self._lock:
            sources = [self.source_folder, *self.additional_sources]
            return SourceSettings(
                source_paths=tuple(s for s in sources if s),
                destination_root=self.destination_folder,
                allowed_extensions=tuple(self.allowed_extensions),
                poll_seconds=self.poll_interval,
                settle_seconds=self.settled_seconds,
            )
