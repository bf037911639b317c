"""
Cross-platform utilities for Soulman.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.
"""

from __future__ import annotations

import logging
import os
import platform
import socket
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application data directory, created if needed.

    - Windows : ``%LOCALAPPDATA%\\Soulman``
    - macOS   : ``~/Library/Application Support/Soulman``
    - Linux   : ``$XDG_CONFIG_HOME/Soulman`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / "Soulman"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "soulman.log"


def get_move_log_path() -> Path:
    """Return the path to the JSON move history."""
    return get_config_dir() / "movelog.json"


def default_source_folder() -> str:
    """Return the usual Soulseek completed-downloads folder."""
    return str(Path.home() / "Documents" / "Soulseek Downloads" / "complete")


def default_destination_folder() -> str:
    """Return the user's music folder."""
    return str(Path.home() / "Music")


def folder_key(path: str | os.PathLike[str]) -> str:
    """Return a comparison key for a folder, honouring the OS's case rules."""
    return os.path.normcase(os.path.abspath(os.fspath(path)))


# ---- identity ----------------------------------------------------------


def get_machine_name() -> str:
    """Return the short host name used to identify this machine on the LAN."""
    name = platform.node() or socket.gethostname()
    return name.split(".")[0] or "localhost"


# ---- desktop integration -----------------------------------------------


def open_file_in_default_app(filepath: str | Path) -> None:
    """Open a file with the OS default application."""
    fp = str(filepath)
    try:
        if IS_WINDOWS:
            os.startfile(fp)  # type: ignore[attr-defined]
        elif IS_MACOS:
            subprocess.Popen(["open", fp])
        else:
            subprocess.Popen(["xdg-open", fp])
    except Exception:
        logger.warning("Could not open file: %s", fp, exc_info=True)
