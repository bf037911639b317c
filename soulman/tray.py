"""System tray icon for Soulman.

Provides a persistent system-tray presence with a context menu to scan
now, look for other instances on the network, open the move log, and
quit.  Move notifications are shown as balloon messages.
"""

import contextlib
import logging
from typing import Any, Protocol

import pystray
from PIL import Image, ImageDraw
from PIL.Image import Image as PILImage

from soulman import __app_name__, __version__

logger = logging.getLogger(__name__)


class TrayCallbacks(Protocol):
    """Expected callback interface for the tray icon owner."""

    def on_scan_now(self) -> None:
        """Run a scan as soon as possible."""
        ...

    def on_find_instances(self) -> None:
        """Probe the LAN for other instances."""
        ...

    def on_open_move_log(self) -> None:
        """Open the move history file."""
        ...

    def on_quit(self) -> None:
        """Quit the application."""
        ...

    def get_status_summary(self) -> str:
        """Return a human-readable status string."""
        ...


def _create_icon_image(color: str = "#6B2FB3", size: int = 64) -> PILImage:
    """Draw a rounded square with a white note-head as the tray icon."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rounded_rectangle(
        [(2, 2), (size - 2, size - 2)],
        radius=10,
        fill=color,
    )
    # note head and stem
    head = size // 4
    draw.ellipse(
        [(head, size - 2 * head), (2 * head, size - head)],
        fill="white",
    )
    draw.rectangle(
        [(2 * head - 4, head), (2 * head, size - head - head // 2)],
        fill="white",
    )
    return img


class SysTray:
    """Manages the system-tray icon and its context menu.

    :meth:`run` blocks, so call it from the main thread (required on macOS).
    """

    def __init__(self, callbacks: TrayCallbacks):
        """Create the tray icon bound to *callbacks*."""
        self._callbacks = callbacks
        self._icon: Any | None = None

    def _build_menu(self) -> pystray.Menu:
        """Build the context menu with current status."""
        status_text = self._callbacks.get_status_summary()
        return pystray.Menu(
            pystray.MenuItem(f"{__app_name__} {__version__}: {status_text}", None, enabled=False),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Scan Now", lambda: self._callbacks.on_scan_now()),
            pystray.MenuItem("Find Other Instances", lambda: self._callbacks.on_find_instances()),
            pystray.MenuItem("Open Move Log", lambda: self._callbacks.on_open_move_log()),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Quit", lambda: self._callbacks.on_quit()),
        )

    def run(self, setup=None) -> None:
        """Show the icon and block until :meth:`stop` is called."""
        self._icon = pystray.Icon(
            name=__app_name__,
            icon=_create_icon_image(),
            title=__app_name__,
            menu=self._build_menu(),
        )
        logger.info("System tray icon started.")
        self._icon.run(setup=setup)

    def stop(self) -> None:
        """Remove the tray icon."""
        if self._icon:
            with contextlib.suppress(Exception):
                self._icon.stop()
            self._icon = None
        logger.info("System tray icon stopped.")

    def notify(self, message: str, title: str = __app_name__) -> None:
        """Show a balloon / toast message where the platform supports it."""
        if not self._icon:
            return
        try:
            self._icon.notify(message, title)
        except Exception:
            logger.debug("Tray notification failed.", exc_info=True)

    def update_tooltip(self, text: str) -> None:
        """Update the hover tooltip text."""
        if self._icon:
            self._icon.title = text

    def refresh_menu(self) -> None:
        """Rebuild the context menu (e.g. after the status changed)."""
        if self._icon:
            self._icon.menu = self._build_menu()
            self._icon.update_menu()
