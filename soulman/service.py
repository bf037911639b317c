"""
Headless runner for Soulman.

Runs the scan worker and the discovery listener without a tray icon,
for servers, NAS boxes and terminals.  Blocks until SIGINT/SIGTERM.

    python -m soulman --headless
"""

import logging
import signal
import threading

from soulman import __app_name__
from soulman.app import App, setup_logging
from soulman.config import Config
from soulman.discovery import InstanceDiscovery

logger = logging.getLogger(__name__)


def run_foreground() -> None:
    """Run the engine in the foreground until SIGINT/SIGTERM."""
    app = App()
    setup_logging(app.config)
    stop = threading.Event()

    def _handler(sig, frame):
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    app.start_services()
    print(f"{__app_name__} running (press Ctrl-C to stop)…")
    while not stop.is_set():
        stop.wait(timeout=1)
    app.stop_services()
    print(f"{__app_name__} stopped.")


def run_discover(timeout: float = 3.0) -> int:
    """Probe the LAN once and print what answered.  Returns the count found."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    found = InstanceDiscovery().discover(timeout=timeout)
    if not found:
        print("No other instances found.")
    for instance in found:
        host, port = instance.endpoint
        print(f"{instance.machine_name}\t{instance.version or '?'}\t{host}:{port}")
    return len(found)


def run_clones(args: list[str], config: Config | None = None) -> int:
    """
    List or edit the clone folders.  Returns a process exit code.

        soulman clones                 list
        soulman clones add PATH        add a folder
        soulman clones remove PATH     remove a folder
        soulman clones clear           remove every folder
    """
    cfg = config or Config()
    action = args[0] if args else "list"

    if action == "list" and len(args) <= 1:
        folders = cfg.clone_folders
        if not folders:
            print("No clone folders configured.")
        for folder in folders:
            print(folder)
        return 0
    if action == "clear" and len(args) == 1:
        cfg.clear_clone_folders()
        print("Cleared clone folders.")
        return 0
    if action in ("add", "remove") and len(args) == 2:
        if action == "add":
            if cfg.add_clone_folder(args[1]):
                print(f"Added {cfg.clone_folders[-1]}")
                return 0
            print(f"Not added (blank or already configured): {args[1]}")
            return 1
        if cfg.remove_clone_folder(args[1]):
            print(f"Removed {args[1]}")
            return 0
        print(f"Not a configured clone folder: {args[1]}")
        return 1

    print("Usage: soulman clones [list | add PATH | remove PATH | clear]")
    return 2
