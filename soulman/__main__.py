"""Entry point for Soulman.

Usage:
    python -m soulman                  Launch the tray application
    python -m soulman --headless       Run without a tray icon (Ctrl-C to stop)
    python -m soulman discover [secs]  List other instances on the network
    python -m soulman clones [list | add PATH | remove PATH | clear]
                                       Show or edit the clone folders
"""

import sys


def main() -> None:
    """Launch the tray app or delegate to the headless / discover commands."""
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd in ("--headless", "headless", "run"):
        from soulman.service import run_foreground

        run_foreground()
    elif cmd in ("--discover", "discover"):
        from soulman.service import run_discover

        try:
            timeout = float(sys.argv[2]) if len(sys.argv) > 2 else 3.0
        except ValueError:
            print(f"Invalid timeout: {sys.argv[2]}")
            sys.exit(2)
        run_discover(timeout)
    elif cmd == "clones":
        from soulman.service import run_clones

        sys.exit(run_clones(sys.argv[2:]))
    elif cmd in ("-h", "--help", "help"):
        print(__doc__)
    else:
        from soulman.app import App

        app = App()
        app.run()


if __name__ == "__main__":
    main()
