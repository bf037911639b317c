import threading
import time

from soulman.config import Config
from soulman.notify import MoveNotificationBroker
from soulman.worker import ScanWorker


class StubScanner:
    def __init__(self, moved=0, error=None):
        self.moved = moved
        self.error = error
        self.calls = []

    @staticmethod
    def gather_sources(settings):
        return list(settings.source_paths)

    def scan(self, settings, clones, cancel):
        self.calls.append((settings, list(clones)))
        if self.error:
            raise self.error
        return self.moved


def _config(tmp_path):
    cfg = Config(tmp_path / "config.json")
    cfg.source_folder = str(tmp_path / "dl")
    cfg.destination_folder = str(tmp_path / "lib")
    cfg.add_clone_folder(str(tmp_path / "nas"))
    return cfg


def test_publishes_when_files_moved(tmp_path):
    broker = MoveNotificationBroker()
    events = []
    broker.subscribe(lambda count, dest: events.append((count, dest)))
    scanner = StubScanner(moved=3)
    worker = ScanWorker(_config(tmp_path), scanner, broker, watch=False)

    assert worker.run_once() == 3
    assert events == [(3, str(tmp_path / "lib"))]
    assert scanner.calls[0][1] == [str(tmp_path / "nas")]


def test_no_publish_when_nothing_moved(tmp_path):
    broker = MoveNotificationBroker()
    events = []
    broker.subscribe(lambda count, dest: events.append(count))
    worker = ScanWorker(_config(tmp_path), StubScanner(moved=0), broker, watch=False)

    assert worker.run_once() == 0
    assert events == []


def test_scan_error_does_not_escape(tmp_path, caplog):
    worker = ScanWorker(
        _config(tmp_path), StubScanner(error=RuntimeError("boom")), MoveNotificationBroker(),
        watch=False,
    )
    assert worker.run_once() == 0
    assert "Scan failed" in caplog.text


def test_loop_runs_and_stops_promptly(tmp_path):
    scanner = StubScanner()
    worker = ScanWorker(_config(tmp_path), scanner, MoveNotificationBroker(), watch=False)
    worker.start()
    deadline = time.monotonic() + 2
    while not scanner.calls and time.monotonic() < deadline:
        time.sleep(0.01)
    started = time.monotonic()
    worker.stop()

    assert scanner.calls
    assert time.monotonic() - started < 3
    assert not worker.is_running


def test_broker_isolates_failing_handler(caplog):
    broker = MoveNotificationBroker()
    seen = []

    def _bad(count, dest):
        raise ValueError("handler broke")

    broker.subscribe(_bad)
    broker.subscribe(lambda count, dest: seen.append(count))
    broker.publish(2, "/lib")
    broker.unsubscribe(_bad)
    broker.publish(1, "/lib")

    assert seen == [2, 1]
    assert caplog.text.count("Error in move notification handler") == 1


def _wait_for(predicate, seconds=2.0):
    deadline = time.monotonic() + seconds
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)
    return predicate()


def test_bad_config_value_does_not_kill_loop(tmp_path, caplog):
    cfg = _config(tmp_path)
    cfg._data["settled_seconds"] = "twenty"
    cfg._data["poll_interval_seconds"] = None
    scanner = StubScanner()
    worker = ScanWorker(cfg, scanner, MoveNotificationBroker(), watch=False)
    worker.start()
    try:
        assert _wait_for(lambda: scanner.calls)
        assert worker.is_running
    finally:
        worker.stop()

    settings = scanner.calls[0][0]
    assert settings.settle_window == 20
    assert settings.poll_interval == 30
    assert "Invalid value 'twenty' for settled_seconds" in caplog.text


class BrokenConfig:
    clone_folders = []

    def refresh(self):
        return False

    def snapshot(self):
        raise RuntimeError("config exploded")


def test_unreadable_settings_skip_the_cycle(tmp_path, caplog):
    scanner = StubScanner(moved=1)
    worker = ScanWorker(BrokenConfig(), scanner, MoveNotificationBroker(), watch=False)

    assert worker.run_once() == 0
    assert scanner.calls == []
    assert "Could not read settings" in caplog.text

    worker.start()
    try:
        time.sleep(0.2)
        assert worker.is_running
    finally:
        worker.stop()


class SlowScanner(StubScanner):
    """Holds the cycle open like a long cross-volume copy."""

    def __init__(self, seconds):
        super().__init__()
        self.seconds = seconds
        self.entered = threading.Event()
        self.finished = threading.Event()

    def scan(self, settings, clones, cancel):
        self.entered.set()
        time.sleep(self.seconds)
        self.finished.set()
        return 0


def test_stop_waits_for_move_in_progress(tmp_path):
    scanner = SlowScanner(seconds=0.5)
    worker = ScanWorker(_config(tmp_path), scanner, MoveNotificationBroker(), watch=False)
    worker.start()
    assert scanner.entered.wait(2)

    worker.stop(timeout=0.05)

    assert scanner.finished.is_set()
    assert not worker.is_running
