import pytest

from soulman.config import SourceSettings


class FakeClock:
    """Manually advanced time source for the stability tracker."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ListSink:
    """Move log stand-in that keeps records in memory."""

    def __init__(self):
        self.records = []

    def add(self, record):
        self.records.append(record)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def folders(tmp_path):
    """Create a download folder and a library folder."""
    downloads = tmp_path / "downloads"
    library = tmp_path / "library"
    downloads.mkdir()
    return downloads, library


def make_settings(downloads, library, settle=20, extensions=(".mp3", ".flac")):
    return SourceSettings(
        source_paths=(str(downloads),),
        destination_root=str(library),
        allowed_extensions=tuple(extensions),
        poll_seconds=30,
        settle_seconds=settle,
    )
