import os

from soulman.metadata import TrackMetadata
from soulman.paths import (
    build_destination_path,
    ensure_unique_path,
    is_sub_path,
    relative_clone_path,
    sanitize_segment,
)


def test_pink_floyd_example(tmp_path):
    root = str(tmp_path / "Music")
    meta = TrackMetadata("Pink Floyd", "The Wall", "Comfortably Numb", 6, None)
    path = build_destination_path(root, meta, ".flac")
    assert path == os.path.join(root, "Pink Floyd", "The Wall", "06 - Comfortably Numb.flac")


def test_build_is_deterministic(tmp_path):
    meta = TrackMetadata("A", "B", "C", 1, 2)
    first = build_destination_path(str(tmp_path), meta, ".mp3")
    assert first == build_destination_path(str(tmp_path), meta, ".mp3")


def test_disc_suffix_and_no_track_prefix(tmp_path):
    meta = TrackMetadata("Artist", "Album", "Song", None, 2)
    path = build_destination_path(str(tmp_path), meta, ".mp3")
    assert path == os.path.join(str(tmp_path), "Artist", "Album (Disc 2)", "Song.mp3")


def test_disc_zero_is_ignored(tmp_path):
    meta = TrackMetadata("Artist", "Album", "Song", 12, 0)
    path = build_destination_path(str(tmp_path), meta, "mp3")
    assert path == os.path.join(str(tmp_path), "Artist", "Album", "12 - Song.mp3")


def test_sanitize_segment():
    assert sanitize_segment('AC/DC: "Live"?') == "AC_DC_ _Live__"
    assert sanitize_segment("  spaced  ") == "spaced"
    assert sanitize_segment("") == "Unknown"
    assert sanitize_segment("   ") == "Unknown"
    assert sanitize_segment("???") == "Unknown"
    assert sanitize_segment("..") == "Unknown"
    assert sanitize_segment("tab\there") == "tab_here"


def test_illegal_characters_in_metadata(tmp_path):
    meta = TrackMetadata("A/B", "<Album>", "T*", None, None)
    path = build_destination_path(str(tmp_path), meta, ".ogg")
    assert path == os.path.join(str(tmp_path), "A_B", "_Album_", "T_.ogg")


def test_ensure_unique_path(tmp_path):
    target = tmp_path / "song.mp3"
    assert ensure_unique_path(str(target)) == str(target)

    target.write_bytes(b"x")
    first = ensure_unique_path(str(target))
    assert first == str(tmp_path / "song (1).mp3")

    (tmp_path / "song (1).mp3").write_bytes(b"x")
    assert ensure_unique_path(str(target)) == str(tmp_path / "song (2).mp3")


def test_is_sub_path(tmp_path):
    music = tmp_path / "Music"
    assert is_sub_path(music, music)
    assert is_sub_path(music / "Library", music)
    assert not is_sub_path(tmp_path / "Music2", music)
    assert not is_sub_path(tmp_path, music)
    assert is_sub_path(str(music / "x").upper(), str(music).lower())


def test_relative_clone_path(tmp_path):
    root = str(tmp_path / "lib")
    inside = os.path.join(root, "A", "B", "01 - C.mp3")
    assert relative_clone_path(inside, root) == os.path.join("A", "B", "01 - C.mp3")
    outside = str(tmp_path / "elsewhere" / "song.mp3")
    assert relative_clone_path(outside, root) == "song.mp3"
