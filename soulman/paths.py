"""
Destination path helpers for Soulman.

Turns :class:`~soulman.metadata.TrackMetadata` into a library path of the
form ``root/Artist/Album[ (Disc N)]/[NN - ]Title.ext`` and finds a free
file name when that path is already taken.
"""

from __future__ import annotations

import os

from soulman.metadata import TrackMetadata

# Characters Windows refuses in file names.  Applied on every platform so a
# library built on Linux can still be copied onto an SMB share.
_ILLEGAL_CHARS = frozenset('<>:"/\\|?*') | frozenset(chr(c) for c in range(32))

UNKNOWN_SEGMENT = "Unknown"


def sanitize_segment(value: str | None) -> str:
    """Make *value* safe as a single path component."""
    if not value:
        return UNKNOWN_SEGMENT
    if all(ch in _ILLEGAL_CHARS for ch in value):
        return UNKNOWN_SEGMENT
    cleaned = "".join("_" if ch in _ILLEGAL_CHARS else ch for ch in value).strip()
    if not cleaned or cleaned in (".", ".."):
        return UNKNOWN_SEGMENT
    return cleaned


def build_destination_path(
    destination_root: str | os.PathLike[str],
    metadata: TrackMetadata,
    extension: str,
) -> str:
    """Return the library path for a file with *metadata* and *extension*."""
    artist = sanitize_segment(metadata.artist)
    album = sanitize_segment(metadata.album)
    title = sanitize_segment(metadata.title)

    if metadata.disc_number is not None and metadata.disc_number > 0:
        album = f"{album} (Disc {metadata.disc_number})"

    prefix = f"{metadata.track_number:02d} - " if metadata.track_number is not None else ""
    if extension and not extension.startswith("."):
        extension = "." + extension
    file_name = f"{prefix}{title}{extension}"

    return os.path.join(os.fspath(destination_root), artist, album, file_name)


def ensure_unique_path(path: str) -> str:
    """
    Return *path* if nothing exists there, else ``stem (n).ext`` for the
    first free n.

    This is check-then-use: another process creating the same name between
    the check and the move is not guarded against.
    """
    if not os.path.lexists(path):
        return path

    directory, name = os.path.split(path)
    stem, ext = os.path.splitext(name)
    counter = 1
    while True:
        candidate = os.path.join(directory, f"{stem} ({counter}){ext}")
        if not os.path.lexists(candidate):
            return candidate
        counter += 1


def _comparable(path: str | os.PathLike[str]) -> str:
    return os.path.normcase(os.path.abspath(os.fspath(path))).casefold()


def is_sub_path(candidate: str | os.PathLike[str], parent: str | os.PathLike[str]) -> bool:
    """Return True when *candidate* equals *parent* or lies beneath it."""
    cand = _comparable(candidate)
    par = _comparable(parent)
    try:
        return os.path.commonpath([cand, par]) == par
    except ValueError:
        # different drives on Windows
        return False


def relative_clone_path(final_path: str, destination_root: str) -> str:
    """
    Return *final_path* relative to *destination_root*.

    Falls back to the bare file name when the two cannot be related, e.g.
    different drives, or the file does not sit under the root.
    """
    try:
        relative = os.path.relpath(final_path, destination_root)
    except ValueError:
        return os.path.basename(final_path)
    if relative == os.pardir or relative.startswith(os.pardir + os.sep) or os.path.isabs(relative):
        return os.path.basename(final_path)
    return relative
