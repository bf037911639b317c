"""
Tag reading for Soulman.

Reads artist / album / title / track / disc from a file's embedded tags
through mutagen's "easy" interface, so ID3, Vorbis comments, MP4 atoms
and APEv2 tags all answer to the same key names.  Reading never fails:
any problem yields a record built from fallback values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from mutagen import File as MutagenFile

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
VARIOUS_ARTISTS = "Various Artists"

ARTIST_DELIMITERS = (";", ",", "/")

_ALBUM_ARTIST_KEYS = ("albumartist", "album artist", "album_artist")
_PERFORMER_KEYS = ("artist", "performer")


@dataclass(frozen=True)
class TrackMetadata:
    """Everything the path builder needs to place one file."""
    artist: str
    album: str
    title: str
    track_number: int | None = None
    disc_number: int | None = None


def fallback_metadata(path: str | os.PathLike[str]) -> TrackMetadata:
    """Return the all-fallback record for *path*."""
    stem = os.path.splitext(os.path.basename(os.fspath(path)))[0]
    return TrackMetadata(UNKNOWN_ARTIST, UNKNOWN_ALBUM, stem or "Unknown")


def _tag_values(tags, keys: tuple[str, ...]) -> list[str]:
    """Return the non-blank values of the first key in *keys* that has any."""
    for key in keys:
        try:
            raw = tags.get(key)
        except (KeyError, ValueError):
            raw = None
        if not raw:
            continue
        if isinstance(raw, str):
            raw = [raw]
        values = [str(v).strip() for v in raw if str(v).strip()]
        if values:
            return values
    return []


def _first_text(tags, key: str) -> str:
    values = _tag_values(tags, (key,))
    return values[0] if values else ""


def parse_number(value: str | None) -> int | None:
    """Parse ``"6"`` or ``"6/12"`` into 6.  Zero and junk give None."""
    if not value:
        return None
    head = str(value).split("/")[0].strip()
    try:
        number = int(head)
    except ValueError:
        return None
    return number if number > 0 else None


def first_token(value: str) -> str:
    """Keep only the part of *value* before the first artist delimiter."""
    cut = min((value.find(d) for d in ARTIST_DELIMITERS if d in value), default=-1)
    if cut > 0:
        value = value[:cut]
    return value.strip()


def resolve_artist(album_artists: list[str], performers: list[str]) -> str:
    """
    Pick the folder artist from album-artist and performer values.

    Order: first album artist, then first performer, then "Unknown Artist".
    Several album artists, a delimited album artist, or a literal
    "Various Artists" all resolve to "Various Artists".
    """
    album_artists = [a.strip() for a in album_artists if a and a.strip()]
    performers = [p.strip() for p in performers if p and p.strip()]

    multiple = len(album_artists) > 1 or any(
        d in a for a in album_artists for d in ARTIST_DELIMITERS
    )
    if multiple:
        return VARIOUS_ARTISTS

    candidate = album_artists[0] if album_artists else (performers[0] if performers else "")
    resolved = first_token(candidate) if candidate else ""
    if not resolved:
        return UNKNOWN_ARTIST
    if resolved.casefold() == VARIOUS_ARTISTS.casefold():
        return VARIOUS_ARTISTS
    return resolved


def read_metadata(path: str | os.PathLike[str]) -> TrackMetadata:
    """Read :class:`TrackMetadata` from *path*; never raises."""
    fallback = fallback_metadata(path)
    try:
        audio = MutagenFile(os.fspath(path), easy=True)
        if audio is None or not audio.tags:
            logger.debug("No readable tags in %s", path)
            return fallback
        tags = audio.tags

        artist = resolve_artist(
            _tag_values(tags, _ALBUM_ARTIST_KEYS),
            _tag_values(tags, _PERFORMER_KEYS),
        )
        album = _first_text(tags, "album") or UNKNOWN_ALBUM
        title = _first_text(tags, "title") or fallback.title
        track = parse_number(_first_text(tags, "tracknumber"))
        disc = parse_number(_first_text(tags, "discnumber"))
        return TrackMetadata(artist, album, title, track, disc)
    except Exception:
        logger.debug("Could not read tags from %s", path, exc_info=True)
        return fallback
