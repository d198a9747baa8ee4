"""
DB models (DTOs) and small normalization helpers.

This module is intentionally lightweight:
- No DB connection knowledge
- No SQL
- Pure dataclasses + helper functions
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

# Columns callers may write through `update_item` / `update_album`.
# `id`, `path` uniqueness and timestamps are managed by the store.
ITEM_MUTABLE_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "album_id",
        "path",
        "title",
        "artist",
        "album",
        "albumartist",
        "genre",
        "year",
        "track",
        "disc",
        "format",
        "bitrate",
        "length",
        "mb_trackid",
        "mb_albumid",
        "mtime",
    }
)

ALBUM_MUTABLE_FIELDS: Final[frozenset[str]] = frozenset(
    {"album", "albumartist", "year", "artpath", "mb_albumid"}
)

# Album fields copied onto items for join-free listing.
ALBUM_DENORMALIZED_FIELDS: Final[tuple[str, ...]] = ("album", "albumartist", "mb_albumid")

ITEM_INT_FIELDS: Final[frozenset[str]] = frozenset({"album_id", "year", "track", "disc", "bitrate"})
ITEM_FLOAT_FIELDS: Final[frozenset[str]] = frozenset({"length", "mtime"})
ALBUM_INT_FIELDS: Final[frozenset[str]] = frozenset({"year"})


@dataclass(frozen=True, slots=True)
class AlbumRow:
    """Album record as stored in SQLite."""

    id: int
    album: str
    albumartist: str
    year: int | None
    artpath: str | None
    mb_albumid: str | None
    added: float


@dataclass(frozen=True, slots=True)
class ItemRow:
    """
    Canonical item (track) record as stored in SQLite.

    Notes:
    - `path` is the stable unique identifier for a local file.
    - `album` and `albumartist` are denormalized copies of the owning album.
    """

    id: int
    album_id: int | None
    path: str
    title: str | None
    artist: str | None
    album: str | None
    albumartist: str | None
    genre: str | None
    year: int | None
    track: int | None
    disc: int | None
    format: str | None
    bitrate: int | None
    length: float | None
    mb_trackid: str | None
    mb_albumid: str | None
    added: float
    mtime: float | None


@dataclass(frozen=True, slots=True)
class NewAlbum:
    """Input record for `LibraryDb.insert_album`."""

    album: str
    albumartist: str
    year: int | None = None
    artpath: str | None = None
    mb_albumid: str | None = None


@dataclass(frozen=True, slots=True)
class NewItem:
    """
    Input record for `LibraryDb.insert_item`.

    `path` is required and must identify the same file across imports.
    Other text fields are stored stripped, and blank text is stored as None,
    so they read back as `normalize_text(value)`. With `album_id` set,
    `album`, `albumartist` and `mb_albumid` come from that album.
    """

    path: str
    album_id: int | None = None
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    albumartist: str | None = None
    genre: str | None = None
    year: int | None = None
    track: int | None = None
    disc: int | None = None
    format: str | None = None
    bitrate: int | None = None
    length: float | None = None
    mb_trackid: str | None = None
    mb_albumid: str | None = None
    mtime: float | None = None


@dataclass(frozen=True, slots=True)
class LibraryStats:
    items: int
    albums: int
    artists: int
    total_length: float
    total_size: int


def normalize_text(value: str | None) -> str | None:
    """
    Normalize optional text fields:
    - strip whitespace
    - coerce empty strings to None
    """
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


def normalize_int(value: Any) -> int | None:
    """Normalize optional integer fields (coerce to int, keep None)."""
    if value is None or value == "":
        return None
    return int(value)


def normalize_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def normalize_field(name: str, value: Any) -> Any:
    """Coerce a single item/album column value to its storage type."""
    if name in ITEM_INT_FIELDS or name in ALBUM_INT_FIELDS:
        return normalize_int(value)
    if name in ITEM_FLOAT_FIELDS:
        return normalize_float(value)
    if name == "path":
        return str(value) if value is not None else None
    return normalize_text(value)
