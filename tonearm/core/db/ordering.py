"""
Shared ORDER BY clause helpers for LibraryDb queries.

These helpers centralize the translation from higher-level sort keys into
SQL snippets (including reasonable COLLATE/NULLS handling) so the logic
doesn't get duplicated across query modules.

Important:
- The returned strings are *static SQL fragments* selected from a small
  whitelist. Do NOT concatenate user input into ORDER BY.
- Item queries alias the items table as `i`, album queries alias albums as `a`.
"""

from __future__ import annotations

from typing import Literal

ItemsOrderBy = Literal[
    "id",
    "artist",
    "album",
    "title",
    "year",
    "tracknum",
    "added",
    "path",
]

AlbumsOrderBy = Literal[
    "id",
    "album",
    "albumartist",
    "year",
    "added",
]

_TRACK_TAIL = (
    "COALESCE(i.disc, 0) ASC, "
    "COALESCE(i.track, 0) ASC, "
    "i.title COLLATE NOCASE ASC, "
    "i.id ASC"
)


def items_order_clause(order_by: str) -> str:
    """
    Return an ORDER BY clause for item list queries.

    Unknown values fall back to insertion order (`id`).
    """
    if order_by == "artist":
        return (
            "ORDER BY "
            "i.artist COLLATE NOCASE ASC, "
            "i.album COLLATE NOCASE ASC, "
            f"{_TRACK_TAIL}"
        )
    if order_by == "album":
        return f"ORDER BY i.album COLLATE NOCASE ASC, {_TRACK_TAIL}"
    if order_by == "tracknum":
        return f"ORDER BY {_TRACK_TAIL}"
    if order_by == "title":
        return "ORDER BY i.title COLLATE NOCASE ASC, i.id ASC"
    if order_by == "year":
        return f"ORDER BY i.year ASC, i.album COLLATE NOCASE ASC, {_TRACK_TAIL}"
    if order_by == "added":
        return "ORDER BY i.added ASC, i.id ASC"
    if order_by == "path":
        return "ORDER BY i.path ASC"

    # Default: insertion order
    return "ORDER BY i.id ASC"


def albums_order_clause(order_by: str) -> str:
    """
    Return an ORDER BY clause for album list queries.

    Uses stable tie-breakers to avoid flickering pagination.
    """
    if order_by == "album":
        return "ORDER BY a.album COLLATE NOCASE ASC, a.id ASC"
    if order_by == "albumartist":
        return "ORDER BY a.albumartist COLLATE NOCASE ASC, a.album COLLATE NOCASE ASC, a.id ASC"
    if order_by == "year":
        return "ORDER BY a.year ASC, a.album COLLATE NOCASE ASC, a.id ASC"
    if order_by == "added":
        return "ORDER BY a.added ASC, a.id ASC"

    # Default: insertion order
    return "ORDER BY a.id ASC"
