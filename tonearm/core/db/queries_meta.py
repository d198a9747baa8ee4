"""
Library-wide aggregate queries used by `tonearm.core.library_db.LibraryDb`.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`.
- These functions assume `conn.row_factory = aiosqlite.Row`.
"""

from __future__ import annotations

import aiosqlite

from tonearm.core.db.models import LibraryStats


async def get_stats(conn: aiosqlite.Connection) -> LibraryStats:
    """
    Aggregate counts and totals over the whole library.

    `total_size` is an estimate from bitrate (kbps) and length (seconds);
    items missing either value contribute nothing.
    """
    cursor = await conn.execute(
        """
        SELECT
            (SELECT COUNT(*) FROM items) AS items,
            (SELECT COUNT(*) FROM albums) AS albums,
            (SELECT COUNT(DISTINCT artist) FROM items WHERE artist IS NOT NULL) AS artists,
            (SELECT COALESCE(SUM(length), 0.0) FROM items) AS total_length,
            (SELECT COALESCE(SUM(bitrate * 1000.0 * length / 8.0), 0.0) FROM items) AS total_size;
        """
    )
    row = await cursor.fetchone()
    if row is None:
        return LibraryStats(items=0, albums=0, artists=0, total_length=0.0, total_size=0)
    return LibraryStats(
        items=int(row["items"]),
        albums=int(row["albums"]),
        artists=int(row["artists"]),
        total_length=float(row["total_length"]),
        total_size=int(row["total_size"]),
    )
