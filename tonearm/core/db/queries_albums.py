"""
Album-related DB queries used by `tonearm.core.library_db.LibraryDb`.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`
  and return rows/materialized dataclasses.
- Ordering is centralized via `tonearm.core.db.ordering.albums_order_clause`.
- These functions assume `conn.row_factory = aiosqlite.Row`.

Important:
- Do NOT interpolate user input into SQL. Dynamic SQL here is limited to column
  names checked against `ALBUM_COLUMNS` and ORDER BY fragments from the whitelist.
"""

from __future__ import annotations

from typing import Any, Final, Mapping, Sequence

import aiosqlite

from tonearm.core.db.models import AlbumRow
from tonearm.core.db.ordering import albums_order_clause

ALBUM_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "album",
    "albumartist",
    "year",
    "artpath",
    "mb_albumid",
    "added",
)


def row_to_album(row: aiosqlite.Row) -> AlbumRow:
    """Convert an aiosqlite Row to an AlbumRow dataclass."""
    return AlbumRow(
        id=int(row["id"]),
        album=str(row["album"]),
        albumartist=str(row["albumartist"]),
        year=row["year"],
        artpath=row["artpath"],
        mb_albumid=row["mb_albumid"],
        added=float(row["added"]),
    )


def _where_clause(filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    if not filters:
        return "", []
    parts: list[str] = []
    params: list[Any] = []
    for name, value in filters.items():
        if name not in ALBUM_COLUMNS:
            raise ValueError(f"Unknown album column: {name}")
        if value is None:
            parts.append(f"a.{name} IS NULL")
        else:
            parts.append(f"a.{name} = ?")
            params.append(value)
    return "WHERE " + " AND ".join(parts), params


# ---------------------------------------------------------------------------
# Basic get/list/count
# ---------------------------------------------------------------------------


async def get_album_by_id(conn: aiosqlite.Connection, album_id: int) -> AlbumRow | None:
    cursor = await conn.execute("SELECT * FROM albums WHERE id = ?;", (int(album_id),))
    row = await cursor.fetchone()
    return row_to_album(row) if row else None


async def get_albums_by_ids(
    conn: aiosqlite.Connection, album_ids: Sequence[int]
) -> list[AlbumRow]:
    """Hydrate albums for `album_ids`, preserving the given order."""
    if not album_ids:
        return []
    by_id: dict[int, AlbumRow] = {}
    for start in range(0, len(album_ids), 500):
        chunk = [int(x) for x in album_ids[start : start + 500]]
        placeholders = ", ".join("?" for _ in chunk)
        cursor = await conn.execute(
            f"SELECT * FROM albums WHERE id IN ({placeholders});", chunk
        )
        for r in await cursor.fetchall():
            album = row_to_album(r)
            by_id[album.id] = album
    return [by_id[i] for i in album_ids if i in by_id]


async def list_albums(
    conn: aiosqlite.Connection,
    filters: Mapping[str, Any] | None = None,
    *,
    limit: int | None,
    offset: int,
    order_by: str,
) -> list[AlbumRow]:
    where, params = _where_clause(filters)
    order_clause = albums_order_clause(order_by)
    cursor = await conn.execute(
        f"""
        SELECT * FROM albums a
        {where}
        {order_clause}
        LIMIT ? OFFSET ?;
        """,
        (*params, -1 if limit is None else int(limit), int(offset)),
    )
    rows = await cursor.fetchall()
    return [row_to_album(r) for r in rows]


async def count_albums(conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("SELECT COUNT(*) AS c FROM albums;")
    row = await cursor.fetchone()
    return int(row["c"]) if row else 0


async def get_album_item_count(conn: aiosqlite.Connection, album_id: int) -> int:
    cursor = await conn.execute(
        "SELECT COUNT(*) AS c FROM items WHERE album_id = ?;",
        (int(album_id),),
    )
    row = await cursor.fetchone()
    return int(row["c"]) if row else 0


# ---------------------------------------------------------------------------
# Reconciler lookups
# ---------------------------------------------------------------------------


async def find_album_by_mb_albumid(
    conn: aiosqlite.Connection, mb_albumid: str
) -> AlbumRow | None:
    cursor = await conn.execute(
        "SELECT * FROM albums WHERE mb_albumid = ? ORDER BY id LIMIT 1;",
        (mb_albumid,),
    )
    row = await cursor.fetchone()
    return row_to_album(row) if row else None


async def find_album_by_natural_key(
    conn: aiosqlite.Connection,
    albumartist: str,
    album: str,
    *,
    unresolved_only: bool = False,
) -> AlbumRow | None:
    """
    Case-insensitive `(albumartist, album)` lookup.

    With `unresolved_only`, albums that already carry a catalog id are skipped:
    a release with a different catalog id is a different album.
    """
    extra = "AND mb_albumid IS NULL" if unresolved_only else ""
    cursor = await conn.execute(
        f"""
        SELECT * FROM albums
        WHERE albumartist = ? COLLATE NOCASE
          AND album = ? COLLATE NOCASE
          {extra}
        ORDER BY id
        LIMIT 1;
        """,
        (albumartist, album),
    )
    row = await cursor.fetchone()
    return row_to_album(row) if row else None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def insert_album(conn: aiosqlite.Connection, values: Mapping[str, Any]) -> int:
    columns = [c for c in values if c in ALBUM_COLUMNS and c != "id"]
    placeholders = ", ".join(f":{c}" for c in columns)
    cursor = await conn.execute(
        f"INSERT INTO albums ({', '.join(columns)}) VALUES ({placeholders});",
        {c: values[c] for c in columns},
    )
    return int(cursor.lastrowid)


async def update_album(
    conn: aiosqlite.Connection, album_id: int, diffs: Mapping[str, Any]
) -> bool:
    """Apply column diffs. Returns False if the album does not exist."""
    if not diffs:
        cursor = await conn.execute("SELECT 1 FROM albums WHERE id = ?;", (int(album_id),))
        return await cursor.fetchone() is not None
    for name in diffs:
        if name not in ALBUM_COLUMNS or name == "id":
            raise ValueError(f"Unknown album column: {name}")
    assignments = ", ".join(f"{c} = :{c}" for c in diffs)
    cursor = await conn.execute(
        f"UPDATE albums SET {assignments} WHERE id = :__id;",
        {**diffs, "__id": int(album_id)},
    )
    return cursor.rowcount > 0


async def delete_album(conn: aiosqlite.Connection, album_id: int) -> bool:
    cursor = await conn.execute("DELETE FROM albums WHERE id = ?;", (int(album_id),))
    return cursor.rowcount > 0


async def select_albums(
    conn: aiosqlite.Connection, sql: str, params: Sequence[Any]
) -> list[AlbumRow]:
    """Run a `SELECT a.* ...` statement built by `tonearm.core.query`."""
    cursor = await conn.execute(sql, tuple(params))
    rows = await cursor.fetchall()
    return [row_to_album(r) for r in rows]
