"""
Item-related DB queries used by `tonearm.core.library_db.LibraryDb`.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`
  and return rows/materialized dataclasses.
- Ordering is centralized via `tonearm.core.db.ordering.items_order_clause`.
- These functions assume `conn.row_factory = aiosqlite.Row`.
- Write helpers do not open transactions; `LibraryDb` wraps them.

Important:
- Do NOT interpolate user input into SQL. Dynamic SQL here is limited to column
  names checked against `ITEM_COLUMNS` and ORDER BY fragments from the whitelist.
"""

from __future__ import annotations

from typing import Any, Final, Mapping, Sequence

import aiosqlite

from tonearm.core.db.models import ItemRow
from tonearm.core.db.ordering import items_order_clause

ITEM_COLUMNS: Final[tuple[str, ...]] = (
    "id",
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
    "added",
    "mtime",
)


def row_to_item(row: aiosqlite.Row) -> ItemRow:
    """Convert an aiosqlite Row to an ItemRow dataclass."""
    return ItemRow(
        id=int(row["id"]),
        album_id=row["album_id"],
        path=str(row["path"]),
        title=row["title"],
        artist=row["artist"],
        album=row["album"],
        albumartist=row["albumartist"],
        genre=row["genre"],
        year=row["year"],
        track=row["track"],
        disc=row["disc"],
        format=row["format"],
        bitrate=row["bitrate"],
        length=row["length"],
        mb_trackid=row["mb_trackid"],
        mb_albumid=row["mb_albumid"],
        added=float(row["added"]),
        mtime=row["mtime"],
    )


def _where_clause(filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    if not filters:
        return "", []
    parts: list[str] = []
    params: list[Any] = []
    for name, value in filters.items():
        if name not in ITEM_COLUMNS:
            raise ValueError(f"Unknown item column: {name}")
        if value is None:
            parts.append(f"i.{name} IS NULL")
        else:
            parts.append(f"i.{name} = ?")
            params.append(value)
    return "WHERE " + " AND ".join(parts), params


# ---------------------------------------------------------------------------
# Basic get/list/count
# ---------------------------------------------------------------------------


async def get_item_by_id(conn: aiosqlite.Connection, item_id: int) -> ItemRow | None:
    cursor = await conn.execute("SELECT * FROM items WHERE id = ?;", (int(item_id),))
    row = await cursor.fetchone()
    return row_to_item(row) if row else None


async def get_item_by_path(conn: aiosqlite.Connection, path: str) -> ItemRow | None:
    cursor = await conn.execute("SELECT * FROM items WHERE path = ?;", (str(path),))
    row = await cursor.fetchone()
    return row_to_item(row) if row else None


async def get_items_by_ids(conn: aiosqlite.Connection, item_ids: Sequence[int]) -> list[ItemRow]:
    """Hydrate items for `item_ids`, preserving the given order. Unknown ids are skipped."""
    if not item_ids:
        return []
    by_id: dict[int, ItemRow] = {}
    # Chunk to stay well below SQLite's bound-parameter limit.
    for start in range(0, len(item_ids), 500):
        chunk = [int(x) for x in item_ids[start : start + 500]]
        placeholders = ", ".join("?" for _ in chunk)
        cursor = await conn.execute(
            f"SELECT * FROM items WHERE id IN ({placeholders});", chunk
        )
        for r in await cursor.fetchall():
            item = row_to_item(r)
            by_id[item.id] = item
    return [by_id[i] for i in item_ids if i in by_id]


async def list_items(
    conn: aiosqlite.Connection,
    filters: Mapping[str, Any] | None = None,
    *,
    limit: int | None,
    offset: int,
    order_by: str,
) -> list[ItemRow]:
    where, params = _where_clause(filters)
    order_clause = items_order_clause(order_by)
    cursor = await conn.execute(
        f"""
        SELECT * FROM items i
        {where}
        {order_clause}
        LIMIT ? OFFSET ?;
        """,
        (*params, -1 if limit is None else int(limit), int(offset)),
    )
    rows = await cursor.fetchall()
    return [row_to_item(r) for r in rows]


async def count_items(
    conn: aiosqlite.Connection, filters: Mapping[str, Any] | None = None
) -> int:
    where, params = _where_clause(filters)
    cursor = await conn.execute(f"SELECT COUNT(*) AS c FROM items i {where};", params)
    row = await cursor.fetchone()
    return int(row["c"]) if row else 0


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def insert_item(conn: aiosqlite.Connection, values: Mapping[str, Any]) -> int:
    columns = [c for c in values if c in ITEM_COLUMNS and c != "id"]
    placeholders = ", ".join(f":{c}" for c in columns)
    cursor = await conn.execute(
        f"INSERT INTO items ({', '.join(columns)}) VALUES ({placeholders});",
        {c: values[c] for c in columns},
    )
    return int(cursor.lastrowid)


async def update_item(
    conn: aiosqlite.Connection, item_id: int, diffs: Mapping[str, Any]
) -> bool:
    """Apply column diffs. Returns False if the item does not exist."""
    if not diffs:
        cursor = await conn.execute("SELECT 1 FROM items WHERE id = ?;", (int(item_id),))
        return await cursor.fetchone() is not None
    for name in diffs:
        if name not in ITEM_COLUMNS or name == "id":
            raise ValueError(f"Unknown item column: {name}")
    assignments = ", ".join(f"{c} = :{c}" for c in diffs)
    cursor = await conn.execute(
        f"UPDATE items SET {assignments} WHERE id = :__id;",
        {**diffs, "__id": int(item_id)},
    )
    return cursor.rowcount > 0


async def delete_item(conn: aiosqlite.Connection, item_id: int) -> bool:
    """Delete an item by id. Returns True if deleted, False if not found."""
    cursor = await conn.execute("DELETE FROM items WHERE id = ?;", (int(item_id),))
    return cursor.rowcount > 0


async def detach_items_from_album(conn: aiosqlite.Connection, album_id: int) -> int:
    """Null out `album_id` on the album's items. Returns count of detached items."""
    cursor = await conn.execute(
        "UPDATE items SET album_id = NULL WHERE album_id = ?;", (int(album_id),)
    )
    return cursor.rowcount


async def propagate_album_fields(
    conn: aiosqlite.Connection, album_id: int, values: Mapping[str, Any]
) -> int:
    """Copy denormalized album columns onto the album's items. Returns count of items touched."""
    if not values:
        return 0
    for name in values:
        if name not in ITEM_COLUMNS:
            raise ValueError(f"Unknown item column: {name}")
    assignments = ", ".join(f"{c} = :{c}" for c in values)
    cursor = await conn.execute(
        f"UPDATE items SET {assignments} WHERE album_id = :__album_id;",
        {**values, "__album_id": int(album_id)},
    )
    return cursor.rowcount


# ---------------------------------------------------------------------------
# Compiled queries
# ---------------------------------------------------------------------------


async def select_items(
    conn: aiosqlite.Connection, sql: str, params: Sequence[Any]
) -> list[ItemRow]:
    """Run a `SELECT i.* ...` statement built by `tonearm.core.query`."""
    cursor = await conn.execute(sql, tuple(params))
    rows = await cursor.fetchall()
    return [row_to_item(r) for r in rows]
