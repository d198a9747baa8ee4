"""
Full-text index over items.

`items_fts` is an FTS5 table keyed by `rowid = items.id` that holds its own copy
of `(title, artist, album, albumartist, genre)`. It is maintained by SQLite
triggers created together with the table, so every statement that writes the
`items` table (store methods, FK actions, ad-hoc SQL) updates the index inside
the same transaction. There is no Python-side hook a caller could forget.

FTS5 rows cannot be edited in place, so the update trigger deletes the old row
and inserts the new one.

The helpers below are for reading the index and for explicit repair:
- `search()` returns ranked item ids for free text
- `reindex_items()` / `rebuild()` repair the index and refuse to run outside a
  write transaction (`IndexDesyncRiskError`)
- `find_drift()` lists ids whose index row does not match the items table
"""

from __future__ import annotations

import logging
import re
from typing import Final, Iterable

import aiosqlite

from tonearm.core import IndexDesyncRiskError

logger = logging.getLogger(__name__)

FTS_COLUMNS: Final[tuple[str, ...]] = ("title", "artist", "album", "albumartist", "genre")

_COLS = ", ".join(FTS_COLUMNS)
_NEW = ", ".join(f"new.{c}" for c in FTS_COLUMNS)

CREATE_FTS_TABLE: Final[str] = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
    {_COLS},
    tokenize = 'unicode61 remove_diacritics 2'
)
"""

CREATE_FTS_TRIGGERS: Final[tuple[str, ...]] = (
    f"""
    CREATE TRIGGER IF NOT EXISTS items_fts_ai AFTER INSERT ON items BEGIN
        INSERT INTO items_fts(rowid, {_COLS}) VALUES (new.id, {_NEW});
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS items_fts_ad AFTER DELETE ON items BEGIN
        DELETE FROM items_fts WHERE rowid = old.id;
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS items_fts_au AFTER UPDATE ON items BEGIN
        DELETE FROM items_fts WHERE rowid = old.id;
        INSERT INTO items_fts(rowid, {_COLS}) VALUES (new.id, {_NEW});
    END
    """,
)

# Derived table for joining ranked matches: `JOIN (...) m ON m.id = i.id`.
# Takes one bound parameter, the output of `build_match_expression`.
MATCH_SUBQUERY: Final[str] = "SELECT rowid AS id, rank FROM items_fts WHERE items_fts MATCH ?"

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_match_expression(text: str) -> str | None:
    """
    Turn user text into a safe FTS5 MATCH expression.

    Every word becomes a quoted prefix phrase (`"war"* "pigs"*`), implicitly
    AND-ed. Operators and quotes typed by the user never reach the FTS parser.
    Returns None when the text has no searchable words.
    """
    tokens = _TOKEN_RE.findall(text or "")
    if not tokens:
        return None
    return " ".join(f'"{t}"*' for t in tokens)


async def search(
    conn: aiosqlite.Connection, text: str, *, limit: int | None = None
) -> list[int]:
    """Return item ids matching `text`, best bm25 rank first."""
    expr = build_match_expression(text)
    if expr is None:
        return []
    sql = "SELECT rowid FROM items_fts WHERE items_fts MATCH ? ORDER BY rank, rowid"
    params: tuple[object, ...] = (expr,)
    if limit is not None:
        sql += " LIMIT ?"
        params = (expr, int(limit))
    rows = await conn.execute_fetchall(sql, params)
    return [int(r[0]) for r in rows]


async def get_entry(conn: aiosqlite.Connection, item_id: int) -> tuple[str | None, ...] | None:
    """Return the indexed text tuple for an item id, or None if not indexed."""
    rows = await conn.execute_fetchall(
        f"SELECT {_COLS} FROM items_fts WHERE rowid = ?", (int(item_id),)
    )
    if not rows:
        return None
    return tuple(rows[0])


def _require_write_transaction(conn: aiosqlite.Connection) -> None:
    if not conn.in_transaction:
        raise IndexDesyncRiskError(
            "FTS index maintenance attempted outside a write transaction."
        )


async def reindex_items(conn: aiosqlite.Connection, item_ids: Iterable[int]) -> int:
    """
    Re-index specific items without a full rebuild.

    Ids that no longer exist in `items` only lose their index row.
    Returns the number of index rows written.
    """
    _require_write_transaction(conn)
    written = 0
    for item_id in item_ids:
        await conn.execute("DELETE FROM items_fts WHERE rowid = ?", (int(item_id),))
        cursor = await conn.execute(
            f"""
            INSERT INTO items_fts(rowid, {_COLS})
            SELECT id, {_COLS} FROM items WHERE id = ?
            """,
            (int(item_id),),
        )
        written += max(cursor.rowcount, 0)
    logger.debug("Re-indexed %d item(s)", written)
    return written


async def rebuild(conn: aiosqlite.Connection) -> int:
    """Drop and repopulate the whole index. Returns the number of rows indexed."""
    _require_write_transaction(conn)
    await conn.execute("DELETE FROM items_fts")
    cursor = await conn.execute(
        f"INSERT INTO items_fts(rowid, {_COLS}) SELECT id, {_COLS} FROM items"
    )
    count = max(cursor.rowcount, 0)
    logger.info("Rebuilt full-text index (%d items)", count)
    return count


async def find_drift(conn: aiosqlite.Connection) -> list[int]:
    """
    Return ids where the index and the items table disagree.

    Covers items without an index row, index rows with stale text, and index
    rows whose item no longer exists.
    """
    stale = " OR ".join(f"f.{c} IS NOT i.{c}" for c in FTS_COLUMNS)
    rows = await conn.execute_fetchall(
        f"""
        SELECT i.id FROM items i
        LEFT JOIN items_fts f ON f.rowid = i.id
        WHERE f.rowid IS NULL OR {stale}
        UNION
        SELECT f.rowid FROM items_fts f
        LEFT JOIN items i ON i.id = f.rowid
        WHERE i.id IS NULL
        ORDER BY 1
        """
    )
    return [int(r[0]) for r in rows]
