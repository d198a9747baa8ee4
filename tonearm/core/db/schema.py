"""
Database schema + migrations for Tonearm.

- Connection management and the public `LibraryDb` facade stay in `library_db.py`
- Schema creation, schema versioning, and forward-only migrations live here

Design notes:
- We use SQLite `PRAGMA user_version` as the schema version.
- Migrations are forward-only (no downgrade support).
- Each step runs in its own transaction and bumps `user_version` inside it, so a
  failing step leaves the database at the previous version.
- Every statement uses `IF NOT EXISTS`; re-running a step is harmless.
- Any failure raises `SchemaError`. A half-migrated schema must not be used.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Final, Sequence

import aiosqlite

from tonearm.core import SchemaError
from tonearm.core.db.fts import CREATE_FTS_TABLE, CREATE_FTS_TRIGGERS

logger = logging.getLogger(__name__)

# Bump when you change the schema and add a migration in `migrate()`.
SCHEMA_VERSION: Final[int] = 2

_V1_STATEMENTS: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS albums (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        album TEXT NOT NULL CHECK (album != ''),
        albumartist TEXT NOT NULL CHECK (albumartist != ''),
        year INTEGER,
        artpath TEXT,
        mb_albumid TEXT,
        added REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        album_id INTEGER REFERENCES albums(id) ON DELETE SET NULL,
        path TEXT NOT NULL UNIQUE CHECK (path != ''),

        title TEXT,
        artist TEXT,
        album TEXT,
        albumartist TEXT,
        genre TEXT,

        year INTEGER,
        track INTEGER,
        disc INTEGER,

        format TEXT,
        bitrate INTEGER,
        length REAL,

        mb_trackid TEXT,
        mb_albumid TEXT,

        added REAL NOT NULL,
        mtime REAL
    )
    """,
    # Indexes: tuned for browsing and exact lookups.
    "CREATE INDEX IF NOT EXISTS idx_items_artist ON items(artist)",
    "CREATE INDEX IF NOT EXISTS idx_items_album ON items(album)",
    "CREATE INDEX IF NOT EXISTS idx_items_year ON items(year)",
    "CREATE INDEX IF NOT EXISTS idx_items_genre ON items(genre)",
    "CREATE INDEX IF NOT EXISTS idx_items_path ON items(path)",
    "CREATE INDEX IF NOT EXISTS idx_items_album_id ON items(album_id)",
    CREATE_FTS_TABLE,
    *CREATE_FTS_TRIGGERS,
)

_V2_STATEMENTS: Final[tuple[str, ...]] = (
    # Reconciler lookups: catalog id first, natural key second.
    "CREATE INDEX IF NOT EXISTS idx_albums_mb_albumid ON albums(mb_albumid)",
    """
    CREATE INDEX IF NOT EXISTS idx_albums_natural_key
    ON albums(albumartist COLLATE NOCASE, album COLLATE NOCASE)
    """,
)


async def current_version(conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    return int(row[0]) if row is not None else 0


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """
    Create or migrate schema to current version.

    This function assumes:
    - `conn` is an open aiosqlite connection in autocommit mode
      (`isolation_level=None`), so steps control their own transactions
    - foreign_keys pragma is enabled by the caller
    """
    current = await current_version(conn)

    if current > SCHEMA_VERSION:
        raise SchemaError(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)


async def _apply_step(
    conn: aiosqlite.Connection, version: int, statements: Sequence[str]
) -> None:
    logger.info("Applying schema migration to v%d", version)
    try:
        await conn.execute("BEGIN IMMEDIATE;")
        for sql in statements:
            await conn.execute(sql)
        # PRAGMA does not accept bound parameters; `version` is an int constant.
        await conn.execute(f"PRAGMA user_version = {int(version)};")
        await conn.execute("COMMIT;")
    except sqlite3.Error as e:
        if conn.in_transaction:
            await conn.execute("ROLLBACK;")
        raise SchemaError(f"Schema migration to v{version} failed: {e}") from e


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """
    Perform forward-only migrations.

    Keep migrations small. If you need a big refactor, create a new DB.
    """
    # v0 -> v1: albums, items, FTS shadow index + triggers
    if from_version == 0 and to_version >= 1:
        await _apply_step(conn, 1, _V1_STATEMENTS)
        from_version = 1

    # v1 -> v2: album lookup indexes
    if from_version == 1 and to_version >= 2:
        await _apply_step(conn, 2, _V2_STATEMENTS)
        from_version = 2

    if from_version != to_version:
        raise SchemaError(f"No migration path from {from_version} to {to_version}.")
