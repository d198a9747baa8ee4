"""
Tests for tonearm.core.db.schema.

These tests verify:
- Fresh databases are created at the current schema version
- Re-running migrations is harmless
- A database written by a newer version is refused
"""

from __future__ import annotations

import pytest

from tonearm.core import SchemaError
from tonearm.core.db import SCHEMA_VERSION
from tonearm.core.library_db import LibraryDb


@pytest.fixture
async def raw_db() -> LibraryDb:
    """An open in-memory database without a schema."""
    db = LibraryDb(":memory:")
    await db.open()
    yield db
    await db.close()


class TestSchema:
    async def test_fresh_database_is_at_current_version(self, raw_db: LibraryDb) -> None:
        assert await raw_db.schema_version() == 0

        await raw_db.ensure_schema()

        assert await raw_db.schema_version() == SCHEMA_VERSION

    async def test_creates_tables_and_triggers(self, raw_db: LibraryDb) -> None:
        await raw_db.ensure_schema()
        conn = raw_db._require_conn()

        rows = await conn.execute_fetchall(
            "SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger')"
        )
        names = {r[0] for r in rows}

        assert {"albums", "items", "items_fts"} <= names
        assert {"items_fts_ai", "items_fts_ad", "items_fts_au"} <= names

    async def test_creates_lookup_indexes(self, raw_db: LibraryDb) -> None:
        await raw_db.ensure_schema()
        conn = raw_db._require_conn()

        rows = await conn.execute_fetchall("SELECT name FROM sqlite_master WHERE type = 'index'")
        names = {r[0] for r in rows}

        for expected in (
            "idx_items_artist",
            "idx_items_album",
            "idx_items_year",
            "idx_items_genre",
            "idx_items_path",
            "idx_albums_mb_albumid",
        ):
            assert expected in names

    async def test_ensure_schema_is_idempotent(self, raw_db: LibraryDb) -> None:
        await raw_db.ensure_schema()
        await raw_db.ensure_schema()

        assert await raw_db.schema_version() == SCHEMA_VERSION

    async def test_newer_database_is_refused(self, raw_db: LibraryDb) -> None:
        await raw_db.ensure_schema()
        conn = raw_db._require_conn()
        await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1};")

        with pytest.raises(SchemaError):
            await raw_db.ensure_schema()

    async def test_migrates_from_v1(self, raw_db: LibraryDb) -> None:
        """A v1 database only gains the v2 indexes."""
        from tonearm.core.db.schema import migrate

        conn = raw_db._require_conn()
        await migrate(conn, from_version=0, to_version=1)
        assert await raw_db.schema_version() == 1

        await raw_db.ensure_schema()

        assert await raw_db.schema_version() == SCHEMA_VERSION
