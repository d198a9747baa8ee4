"""
Music library database access layer.

Goals:
- Minimal and testable.
- SQLite + aiosqlite, async/await friendly.
- Schema evolves via `user_version` migrations.

This module is intentionally independent of the web layer.

Note:
- Models/DTOs and normalization helpers live in `tonearm.core.db.models`
- Schema/migrations live in `tonearm.core.db.schema`
- The full-text index lives in `tonearm.core.db.fts`
- Query functions live in `tonearm.core.db.queries_*` modules
- `LibraryDb` remains the public facade used by the rest of the codebase

Transactions:
- The connection runs in autocommit mode; `transaction()` issues
  `BEGIN IMMEDIATE` / `COMMIT` itself. Nested use in the same task becomes a
  SAVEPOINT, so store methods can be composed inside a caller's transaction.
- One `asyncio.Lock` serializes transactions and top-level reads. The lock is
  re-entrant for the task that holds it. Do not hand the database to a child
  task while holding a transaction; the child would wait for the parent.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sqlite3
import time
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Iterator, Mapping, Sequence

import aiosqlite

from tonearm.core import (
    ConstraintViolationError,
    NotFoundError,
    TransactionFailureError,
)
from tonearm.core.db import fts, queries_albums, queries_items, queries_meta
from tonearm.core.db.models import (
    ALBUM_DENORMALIZED_FIELDS,
    ALBUM_MUTABLE_FIELDS,
    ITEM_MUTABLE_FIELDS,
    AlbumRow,
    ItemRow,
    LibraryStats,
    NewAlbum,
    NewItem,
    normalize_field,
)
from tonearm.core.db.schema import current_version
from tonearm.core.db.schema import ensure_schema as ensure_schema_sql

logger = logging.getLogger(__name__)


@contextmanager
def _constraint_errors(action: str) -> Iterator[None]:
    """Map integrity and value errors from a single store operation."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise ConstraintViolationError(f"{action}: {e}") from e
    except ValueError as e:
        raise ConstraintViolationError(f"{action}: {e}") from e


class LibraryDb:
    """
    Async access layer for the music library DB.

    Usage:
        db = LibraryDb("tonearm.db")
        await db.open()
        await db.ensure_schema()
        ... queries ...
        await db.close()

    Notes:
    - This class is designed to be injected into other components.
    - Connections are not pooled; we keep a single connection.
    """

    def __init__(self, db_path: str | Path, *, busy_timeout: float = 5.0) -> None:
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task[Any] | None = None
        self._tx_depth = 0
        self._savepoint_seq = 0

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def db_path(self) -> str:
        return self._db_path

    async def open(self) -> None:
        if self._conn is not None:
            return
        self._conn = await aiosqlite.connect(
            self._db_path, isolation_level=None, timeout=self._busy_timeout
        )
        self._conn.row_factory = aiosqlite.Row

        # Pragmas: modern defaults without being clever.
        await self._conn.execute("PRAGMA foreign_keys = ON;")
        await self._conn.execute("PRAGMA journal_mode = WAL;")
        await self._conn.execute("PRAGMA synchronous = NORMAL;")
        await self._conn.execute("PRAGMA temp_store = MEMORY;")

        logger.debug("Opened library database %s", self._db_path)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("LibraryDb is not open. Call await db.open() first.")
        return self._conn

    async def ensure_schema(self) -> None:
        """Create or migrate schema to current version."""
        conn = self._require_conn()
        async with self._guard():
            await ensure_schema_sql(conn)

    async def schema_version(self) -> int:
        conn = self._require_conn()
        async with self._guard():
            return await current_version(conn)

    # ===========================================================================
    # Locking / transactions
    # ===========================================================================

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        task = asyncio.current_task()
        if self._owner is not None and self._owner is task:
            yield
            return
        async with self._lock:
            self._owner = task
            try:
                yield
            finally:
                self._owner = None

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block atomically.

        The outermost block commits on success and rolls back on any exception.
        Nested blocks roll back only their own SAVEPOINT. SQLite failures other
        than constraint violations surface as `TransactionFailureError`.
        """
        conn = self._require_conn()
        async with self._guard():
            if self._tx_depth > 0:
                async with self._savepoint(conn):
                    yield conn
                return

            try:
                await conn.execute("BEGIN IMMEDIATE;")
            except sqlite3.Error as e:
                raise TransactionFailureError(f"Cannot start transaction: {e}") from e
            self._tx_depth = 1
            try:
                yield conn
            except BaseException as e:
                await self._rollback(conn)
                if isinstance(e, sqlite3.IntegrityError):
                    raise ConstraintViolationError(str(e)) from e
                if isinstance(e, sqlite3.Error):
                    raise TransactionFailureError(f"Transaction rolled back: {e}") from e
                raise
            finally:
                self._tx_depth = 0

            try:
                await conn.execute("COMMIT;")
            except sqlite3.Error as e:
                await self._rollback(conn)
                raise TransactionFailureError(f"Commit failed: {e}") from e

    @asynccontextmanager
    async def _savepoint(self, conn: aiosqlite.Connection) -> AsyncIterator[None]:
        self._savepoint_seq += 1
        name = f"tonearm_sp_{self._savepoint_seq}"
        await conn.execute(f"SAVEPOINT {name};")
        self._tx_depth += 1
        try:
            yield
        except BaseException:
            if conn.in_transaction:
                await conn.execute(f"ROLLBACK TO SAVEPOINT {name};")
                await conn.execute(f"RELEASE SAVEPOINT {name};")
            raise
        else:
            await conn.execute(f"RELEASE SAVEPOINT {name};")
        finally:
            self._tx_depth -= 1

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            await conn.execute("ROLLBACK;")
        except sqlite3.Error:
            logger.exception("Rollback failed")

    # ===========================================================================
    # Albums
    # ===========================================================================

    async def insert_album(self, album: NewAlbum) -> int:
        values = self._normalize_record(album, "album")
        for required in ("album", "albumartist"):
            if values.get(required) is None:
                raise ConstraintViolationError(f"Album field '{required}' is required.")
        values["added"] = time.time()
        async with self.transaction() as conn:
            with _constraint_errors("insert album"):
                album_id = await queries_albums.insert_album(conn, values)
        logger.debug("Inserted album %d (%s - %s)", album_id, values["albumartist"], values["album"])
        return album_id

    async def update_album(self, album_id: int, diffs: Mapping[str, Any]) -> AlbumRow:
        """
        Apply a partial update to an album and return the updated row.

        Changes to denormalized fields are copied onto the album's items in the
        same transaction.
        """
        values = self._normalize_diffs(diffs, ALBUM_MUTABLE_FIELDS, "album")
        for required in ("album", "albumartist"):
            if required in values and values[required] is None:
                raise ConstraintViolationError(f"Album field '{required}' is required.")
        async with self.transaction() as conn:
            with _constraint_errors("update album"):
                if not await queries_albums.update_album(conn, album_id, values):
                    raise NotFoundError(f"Album {album_id} not found.")
                propagated = {k: values[k] for k in ALBUM_DENORMALIZED_FIELDS if k in values}
                if propagated:
                    touched = await queries_items.propagate_album_fields(conn, album_id, propagated)
                    logger.debug("Propagated %s to %d item(s) of album %d", sorted(propagated), touched, album_id)
            row = await queries_albums.get_album_by_id(conn, album_id)
        assert row is not None
        return row

    async def delete_album(self, album_id: int) -> int:
        """
        Delete an album. Its items are kept with `album_id` set to NULL.

        Returns the number of detached items.
        """
        async with self.transaction() as conn:
            if await queries_albums.get_album_by_id(conn, album_id) is None:
                raise NotFoundError(f"Album {album_id} not found.")
            detached = await queries_items.detach_items_from_album(conn, album_id)
            await queries_albums.delete_album(conn, album_id)
        logger.info("Deleted album %d (%d item(s) detached)", album_id, detached)
        return detached

    async def get_album(self, album_id: int) -> AlbumRow:
        conn = self._require_conn()
        async with self._guard():
            row = await queries_albums.get_album_by_id(conn, album_id)
        if row is None:
            raise NotFoundError(f"Album {album_id} not found.")
        return row

    async def get_albums_by_ids(self, album_ids: Sequence[int]) -> list[AlbumRow]:
        conn = self._require_conn()
        async with self._guard():
            return await queries_albums.get_albums_by_ids(conn, album_ids)

    async def find_album_by_mb_albumid(self, mb_albumid: str) -> AlbumRow | None:
        conn = self._require_conn()
        async with self._guard():
            return await queries_albums.find_album_by_mb_albumid(conn, mb_albumid)

    async def find_album_by_natural_key(
        self, albumartist: str, album: str, *, unresolved_only: bool = False
    ) -> AlbumRow | None:
        conn = self._require_conn()
        async with self._guard():
            return await queries_albums.find_album_by_natural_key(
                conn, albumartist, album, unresolved_only=unresolved_only
            )

    async def list_albums(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
        order_by: str = "id",
    ) -> list[AlbumRow]:
        self._validate_paging(offset=offset, limit=limit)
        conn = self._require_conn()
        async with self._guard():
            with _constraint_errors("list albums"):
                return await queries_albums.list_albums(
                    conn, filters, limit=limit, offset=offset, order_by=order_by
                )

    async def count_albums(self) -> int:
        conn = self._require_conn()
        async with self._guard():
            return await queries_albums.count_albums(conn)

    async def get_album_item_count(self, album_id: int) -> int:
        conn = self._require_conn()
        async with self._guard():
            return await queries_albums.get_album_item_count(conn, album_id)

    async def query_albums(self, sql: str, params: Sequence[Any]) -> list[AlbumRow]:
        """Run a compiled album query (see `tonearm.core.query`)."""
        conn = self._require_conn()
        async with self._guard():
            return await queries_albums.select_albums(conn, sql, params)

    # ===========================================================================
    # Items
    # ===========================================================================

    async def insert_item(self, item: NewItem) -> int:
        values = self._normalize_record(item, "item")
        if not values.get("path"):
            raise ConstraintViolationError("Item field 'path' is required.")
        values["added"] = time.time()
        async with self.transaction() as conn:
            if values.get("album_id") is not None:
                await self._copy_album_fields(conn, values["album_id"], values)
            with _constraint_errors("insert item"):
                item_id = await queries_items.insert_item(conn, values)
        logger.debug("Inserted item %d (%s)", item_id, values["path"])
        return item_id

    async def update_item(self, item_id: int, diffs: Mapping[str, Any]) -> ItemRow:
        """
        Apply a partial update to an item and return the updated row.

        Moving an item to another album (`album_id`) also copies that album's
        denormalized fields onto the item. Album fields of an item that belongs
        to an album can only be set to the album's own values.
        """
        values = self._normalize_diffs(diffs, ITEM_MUTABLE_FIELDS, "item")
        if "path" in values and not values["path"]:
            raise ConstraintViolationError("Item field 'path' is required.")
        async with self.transaction() as conn:
            album_id = values.get("album_id")
            if "album_id" not in values and any(k in values for k in ALBUM_DENORMALIZED_FIELDS):
                current = await queries_items.get_item_by_id(conn, item_id)
                if current is None:
                    raise NotFoundError(f"Item {item_id} not found.")
                album_id = current.album_id
            if album_id is not None:
                await self._copy_album_fields(conn, album_id, values)
            with _constraint_errors("update item"):
                if not await queries_items.update_item(conn, item_id, values):
                    raise NotFoundError(f"Item {item_id} not found.")
            row = await queries_items.get_item_by_id(conn, item_id)
        assert row is not None
        return row

    @staticmethod
    async def _copy_album_fields(
        conn: aiosqlite.Connection, album_id: int, values: dict[str, Any]
    ) -> None:
        """Fill `values` with the album's denormalized fields; refuse conflicting ones."""
        album = await queries_albums.get_album_by_id(conn, album_id)
        if album is None:
            raise ConstraintViolationError(f"Album {album_id} does not exist.")
        for name in ALBUM_DENORMALIZED_FIELDS:
            owned = getattr(album, name)
            given = values.get(name)
            if given is not None and given != owned:
                raise ConstraintViolationError(
                    f"Item field '{name}' ({given!r}) conflicts with album {album_id} ({owned!r})."
                )
            values[name] = owned

    async def delete_item(self, item_id: int) -> None:
        async with self.transaction() as conn:
            if not await queries_items.delete_item(conn, item_id):
                raise NotFoundError(f"Item {item_id} not found.")
        logger.debug("Deleted item %d", item_id)

    async def get_item(self, item_id: int) -> ItemRow:
        conn = self._require_conn()
        async with self._guard():
            row = await queries_items.get_item_by_id(conn, item_id)
        if row is None:
            raise NotFoundError(f"Item {item_id} not found.")
        return row

    async def find_item_by_path(self, path: str) -> ItemRow | None:
        conn = self._require_conn()
        async with self._guard():
            return await queries_items.get_item_by_path(conn, path)

    async def get_items_by_ids(self, item_ids: Sequence[int]) -> list[ItemRow]:
        conn = self._require_conn()
        async with self._guard():
            return await queries_items.get_items_by_ids(conn, item_ids)

    async def list_items(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
        order_by: str = "id",
    ) -> list[ItemRow]:
        self._validate_paging(offset=offset, limit=limit)
        conn = self._require_conn()
        async with self._guard():
            with _constraint_errors("list items"):
                return await queries_items.list_items(
                    conn, filters, limit=limit, offset=offset, order_by=order_by
                )

    async def count_items(self, filters: Mapping[str, Any] | None = None) -> int:
        conn = self._require_conn()
        async with self._guard():
            with _constraint_errors("count items"):
                return await queries_items.count_items(conn, filters)

    async def query_items(self, sql: str, params: Sequence[Any]) -> list[ItemRow]:
        """Run a compiled item query (see `tonearm.core.query`)."""
        conn = self._require_conn()
        async with self._guard():
            return await queries_items.select_items(conn, sql, params)

    # ===========================================================================
    # Full-text index
    # ===========================================================================

    async def search_item_ids(self, text: str, *, limit: int | None = None) -> list[int]:
        """Item ids matching free text, best rank first."""
        conn = self._require_conn()
        async with self._guard():
            return await fts.search(conn, text, limit=limit)

    async def get_index_entry(self, item_id: int) -> tuple[str | None, ...] | None:
        conn = self._require_conn()
        async with self._guard():
            return await fts.get_entry(conn, item_id)

    async def reindex_items(self, item_ids: Iterable[int]) -> int:
        async with self.transaction() as conn:
            return await fts.reindex_items(conn, item_ids)

    async def rebuild_index(self) -> int:
        async with self.transaction() as conn:
            return await fts.rebuild(conn)

    async def find_index_drift(self) -> list[int]:
        conn = self._require_conn()
        async with self._guard():
            return await fts.find_drift(conn)

    # ===========================================================================
    # Stats
    # ===========================================================================

    async def stats(self) -> LibraryStats:
        conn = self._require_conn()
        async with self._guard():
            return await queries_meta.get_stats(conn)

    # ===========================================================================
    # Helpers
    # ===========================================================================

    @staticmethod
    def _normalize_record(record: NewAlbum | NewItem, kind: str) -> dict[str, Any]:
        try:
            return {k: normalize_field(k, v) for k, v in dataclasses.asdict(record).items()}
        except (TypeError, ValueError) as e:
            raise ConstraintViolationError(f"Invalid {kind} value: {e}") from e

    @staticmethod
    def _normalize_diffs(
        diffs: Mapping[str, Any], allowed: frozenset[str], kind: str
    ) -> dict[str, Any]:
        unknown = sorted(set(diffs) - allowed)
        if unknown:
            raise ConstraintViolationError(
                f"Cannot update {kind} field(s): {', '.join(unknown)}"
            )
        try:
            return {k: normalize_field(k, v) for k, v in diffs.items()}
        except (TypeError, ValueError) as e:
            raise ConstraintViolationError(f"Invalid {kind} value: {e}") from e

    @staticmethod
    def _validate_paging(*, offset: int, limit: int | None) -> None:
        if offset < 0:
            raise ValueError("offset must be >= 0")
        if limit is not None and limit <= 0:
            raise ValueError("limit must be > 0")
