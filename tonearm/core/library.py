from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from tonearm.core import ConstraintViolationError, CoreError, TagReadError
from tonearm.core.db.models import (
    ALBUM_DENORMALIZED_FIELDS,
    ALBUM_MUTABLE_FIELDS,
    ITEM_MUTABLE_FIELDS,
    AlbumRow,
    ItemRow,
    LibraryStats,
)
from tonearm.core.library_db import LibraryDb
from tonearm.core.providers import (
    ArtFetcher,
    CandidateChooser,
    FileMover,
    MetadataResolver,
    ResolvedRelease,
    TagBundle,
    first_candidate,
)
from tonearm.core.query import build_album_query, build_item_query
from tonearm.core.reconciler import ImportReconciler, ReconcileOutcome
from tonearm.core.scanner import DEFAULT_AUDIO_EXTENSIONS, iter_audio_files, read_tags

logger = logging.getLogger(__name__)

Query = str | Sequence[str]


@dataclass(frozen=True, slots=True)
class ImportFailure:
    path: str
    reason: str


@dataclass(frozen=True, slots=True)
class ImportReport:
    imported: tuple[ReconcileOutcome, ...] = ()
    failures: tuple[ImportFailure, ...] = ()

    @property
    def items_created(self) -> int:
        return sum(1 for o in self.imported if o.item_created)

    @property
    def items_updated(self) -> int:
        return sum(1 for o in self.imported if not o.item_created)

    @property
    def albums_created(self) -> int:
        return sum(1 for o in self.imported if o.album_created)


@dataclass(frozen=True, slots=True)
class UpdateResult:
    updated: int = 0
    unchanged: int = 0
    missing: tuple[str, ...] = ()
    failures: tuple[ImportFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class RemoveResult:
    items_removed: int = 0
    albums_removed: int = 0
    files_deleted: int = 0


@dataclass
class _ImportRun:
    """Mutable per-batch state for `import_paths`."""

    imported: list[ReconcileOutcome] = field(default_factory=list)
    failures: list[ImportFailure] = field(default_factory=list)
    art_cache: dict[str, str | None] = field(default_factory=dict)


class MusicLibraryError(CoreError):
    """Base error for MusicLibrary operations."""


class MusicLibraryNotReadyError(MusicLibraryError):
    """Raised when operations are attempted before the library is initialized."""


def parse_assignments(assignments: Mapping[str, Any] | Iterable[str]) -> dict[str, Any]:
    """
    Accept `{"year": "1971"}` or `["year=1971", "genre="]`.

    An empty right-hand side clears the field.
    """
    if isinstance(assignments, Mapping):
        return dict(assignments)
    out: dict[str, Any] = {}
    for raw in assignments:
        name, sep, value = raw.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ConstraintViolationError(f"Expected field=value, got {raw!r}")
        out[name] = value if value != "" else None
    return out


class MusicLibrary:
    """
    High-level facade for the Tonearm music library.

    Dependencies:
    - `LibraryDb` for persistence
    - `ImportReconciler` for turning tags into album/item rows
    - `scanner` for tag extraction
    - `query` for the ls/rm/modify/update query language

    Collaborators (resolver, mover, art fetcher) are passed per call so the
    CLI and tests can choose them independently.
    """

    def __init__(
        self,
        *,
        db: LibraryDb,
        extensions: frozenset[str] = DEFAULT_AUDIO_EXTENSIONS,
        follow_symlinks: bool = False,
    ) -> None:
        self._db = db
        self._extensions = extensions
        self._follow_symlinks = follow_symlinks
        self._reconciler = ImportReconciler(db)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def db(self) -> LibraryDb:
        return self._db

    async def initialize(self) -> None:
        """
        Initialize underlying storage and prepare the library.

        Contract:
        - `LibraryDb` must already be open.
        - schema/migrations are ensured here; a `SchemaError` is fatal.
        """
        if not self._db.is_open:
            raise MusicLibraryError(
                "LibraryDb is not open. Open it before initializing MusicLibrary."
            )

        await self._db.ensure_schema()
        self._initialized = True

    # ===========================================================================
    # Import
    # ===========================================================================

    async def import_paths(
        self,
        paths: Sequence[str | Path],
        *,
        resolver: MetadataResolver | None = None,
        chooser: CandidateChooser = first_candidate,
        mover: FileMover | None = None,
        art_fetcher: ArtFetcher | None = None,
    ) -> ImportReport:
        """
        Import files and directories.

        Each file is read, optionally resolved, moved and given art, then
        reconciled in its own transaction. A failing file is recorded in the
        report and the batch continues.
        """
        self._require_initialized()
        run = _ImportRun()

        for root in paths:
            root_path = Path(root)
            try:
                async for path in iter_audio_files(
                    root_path, extensions=self._extensions, follow_symlinks=self._follow_symlinks
                ):
                    await self._import_one(
                        path,
                        run,
                        resolver=resolver,
                        chooser=chooser,
                        mover=mover,
                        art_fetcher=art_fetcher,
                    )
            except FileNotFoundError:
                logger.warning("Import path does not exist: %s", root_path)
                run.failures.append(ImportFailure(str(root_path), "path does not exist"))

        report = ImportReport(imported=tuple(run.imported), failures=tuple(run.failures))
        logger.info(
            "Import finished: %d new, %d updated, %d album(s) created, %d failure(s)",
            report.items_created,
            report.items_updated,
            report.albums_created,
            len(report.failures),
        )
        return report

    async def _import_one(
        self,
        path: Path,
        run: _ImportRun,
        *,
        resolver: MetadataResolver | None,
        chooser: CandidateChooser,
        mover: FileMover | None,
        art_fetcher: ArtFetcher | None,
    ) -> None:
        destination: str | None = None
        try:
            tags = await asyncio.to_thread(read_tags, path)
            resolved = await self._resolve(tags, resolver, chooser)
            destination = await mover.move(path, tags) if mover is not None else None
            art_path = await self._fetch_art(resolved, art_fetcher, run.art_cache)
            outcome = await self._reconciler.reconcile(
                tags, resolved, destination=destination, art_path=art_path
            )
        except (CoreError, OSError) as e:
            reason = f"{type(e).__name__}: {e}"
            if destination is not None:
                # The file is already at its new place but not in the library.
                reason = f"{reason} (file moved to {destination})"
            logger.warning("Import failed for %s: %s", path, reason)
            run.failures.append(ImportFailure(str(path), reason))
            return
        run.imported.append(outcome)

    @staticmethod
    async def _resolve(
        tags: TagBundle,
        resolver: MetadataResolver | None,
        chooser: CandidateChooser,
    ) -> ResolvedRelease | None:
        if resolver is None:
            return None
        try:
            candidates = await resolver.resolve(tags)
        except Exception as e:  # noqa: BLE001 - a lookup failure must not fail the import
            logger.warning("Metadata lookup failed for %s: %s", tags.path, e)
            return None
        if not candidates:
            logger.debug("No catalog match for %s", tags.path)
            return None
        return chooser(tags, candidates)

    @staticmethod
    async def _fetch_art(
        resolved: ResolvedRelease | None,
        art_fetcher: ArtFetcher | None,
        cache: dict[str, str | None],
    ) -> str | None:
        if art_fetcher is None or resolved is None or not resolved.mb_albumid:
            return None
        if resolved.mb_albumid in cache:
            return cache[resolved.mb_albumid]
        try:
            art_path = await art_fetcher.fetch(resolved.mb_albumid)
        except Exception as e:  # noqa: BLE001 - missing art must not fail the import
            logger.warning("Cover art fetch failed for %s: %s", resolved.mb_albumid, e)
            art_path = None
        cache[resolved.mb_albumid] = art_path
        return art_path

    async def import_file(
        self,
        tags: TagBundle,
        resolved: ResolvedRelease | None = None,
        *,
        destination: str | None = None,
        art_path: str | None = None,
    ) -> ReconcileOutcome:
        """Reconcile already-read tags. Errors propagate to the caller."""
        self._require_initialized()
        return await self._reconciler.reconcile(
            tags, resolved, destination=destination, art_path=art_path
        )

    # ===========================================================================
    # Queries
    # ===========================================================================

    async def list_items(
        self, query: Query = "", *, limit: int | None = None, offset: int = 0
    ) -> list[ItemRow]:
        self._require_initialized()
        compiled = build_item_query(query, limit=limit, offset=offset)
        return await self._db.query_items(compiled.sql, compiled.params)

    async def list_albums(
        self, query: Query = "", *, limit: int | None = None, offset: int = 0
    ) -> list[AlbumRow]:
        self._require_initialized()
        compiled = build_album_query(query, limit=limit, offset=offset)
        return await self._db.query_albums(compiled.sql, compiled.params)

    async def get_item(self, item_id: int) -> ItemRow:
        self._require_initialized()
        return await self._db.get_item(item_id)

    async def get_album(self, album_id: int) -> AlbumRow:
        self._require_initialized()
        return await self._db.get_album(album_id)

    async def get_album_items(self, album_id: int) -> list[ItemRow]:
        self._require_initialized()
        await self._db.get_album(album_id)
        return await self._db.list_items({"album_id": album_id}, order_by="tracknum")

    async def stats(self) -> LibraryStats:
        self._require_initialized()
        return await self._db.stats()

    # ===========================================================================
    # Mutations
    # ===========================================================================

    async def update(self, query: Query = "") -> UpdateResult:
        """
        Re-read tags for matching items whose file changed since the last read.

        Missing files are reported, never deleted. Album links are left alone.
        """
        items = await self.list_items(query)
        updated = 0
        unchanged = 0
        missing: list[str] = []
        failures: list[ImportFailure] = []

        for item in items:
            path = Path(item.path)
            try:
                mtime = (await asyncio.to_thread(path.stat)).st_mtime
            except FileNotFoundError:
                logger.warning("File missing: %s", item.path)
                missing.append(item.path)
                continue
            except OSError as e:
                failures.append(ImportFailure(item.path, f"{type(e).__name__}: {e}"))
                continue

            if item.mtime is not None and mtime <= item.mtime:
                unchanged += 1
                continue

            try:
                tags = await asyncio.to_thread(read_tags, path)
            except TagReadError as e:
                logger.warning("Cannot re-read %s: %s", item.path, e)
                failures.append(ImportFailure(item.path, str(e)))
                continue

            try:
                await self._db.update_item(
                    item.id,
                    {
                        "title": tags.title,
                        "artist": tags.artist,
                        "genre": tags.genre,
                        "year": tags.year,
                        "track": tags.track,
                        "disc": tags.disc,
                        "format": tags.format,
                        "bitrate": tags.bitrate,
                        "length": tags.length,
                        "mtime": tags.mtime,
                    },
                )
            except CoreError as e:
                logger.warning("Cannot update %s: %s", item.path, e)
                failures.append(ImportFailure(item.path, f"{type(e).__name__}: {e}"))
                continue
            updated += 1

        logger.info(
            "Update finished: %d updated, %d unchanged, %d missing, %d failure(s)",
            updated,
            unchanged,
            len(missing),
            len(failures),
        )
        return UpdateResult(
            updated=updated,
            unchanged=unchanged,
            missing=tuple(missing),
            failures=tuple(failures),
        )

    async def modify(
        self,
        query: Query,
        assignments: Mapping[str, Any] | Iterable[str],
        *,
        album: bool = False,
    ) -> int:
        """
        Set fields on every matching item (or album with `album=True`).

        Album title/artist/catalog id live on the album: change them with
        `album=True` so every item of the album follows. Setting `album_id`
        moves items to that album and gives them its fields. Returns the number
        of rows modified.
        """
        values = parse_assignments(assignments)
        if not values:
            raise ConstraintViolationError("Nothing to modify.")

        if album:
            unknown = sorted(set(values) - ALBUM_MUTABLE_FIELDS)
            if unknown:
                raise ConstraintViolationError(f"Cannot modify album field(s): {', '.join(unknown)}")
            albums = await self.list_albums(query)
            async with self._db.transaction():
                for a in albums:
                    await self._db.update_album(a.id, values)
            logger.info("Modified %d album(s)", len(albums))
            return len(albums)

        unknown = sorted(set(values) - ITEM_MUTABLE_FIELDS)
        if unknown:
            raise ConstraintViolationError(f"Cannot modify item field(s): {', '.join(unknown)}")
        album_fields = sorted(set(values) & set(ALBUM_DENORMALIZED_FIELDS))

        items = await self.list_items(query)
        async with self._db.transaction():
            for item in items:
                if album_fields and item.album_id is not None and "album_id" not in values:
                    raise ConstraintViolationError(
                        f"Item {item.id} belongs to album {item.album_id}; "
                        f"modify {', '.join(album_fields)} on the album instead."
                    )
                await self._db.update_item(item.id, values)
        logger.info("Modified %d item(s)", len(items))
        return len(items)

    async def remove(
        self, query: Query, *, album: bool = False, delete_files: bool = False
    ) -> RemoveResult:
        """
        Remove matching items, or with `album=True` matching albums and their items.

        Files are deleted only after the database change committed; a file that
        cannot be deleted is logged and skipped.
        """
        if album:
            albums = await self.list_albums(query)
            items: list[ItemRow] = []
            async with self._db.transaction():
                for a in albums:
                    album_items = await self._db.list_items({"album_id": a.id})
                    for item in album_items:
                        await self._db.delete_item(item.id)
                    items.extend(album_items)
                    await self._db.delete_album(a.id)
            albums_removed = len(albums)
        else:
            items = await self.list_items(query)
            async with self._db.transaction():
                for item in items:
                    await self._db.delete_item(item.id)
            albums_removed = 0

        files_deleted = 0
        if delete_files:
            for item in items:
                try:
                    await asyncio.to_thread(Path(item.path).unlink)
                except OSError as e:
                    logger.warning("Failed to delete %s: %s", item.path, e)
                    continue
                files_deleted += 1

        logger.info(
            "Removed %d item(s), %d album(s), %d file(s)",
            len(items),
            albums_removed,
            files_deleted,
        )
        return RemoveResult(
            items_removed=len(items),
            albums_removed=albums_removed,
            files_deleted=files_deleted,
        )

    async def remove_item(self, item_id: int) -> None:
        """Remove one item by id. The file stays on disk."""
        self._require_initialized()
        await self._db.delete_item(item_id)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise MusicLibraryNotReadyError(
                "MusicLibrary is not initialized. Call await library.initialize() first."
            )
