"""
Import reconciliation: merge a file's tags with an optional catalog match and
commit the album/item pair atomically.

Rules:
- Album identity: catalog id first, then `(albumartist, album)` compared
  case-insensitively. See `ImportReconciler.resolve_album()`.
- Catalog data wins for album title, album artist, year, catalog ids and (when
  given) the track title. Format, bitrate, length and mtime always come from
  the file.
- Items are keyed by path. Re-importing a path updates the existing row.
- Everything happens in one `LibraryDb.transaction()`. A failure leaves no
  partial album/item pair behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from tonearm.core.db.models import AlbumRow, ItemRow, NewAlbum, NewItem
from tonearm.core.library_db import LibraryDb
from tonearm.core.providers import ResolvedRelease, TagBundle

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReconcileOutcome:
    item_id: int
    album_id: int
    item_created: bool
    album_created: bool


@dataclass(frozen=True, slots=True)
class _AlbumKey:
    album: str
    albumartist: str
    year: int | None
    mb_albumid: str | None


class ImportReconciler:
    """Turns one `TagBundle` (+ optional `ResolvedRelease`) into stored rows."""

    def __init__(self, db: LibraryDb) -> None:
        self._db = db

    async def reconcile(
        self,
        tags: TagBundle,
        resolved: ResolvedRelease | None = None,
        *,
        destination: str | None = None,
        art_path: str | None = None,
    ) -> ReconcileOutcome:
        path = destination or tags.path
        async with self._db.transaction():
            album, album_created = await self.resolve_album(tags, resolved, art_path=art_path)
            existing = await self._db.find_item_by_path(path)
            values = self._item_values(tags, resolved, album, existing)

            if existing is None:
                item_id = await self._db.insert_item(NewItem(path=path, **values))
                item_created = True
            else:
                await self._db.update_item(existing.id, values)
                item_id = existing.id
                item_created = False

        logger.info(
            "%s %s (item %d, album %d%s)",
            "Imported" if item_created else "Re-imported",
            path,
            item_id,
            album.id,
            ", new album" if album_created else "",
        )
        return ReconcileOutcome(
            item_id=item_id,
            album_id=album.id,
            item_created=item_created,
            album_created=album_created,
        )

    async def resolve_album(
        self,
        tags: TagBundle,
        resolved: ResolvedRelease | None = None,
        *,
        art_path: str | None = None,
    ) -> tuple[AlbumRow, bool]:
        """
        Find or create the album for an import. Returns `(album, created)`.

        Lookup order:
        1. an album with the same catalog id
        2. an album with the same `(albumartist, album)`, ignoring case; when a
           catalog id is known only albums without one qualify

        A found album gets its empty `year` / `artpath` / `mb_albumid` filled.
        With a catalog match its title, artist and year are overwritten too, and
        the change reaches its items through `LibraryDb.update_album`.
        """
        key = self._album_key(tags, resolved)

        album: AlbumRow | None = None
        if key.mb_albumid:
            album = await self._db.find_album_by_mb_albumid(key.mb_albumid)
        if album is None:
            album = await self._db.find_album_by_natural_key(
                key.albumartist, key.album, unresolved_only=key.mb_albumid is not None
            )

        if album is None:
            album_id = await self._db.insert_album(
                NewAlbum(
                    album=key.album,
                    albumartist=key.albumartist,
                    year=key.year,
                    artpath=art_path,
                    mb_albumid=key.mb_albumid,
                )
            )
            return await self._db.get_album(album_id), True

        diffs = self._album_diffs(album, key, art_path, authoritative=resolved is not None)
        if diffs:
            logger.debug("Updating album %d: %s", album.id, sorted(diffs))
            album = await self._db.update_album(album.id, diffs)
        return album, False

    @staticmethod
    def _album_key(tags: TagBundle, resolved: ResolvedRelease | None) -> _AlbumKey:
        if resolved is not None:
            return _AlbumKey(
                album=resolved.album,
                albumartist=resolved.albumartist,
                year=resolved.year if resolved.year is not None else tags.year,
                mb_albumid=resolved.mb_albumid,
            )
        return _AlbumKey(
            album=tags.album,
            albumartist=tags.effective_albumartist,
            year=tags.year,
            mb_albumid=None,
        )

    @staticmethod
    def _album_diffs(
        album: AlbumRow, key: _AlbumKey, art_path: str | None, *, authoritative: bool
    ) -> dict[str, Any]:
        diffs: dict[str, Any] = {}
        if authoritative:
            if album.album != key.album:
                diffs["album"] = key.album
            if album.albumartist != key.albumartist:
                diffs["albumartist"] = key.albumartist
            if key.year is not None and album.year != key.year:
                diffs["year"] = key.year
        elif album.year is None and key.year is not None:
            diffs["year"] = key.year
        if album.mb_albumid is None and key.mb_albumid:
            diffs["mb_albumid"] = key.mb_albumid
        if album.artpath is None and art_path:
            diffs["artpath"] = art_path
        return diffs

    @staticmethod
    def _item_values(
        tags: TagBundle,
        resolved: ResolvedRelease | None,
        album: AlbumRow,
        existing: ItemRow | None,
    ) -> dict[str, Any]:
        if resolved is not None:
            title = resolved.title or tags.title
            year = resolved.year if resolved.year is not None else tags.year
            mb_trackid = resolved.mb_trackid
        else:
            title = tags.title
            year = tags.year
            mb_trackid = existing.mb_trackid if existing is not None else None

        return {
            "album_id": album.id,
            "title": title,
            "artist": tags.artist,
            "album": album.album,
            "albumartist": album.albumartist,
            "genre": tags.genre,
            "year": year,
            "track": tags.track,
            "disc": tags.disc,
            "format": tags.format,
            "bitrate": tags.bitrate,
            "length": tags.length,
            "mb_trackid": mb_trackid,
            "mb_albumid": album.mb_albumid,
            "mtime": tags.mtime,
        }
