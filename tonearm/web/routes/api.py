"""
REST API Routes for Tonearm.

Provides REST endpoints for web UIs and scripts:
- /api/items: item listing (query language via `q`), lookup and removal
- /api/albums: album listing and lookup
- /api/stats: library totals
"""

from __future__ import annotations

import logging
from dataclasses import asdict, is_dataclass
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, FastAPI, HTTPException

from tonearm.core import NotFoundError, QueryError

if TYPE_CHECKING:
    from tonearm.core.library import MusicLibrary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["api"])

# Reference set during route registration
_music_library: MusicLibrary | None = None


def register_api_routes(app: FastAPI, music_library: MusicLibrary) -> None:
    """
    Register API routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        music_library: MusicLibrary for browsing/search/removal
    """
    global _music_library
    _music_library = music_library
    app.include_router(router)


def to_dict(row: Any) -> dict[str, Any]:
    """Convert a row dataclass to a JSON-ready dictionary."""
    if is_dataclass(row) and not isinstance(row, type):
        return asdict(row)
    return dict(row)


def _require_library() -> MusicLibrary:
    if _music_library is None or not _music_library.initialized:
        raise HTTPException(status_code=503, detail="Library not initialized")
    return _music_library


def _check_paging(offset: int, limit: int) -> None:
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")
    if not 0 < limit <= 10_000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 10000")


# =============================================================================
# Items
# =============================================================================


@router.get("/api/items")
async def list_items(q: str = "", offset: int = 0, limit: int = 200) -> dict[str, Any]:
    """List items matching a query.

    Query params:
        q: Query string, e.g. `artist:sabbath year:1970..1979` (default: everything)
        offset: Starting position (default: 0)
        limit: Maximum items to return (default: 200)
    """
    library = _require_library()
    _check_paging(offset, limit)
    try:
        items = await library.list_items(q, limit=limit, offset=offset)
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return {
        "offset": offset,
        "count": len(items),
        "items": [to_dict(i) for i in items],
    }


@router.get("/api/items/{item_id}")
async def get_item(item_id: int) -> dict[str, Any]:
    """Get a single item by ID."""
    library = _require_library()
    try:
        item = await library.get_item(item_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail="Item not found") from e
    return to_dict(item)


@router.delete("/api/items/{item_id}")
async def delete_item(item_id: int) -> dict[str, Any]:
    """Remove an item from the library. The file stays on disk."""
    library = _require_library()
    try:
        await library.remove_item(item_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail="Item not found") from e
    logger.info("Item %d removed via API", item_id)
    return {"deleted": item_id}


# =============================================================================
# Albums
# =============================================================================


@router.get("/api/albums")
async def list_albums(q: str = "", offset: int = 0, limit: int = 100) -> dict[str, Any]:
    """List albums matching a query.

    Query params:
        q: Query string (default: everything)
        offset: Starting position (default: 0)
        limit: Maximum albums to return (default: 100)
    """
    library = _require_library()
    _check_paging(offset, limit)
    try:
        albums = await library.list_albums(q, limit=limit, offset=offset)
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return {
        "offset": offset,
        "count": len(albums),
        "albums": [to_dict(a) for a in albums],
    }


@router.get("/api/albums/{album_id}")
async def get_album(album_id: int) -> dict[str, Any]:
    """Get an album with its items in track order."""
    library = _require_library()
    try:
        album = await library.get_album(album_id)
        items = await library.get_album_items(album_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail="Album not found") from e

    result = to_dict(album)
    result["items"] = [to_dict(i) for i in items]
    return result


# =============================================================================
# Stats
# =============================================================================


@router.get("/api/stats")
async def get_stats() -> dict[str, Any]:
    """Library totals: items, albums, artists, total length and estimated size."""
    library = _require_library()
    return to_dict(await library.stats())
