"""
Tests for tonearm.web (FastAPI app + REST API).

These tests verify:
- FastAPI application setup and health check
- Item/album listing with the query language, lookup and removal
- Error mapping (400 bad query, 404 unknown id, 503 before initialization)
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from tonearm.core.library import MusicLibrary
from tonearm.core.library_db import LibraryDb
from tonearm.core.providers import TagBundle
from tonearm.web.server import WebServer, create_app

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def db() -> LibraryDb:
    """Create an in-memory database for testing."""
    db = LibraryDb(":memory:")
    await db.open()
    await db.ensure_schema()
    yield db
    await db.close()


@pytest.fixture
async def library(db: LibraryDb) -> MusicLibrary:
    """Create a MusicLibrary with a few tracks."""
    lib = MusicLibrary(db=db)
    await lib.initialize()

    tracks = [
        ("/m/1.mp3", "War Pigs", "Black Sabbath", "Paranoid", 1970, 1),
        ("/m/2.mp3", "Paranoid", "Black Sabbath", "Paranoid", 1970, 2),
        ("/m/3.mp3", "Battery", "Metallica", "Master of Puppets", 1986, 1),
    ]
    for path, title, artist, album, year, track in tracks:
        await lib.import_file(
            TagBundle(
                path=path,
                title=title,
                artist=artist,
                album=album,
                year=year,
                track=track,
                bitrate=320,
                length=240.0,
            )
        )
    return lib


@pytest.fixture
async def client(library: MusicLibrary) -> AsyncClient:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=create_app(library))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# =============================================================================
# Health Check Tests
# =============================================================================


class TestHealthCheck:
    async def test_health_check(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "server": "tonearm"}

    async def test_web_server_wraps_app(self, library: MusicLibrary) -> None:
        server = WebServer(library)
        assert server.app.title == "Tonearm"
        assert (server.host, server.port) == ("127.0.0.1", 8337)


# =============================================================================
# Items
# =============================================================================


class TestItems:
    async def test_list_all(self, client: AsyncClient) -> None:
        response = await client.get("/api/items")
        assert response.status_code == 200
        data = response.json()
        assert data["offset"] == 0
        assert data["count"] == 3
        assert [i["title"] for i in data["items"]] == ["War Pigs", "Paranoid", "Battery"]

    async def test_query(self, client: AsyncClient) -> None:
        response = await client.get("/api/items", params={"q": "artist:sabbath year:1970"})
        assert response.status_code == 200
        assert {i["title"] for i in response.json()["items"]} == {"War Pigs", "Paranoid"}

    async def test_free_text(self, client: AsyncClient) -> None:
        response = await client.get("/api/items", params={"q": "war"})
        items = response.json()["items"]
        assert [i["title"] for i in items] == ["War Pigs"]
        assert items[0]["album"] == "Paranoid"
        assert items[0]["album_id"] is not None

    async def test_paging(self, client: AsyncClient) -> None:
        response = await client.get("/api/items", params={"offset": 1, "limit": 1})
        data = response.json()
        assert data["offset"] == 1
        assert [i["title"] for i in data["items"]] == ["Paranoid"]

    async def test_bad_paging(self, client: AsyncClient) -> None:
        assert (await client.get("/api/items", params={"limit": 0})).status_code == 400
        assert (await client.get("/api/items", params={"offset": -1})).status_code == 400

    async def test_bad_query(self, client: AsyncClient) -> None:
        response = await client.get("/api/items", params={"q": "rating:5"})
        assert response.status_code == 400
        assert "rating" in response.json()["detail"]

    async def test_get_item(self, client: AsyncClient) -> None:
        response = await client.get("/api/items/1")
        assert response.status_code == 200
        assert response.json()["path"] == "/m/1.mp3"

    async def test_get_missing_item(self, client: AsyncClient) -> None:
        response = await client.get("/api/items/999")
        assert response.status_code == 404

    async def test_delete_item(self, client: AsyncClient) -> None:
        response = await client.delete("/api/items/1")
        assert response.status_code == 200
        assert response.json() == {"deleted": 1}

        assert (await client.get("/api/items/1")).status_code == 404
        assert (await client.delete("/api/items/1")).status_code == 404
        response = await client.get("/api/items", params={"q": "war"})
        assert response.json()["count"] == 0


# =============================================================================
# Albums
# =============================================================================


class TestAlbums:
    async def test_list_albums(self, client: AsyncClient) -> None:
        response = await client.get("/api/albums")
        assert response.status_code == 200
        data = response.json()
        assert [a["album"] for a in data["albums"]] == ["Paranoid", "Master of Puppets"]

    async def test_search_albums(self, client: AsyncClient) -> None:
        response = await client.get("/api/albums", params={"q": "battery"})
        assert [a["album"] for a in response.json()["albums"]] == ["Master of Puppets"]

    async def test_get_album_with_items(self, client: AsyncClient) -> None:
        albums = (await client.get("/api/albums", params={"q": "album:=Paranoid"})).json()
        album_id = albums["albums"][0]["id"]

        response = await client.get(f"/api/albums/{album_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["albumartist"] == "Black Sabbath"
        assert [i["title"] for i in data["items"]] == ["War Pigs", "Paranoid"]

    async def test_get_missing_album(self, client: AsyncClient) -> None:
        response = await client.get("/api/albums/999")
        assert response.status_code == 404


# =============================================================================
# Stats
# =============================================================================


class TestStats:
    async def test_stats(self, client: AsyncClient) -> None:
        response = await client.get("/api/stats")
        assert response.status_code == 200
        data = response.json()
        assert data["items"] == 3
        assert data["albums"] == 2
        assert data["artists"] == 2
        assert data["total_length"] == 720.0
        assert data["total_size"] == 3 * 320 * 1000 * 240 // 8


class TestNotInitialized:
    async def test_returns_503(self, db: LibraryDb) -> None:
        app = create_app(MusicLibrary(db=db))
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/items")
        assert response.status_code == 503
