"""
Tests for tonearm.core.scanner.

mutagen is replaced by a small fake so the tests do not need real audio files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from mutagen import MutagenError

from tonearm.core import TagReadError
from tonearm.core import scanner
from tonearm.core.scanner import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    _first_text,
    _parse_int_maybe,
    _parse_year_maybe,
    audio_format,
    iter_audio_files,
    read_tags,
)


class FakeInfo:
    def __init__(self, length: float | None = 477.5, bitrate: int | None = 320_000) -> None:
        self.length = length
        self.bitrate = bitrate


class FakeAudio:
    def __init__(self, tags: dict[str, Any] | None, info: FakeInfo | None = None) -> None:
        self.tags = tags
        self.info = info or FakeInfo()


@pytest.fixture
def audio_file(tmp_path: Path) -> Path:
    path = tmp_path / "01 - war pigs.flac"
    path.write_bytes(b"\x00" * 4000)
    return path


def _fake_mutagen(monkeypatch: pytest.MonkeyPatch, result: Any) -> None:
    def fake_file(path: Any) -> Any:
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(scanner, "mutagen_file", fake_file)


class TestScannerHelpers:
    def test_first_text(self) -> None:
        assert _first_text("  spaced  ") == "spaced"
        assert _first_text(["first", "second"]) == "first"
        assert _first_text([]) is None
        assert _first_text(None) is None
        assert _first_text(b"bytes") == "bytes"

    def test_parse_int_maybe(self) -> None:
        assert _parse_int_maybe("5") == 5
        assert _parse_int_maybe("3/12") == 3
        assert _parse_int_maybe([(4, 10)]) == 4
        assert _parse_int_maybe("abc") is None
        assert _parse_int_maybe(None) is None

    def test_parse_year_maybe(self) -> None:
        assert _parse_year_maybe("1970") == 1970
        assert _parse_year_maybe("1970-09-18") == 1970
        assert _parse_year_maybe("abc") is None
        assert _parse_year_maybe(None) is None

    def test_audio_format(self) -> None:
        assert audio_format(Path("a.FLAC")) == "FLAC"
        assert audio_format(Path("a.m4a")) == "AAC"
        assert audio_format(Path("a.txt")) is None


class TestReadTags:
    def test_vorbis_tags(self, monkeypatch: pytest.MonkeyPatch, audio_file: Path) -> None:
        _fake_mutagen(
            monkeypatch,
            FakeAudio(
                {
                    "title": ["War Pigs"],
                    "artist": ["Black Sabbath"],
                    "album": ["Paranoid"],
                    "albumartist": ["Black Sabbath"],
                    "genre": ["Heavy Metal"],
                    "tracknumber": ["1/8"],
                    "discnumber": ["1"],
                    "date": ["1970-09-18"],
                }
            ),
        )

        tags = read_tags(audio_file)

        assert tags.path == str(audio_file)
        assert tags.title == "War Pigs"
        assert tags.artist == "Black Sabbath"
        assert tags.album == "Paranoid"
        assert tags.albumartist == "Black Sabbath"
        assert tags.genre == "Heavy Metal"
        assert (tags.track, tags.disc, tags.year) == (1, 1, 1970)
        assert tags.format == "FLAC"
        assert tags.bitrate == 320
        assert tags.length == 477.5
        assert tags.mtime == audio_file.stat().st_mtime

    def test_defaults_without_tags(self, monkeypatch: pytest.MonkeyPatch, audio_file: Path) -> None:
        _fake_mutagen(monkeypatch, FakeAudio(None))

        tags = read_tags(audio_file)

        assert tags.title == "01 - war pigs"
        assert tags.artist == UNKNOWN_ARTIST
        assert tags.album == UNKNOWN_ALBUM
        assert tags.albumartist is None
        assert tags.effective_albumartist == UNKNOWN_ARTIST

    def test_bitrate_estimated_from_size(
        self, monkeypatch: pytest.MonkeyPatch, audio_file: Path
    ) -> None:
        _fake_mutagen(monkeypatch, FakeAudio({}, FakeInfo(length=1.0, bitrate=0)))

        tags = read_tags(audio_file)

        # 4000 bytes over one second
        assert tags.bitrate == 32

    def test_unreadable_file(self, monkeypatch: pytest.MonkeyPatch, audio_file: Path) -> None:
        _fake_mutagen(monkeypatch, None)
        with pytest.raises(TagReadError):
            read_tags(audio_file)

    def test_mutagen_error(self, monkeypatch: pytest.MonkeyPatch, audio_file: Path) -> None:
        _fake_mutagen(monkeypatch, MutagenError("broken header"))
        with pytest.raises(TagReadError, match="broken header"):
            read_tags(audio_file)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(TagReadError):
            read_tags(tmp_path / "nope.mp3")


class TestIterAudioFiles:
    async def test_walks_and_filters(self, tmp_path: Path) -> None:
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "02.MP3").write_bytes(b"")
        (tmp_path / "a.flac").write_bytes(b"")
        (tmp_path / "cover.jpg").write_bytes(b"")

        found = [p async for p in iter_audio_files(tmp_path)]

        assert found == [tmp_path / "a.flac", tmp_path / "b" / "02.MP3"]

    async def test_custom_extensions(self, tmp_path: Path) -> None:
        (tmp_path / "a.flac").write_bytes(b"")
        (tmp_path / "b.mp3").write_bytes(b"")

        found = [p async for p in iter_audio_files(tmp_path, extensions=frozenset({".mp3"}))]

        assert found == [tmp_path / "b.mp3"]

    async def test_single_file(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ogg"
        path.write_bytes(b"")

        assert [p async for p in iter_audio_files(path)] == [path]

    async def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            async for _ in iter_audio_files(tmp_path / "missing"):
                pass
