from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Any

from mutagen import File as mutagen_file
from mutagen import MutagenError

from tonearm.core import TagReadError
from tonearm.core.providers import TagBundle

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

DEFAULT_AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".flac",
        ".ogg",
        ".oga",
        ".opus",
        ".m4a",
        ".aac",
        ".wav",
        ".aiff",
        ".aif",
    }
)

# Display names stored in `items.format`, keyed by file extension.
_FORMAT_BY_EXTENSION: dict[str, str] = {
    ".mp3": "MP3",
    ".flac": "FLAC",
    ".ogg": "Ogg Vorbis",
    ".oga": "Ogg Vorbis",
    ".opus": "Opus",
    ".m4a": "AAC",
    ".aac": "AAC",
    ".wav": "WAV",
    ".aiff": "AIFF",
    ".aif": "AIFF",
}


_YEAR_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")


def _clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _first_text(value: Any) -> str | None:
    """
    Reduce a mutagen tag value to one clean string.

    Values arrive as plain strings, bytes, lists (Vorbis, MP4) or ID3 frames
    carrying a `.text` list; only the first entry is kept.
    """
    while isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[0]

    if value is None:
        return None

    # ID3 frames
    if hasattr(value, "text"):
        return _first_text(value.text)

    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return _clean_str(str(value))


def _parse_int_maybe(value: Any) -> int | None:
    """Track/disc numbers: "3", "3/12", or MP4's `[(3, 12)]`."""
    if isinstance(value, list) and value and isinstance(value[0], tuple):
        number = value[0][0] if value[0] else None
        return number if isinstance(number, int) and number > 0 else None

    text = _first_text(value)
    if text is None:
        return None
    head = text.split("/", 1)[0].strip()
    return int(head) if head.isdigit() else None


def _parse_year_maybe(value: Any) -> int | None:
    """First plausible four-digit year in "1970", "1970-09-18", "1970/1971" etc."""
    text = _first_text(value)
    if text is None:
        return None
    for match in _YEAR_RE.finditer(text):
        year = int(match.group(1))
        if 1000 <= year <= 3000:
            return year
    return None


def _tags_get(tags: Any, keys: Iterable[str]) -> Any:
    if not tags:
        return None
    for k in keys:
        if k in tags:
            return tags.get(k)
    return None


def audio_format(path: Path) -> str | None:
    return _FORMAT_BY_EXTENSION.get(path.suffix.lower())


def read_tags(path: str | Path) -> TagBundle:
    """
    Read tags and stream properties from an audio file.

    Missing title falls back to the file stem, missing artist and album to
    "Unknown Artist" / "Unknown Album". Bitrate is stored in kbps.

    This function is synchronous; callers on the event loop should run it via
    `asyncio.to_thread`.
    """
    p = Path(path)
    try:
        mtime = p.stat().st_mtime
        audio = mutagen_file(p)
    except (OSError, MutagenError) as e:
        raise TagReadError(f"{p}: {e}") from e
    if audio is None:
        raise TagReadError(f"{p}: unsupported or unreadable audio file")

    tags = getattr(audio, "tags", None)

    length: float | None = None
    bitrate: int | None = None
    info = getattr(audio, "info", None)
    if info is not None:
        raw_length = getattr(info, "length", None)
        if isinstance(raw_length, (int, float)) and raw_length > 0:
            length = float(raw_length)
        # mutagen reports bits per second
        br = getattr(info, "bitrate", None)
        if isinstance(br, int) and br > 0:
            bitrate = br // 1000
    if bitrate is None and length:
        try:
            bitrate = int(p.stat().st_size * 8 / length / 1000)
        except OSError:
            bitrate = None

    # Keys: ID3=TIT2, Vorbis=title, MP4=©nam
    title = _first_text(_tags_get(tags, ("TIT2", "title", "TITLE", "©nam"))) or p.stem
    # Keys: ID3=TPE1, Vorbis=artist, MP4=©ART
    artist = _first_text(_tags_get(tags, ("TPE1", "artist", "ARTIST", "©ART")))
    # Keys: ID3=TALB, Vorbis=album, MP4=©alb
    album = _first_text(_tags_get(tags, ("TALB", "album", "ALBUM", "©alb")))
    # Keys: ID3=TPE2, Vorbis=albumartist, MP4=aART
    albumartist = _first_text(
        _tags_get(tags, ("TPE2", "albumartist", "ALBUMARTIST", "aART", "ALBUM ARTIST"))
    )
    genre = _first_text(_tags_get(tags, ("TCON", "genre", "GENRE", "©gen")))
    track = _parse_int_maybe(_tags_get(tags, ("TRCK", "tracknumber", "TRACKNUMBER", "trkn")))
    disc = _parse_int_maybe(_tags_get(tags, ("TPOS", "discnumber", "DISCNUMBER", "disk")))
    year = _parse_year_maybe(_tags_get(tags, ("TDRC", "TYER", "date", "DATE", "YEAR", "©day")))

    return TagBundle(
        path=str(p),
        title=title,
        artist=artist or UNKNOWN_ARTIST,
        album=album or UNKNOWN_ALBUM,
        albumartist=albumartist,
        genre=genre,
        year=year,
        track=track,
        disc=disc,
        format=audio_format(p),
        bitrate=bitrate,
        length=length,
        mtime=mtime,
    )


async def iter_audio_files(
    root: Path,
    *,
    extensions: frozenset[str] = DEFAULT_AUDIO_EXTENSIONS,
    follow_symlinks: bool = False,
) -> AsyncIterator[Path]:
    """
    Asynchronously yields audio file paths under `root`, sorted by path.

    A single file is yielded as-is when its extension matches. The walk runs
    in a thread to keep the event loop responsive.
    """
    if not root.exists():
        raise FileNotFoundError(root)

    def _walk() -> list[Path]:
        if root.is_file():
            return [root] if root.suffix.lower() in extensions else []
        paths: list[Path] = []
        for p in root.rglob("*"):
            try:
                if not follow_symlinks and p.is_symlink():
                    continue
                if not p.is_file():
                    continue
                if p.suffix.lower() not in extensions:
                    continue
                paths.append(p)
            except OSError:
                # Unreadable entries are skipped; tag reading reports real failures.
                continue
        paths.sort(key=lambda x: str(x).lower())
        return paths

    paths = await asyncio.to_thread(_walk)
    logger.debug("Found %d audio file(s) under %s", len(paths), root)
    for p in paths:
        yield p
