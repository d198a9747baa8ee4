"""
Boundary types for the collaborators around the core.

The core never talks to MusicBrainz, the Cover Art Archive or the filesystem
layout directly. It consumes:

- `TagBundle`: what was read from a file's tags (see `tonearm.core.scanner`)
- `MetadataResolver`: turns tags into ranked `ResolvedRelease` candidates
- `ArtFetcher`: downloads cover art for a catalog id and returns a local path
- `FileMover`: copies/moves a file into the library and returns the final path

Implementations live outside the core; tests use small in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Sequence


@dataclass(frozen=True, slots=True)
class TagBundle:
    """
    Tag and file data read from one audio file.

    `format`, `bitrate`, `length` and `mtime` describe the file itself and are
    never overridden by catalog data.
    """

    path: str
    title: str
    artist: str
    album: str
    albumartist: str | None = None
    genre: str | None = None
    year: int | None = None
    track: int | None = None
    disc: int | None = None
    format: str | None = None
    bitrate: int | None = None
    length: float | None = None
    mtime: float | None = None

    @property
    def effective_albumartist(self) -> str:
        return self.albumartist or self.artist


@dataclass(frozen=True, slots=True)
class ResolvedRelease:
    """One catalog match for a file. Catalog values win over local tags."""

    album: str
    albumartist: str
    year: int | None = None
    mb_albumid: str | None = None
    mb_trackid: str | None = None
    title: str | None = None


class MetadataResolver(Protocol):
    async def resolve(self, tags: TagBundle) -> Sequence[ResolvedRelease]:
        """Return candidates, best first. An empty sequence means no match."""
        ...


class ArtFetcher(Protocol):
    async def fetch(self, mb_albumid: str) -> str | None:
        """Return the local path of the fetched cover, or None if there is none."""
        ...


class FileMover(Protocol):
    async def move(self, source: Path, tags: TagBundle) -> str:
        """Place `source` in the library and return its final path."""
        ...


CandidateChooser = Callable[[TagBundle, Sequence[ResolvedRelease]], ResolvedRelease | None]


def first_candidate(
    tags: TagBundle, candidates: Sequence[ResolvedRelease]
) -> ResolvedRelease | None:
    """Default chooser: trust the resolver's ranking."""
    return candidates[0] if candidates else None
