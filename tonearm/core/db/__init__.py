"""
Internal DB subpackage for Tonearm.

This package splits the store into focused units (models, schema/migrations,
the full-text index and query groups) while keeping `LibraryDb` as the single
public interface that the rest of the codebase imports.

Re-exports here are primarily for convenience inside the `core` package.
External code should continue to import `LibraryDb` from `tonearm.core.library_db`.
"""

from __future__ import annotations

# Models / DTOs
from .models import AlbumRow, ItemRow, LibraryStats, NewAlbum, NewItem

# Schema / migrations
from .schema import SCHEMA_VERSION, ensure_schema, migrate

__all__ = [
    # models
    "AlbumRow",
    "ItemRow",
    "LibraryStats",
    "NewAlbum",
    "NewItem",
    # schema
    "SCHEMA_VERSION",
    "ensure_schema",
    "migrate",
]
