"""
Tonearm - a music library database.

Tonearm keeps albums and tracks in SQLite with an FTS5 search index that is
kept in sync by triggers, imports files by reading their tags, and answers
beets-style queries from a CLI and a small HTTP API.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
